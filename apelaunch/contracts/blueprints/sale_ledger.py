from typing import NamedTuple

from apelaunch.contracts.blueprints.registry import BUNDLE_MANAGER, SALE_FACTORY, RegistryUser
from apelaunch.contracts.blueprints.setup_hasher import SaleSetup
from apelaunch.contracts.context import Context
from apelaunch.contracts.exception import ContractFail, UnauthorizedCall
from apelaunch.contracts.types import (
    Address,
    Amount,
    ContractId,
    SaleId,
    Timestamp,
    public,
    view,
)
from apelaunch.contracts.vesting_codec import calculate_vested_percentage


class SaleInfo(NamedTuple):
    """Current accounting of a sale."""

    sale_id: int
    owner: str
    sale_address: str
    payment_token: str
    selling_token: str
    total_value: int
    remaining_amount: int
    total_invested: int
    deposited_tokens: int
    committed_tokens: int
    launched: bool
    token_list_timestamp: int
    closed: bool


class Investment(NamedTuple):
    """Outcome of an accepted investment.

    `amount` and `fee` are selling tokens. The investor receives
    `amount - investor_fee`, the fee wallet `fee + investor_fee`.
    `payment_fee` is in payment units.
    """

    amount: int
    fee: int
    investor_fee: int
    payment_fee: int


class SaleLedgerErrors:
    """Common error messages"""

    UNAUTHORIZED = "Unauthorized action"
    ONLY_FACTORY = "only the factory can call this method"
    ONLY_SALE = "only the sale contract can call this method"
    ONLY_SALE_OWNER = "only the sale owner can call this method"
    ONLY_BUNDLE_MANAGER = "only the bundle manager can call this method"
    SALE_NOT_FOUND = "sale not found"
    SALE_EXISTS = "sale already exists"
    SALE_ID_NOT_RESERVED = "sale id not reserved"
    ALREADY_LAUNCHED = "sale already launched"
    NOT_LAUNCHED = "sale not launched yet"
    ALREADY_LISTED = "token already listed"
    NOT_LISTED = "token not listed yet"
    CLOSED = "sale is closed"
    INVALID_AMOUNT = "invalid amount"
    LENGTH_MISMATCH = "investors and amounts must have the same length"
    BELOW_MIN = "Amount is below minimum"
    ABOVE_APPROVED = "Amount is above approved amount"
    ABOVE_CAP = "Amount is above cap"
    NOT_ENOUGH_TOKENS = "Not enough tokens available"
    VALUE_TOO_SMALL = "value is too small to buy any token"
    NOTHING_TO_WITHDRAW = "nothing to withdraw"
    ABOVE_WITHDRAWABLE = "amount exceeds withdrawable payment"


class SaleNotFound(ContractFail):
    pass


class SaleAlreadyExists(ContractFail):
    pass


class SaleAlreadyLaunched(ContractFail):
    pass


class TokenAlreadyListed(ContractFail):
    pass


class AboveApprovedAmount(ContractFail):
    pass


class NotEnoughTokens(ContractFail):
    pass


class SaleLedger(RegistryUser):
    """Authoritative record of every sale.

    Holds the setup of each sale and everything that changes after creation:
    investor approvals, investments, launch and listing, and the token escrow
    accounting used to compute unsold tokens. Only the factory, the sale
    contracts and the bundle manager can write to it.
    """

    REGISTRY_NAMES = (SALE_FACTORY, BUNDLE_MANAGER)

    owner: Address
    fee_wallet: Address
    next_id: SaleId

    setups: dict[SaleId, SaleSetup]
    extra_vesting_words: dict[SaleId, list[int]]
    payment_tokens: dict[SaleId, ContractId]
    sale_ids_by_address: dict[ContractId, SaleId]

    # Investors
    approved_amounts: dict[SaleId, dict[Address, Amount]]
    invested_amounts: dict[SaleId, dict[Address, Amount]]
    total_invested: dict[SaleId, Amount]

    # Lifecycle
    launched: dict[SaleId, bool]
    closed: dict[SaleId, bool]

    # Selling token escrow held by each sale contract
    deposited_tokens: dict[SaleId, Amount]
    committed_tokens: dict[SaleId, Amount]  # Owed to allocations

    # Payment token held by each sale contract
    payment_fees: dict[SaleId, Amount]
    payment_withdrawn: dict[SaleId, Amount]

    @public
    def initialize(self, ctx: Context, registry_id: ContractId, fee_wallet: Address) -> None:
        self.owner = ctx.address
        self.fee_wallet = fee_wallet
        self.next_id = SaleId(1)
        self.setups = {}
        self.extra_vesting_words = {}
        self.payment_tokens = {}
        self.sale_ids_by_address = {}
        self.approved_amounts = {}
        self.invested_amounts = {}
        self.total_invested = {}
        self.launched = {}
        self.closed = {}
        self.deposited_tokens = {}
        self.committed_tokens = {}
        self.payment_fees = {}
        self.payment_withdrawn = {}
        self._init_registry(registry_id)

    # Sale creation

    @view
    def next_sale_id(self) -> SaleId:
        return self.next_id

    @public
    def increment_next_sale_id(self, ctx: Context) -> SaleId:
        """Reserve and return the next sale id."""
        self._only_factory(ctx)
        sale_id = self.next_id
        self.next_id = SaleId(self.next_id + 1)
        return sale_id

    @public
    def new_sale(
        self,
        ctx: Context,
        sale_id: SaleId,
        setup: SaleSetup,
        extra_vesting_steps: list[int],
        payment_token: ContractId,
        sale_address: ContractId,
    ) -> None:
        self._only_factory(ctx)
        if sale_id in self.setups:
            raise SaleAlreadyExists(SaleLedgerErrors.SALE_EXISTS)
        if sale_id <= 0 or sale_id >= self.next_id:
            raise ContractFail(SaleLedgerErrors.SALE_ID_NOT_RESERVED)

        self.setups[sale_id] = setup._replace(sale_address=sale_address, remaining_amount=Amount(0))
        self.extra_vesting_words[sale_id] = list(extra_vesting_steps)
        self.payment_tokens[sale_id] = payment_token
        self.sale_ids_by_address[sale_address] = sale_id
        self.approved_amounts[sale_id] = {}
        self.invested_amounts[sale_id] = {}
        self.total_invested[sale_id] = Amount(0)
        self.launched[sale_id] = False
        self.closed[sale_id] = False
        self.deposited_tokens[sale_id] = Amount(0)
        self.committed_tokens[sale_id] = Amount(0)
        self.payment_fees[sale_id] = Amount(0)
        self.payment_withdrawn[sale_id] = Amount(0)

    # Launch and extension

    @public
    def set_launched(self, ctx: Context, sale_id: SaleId) -> tuple[Amount, Amount]:
        """Open the sale for investments and return the tokens to escrow.

        Returns `(amount, fee)` for the sale total value; the sale contract
        must pull `amount + fee` from the seller.
        """
        setup = self._only_sale(ctx, sale_id)
        if self.launched[sale_id]:
            raise SaleAlreadyLaunched(SaleLedgerErrors.ALREADY_LAUNCHED)

        amount, fee = self._tokens_and_fee(setup, setup.total_value)
        self.setups[sale_id] = setup._replace(remaining_amount=setup.total_value)
        self.launched[sale_id] = True
        self.deposited_tokens[sale_id] = Amount(self.deposited_tokens[sale_id] + amount + fee)
        return amount, fee

    @public
    def extend_sale(self, ctx: Context, sale_id: SaleId, extra_value: Amount) -> tuple[Amount, Amount]:
        setup = self._only_sale(ctx, sale_id)
        self._require_open(sale_id)
        if extra_value <= 0:
            raise ContractFail(SaleLedgerErrors.INVALID_AMOUNT)

        # Deposits follow the cumulative total value, keeping committed <= deposited
        total_value = setup.total_value + extra_value
        amount_before, fee_before = self._tokens_and_fee(setup, setup.total_value)
        amount_after, fee_after = self._tokens_and_fee(setup, total_value)
        amount, fee = Amount(amount_after - amount_before), Amount(fee_after - fee_before)
        self.setups[sale_id] = setup._replace(
            total_value=Amount(total_value),
            remaining_amount=Amount(setup.remaining_amount + extra_value),
        )
        self.deposited_tokens[sale_id] = Amount(self.deposited_tokens[sale_id] + amount + fee)
        return amount, fee

    # Investors

    @public
    def approve_investor(self, ctx: Context, sale_id: SaleId, investor: Address, amount: Amount) -> None:
        """Allow `investor` to invest `amount` more payment units in the sale."""
        self._only_sale_owner(ctx, sale_id)
        self._approve(sale_id, investor, amount)

    @public
    def approve_investors(
        self,
        ctx: Context,
        sale_id: SaleId,
        investors: list[Address],
        amounts: list[Amount],
    ) -> None:
        self._only_sale_owner(ctx, sale_id)
        if len(investors) != len(amounts):
            raise ContractFail(SaleLedgerErrors.LENGTH_MISMATCH)
        for investor, amount in zip(investors, amounts):
            self._approve(sale_id, investor, amount)

    def _approve(self, sale_id: SaleId, investor: Address, amount: Amount) -> None:
        if amount <= 0:
            raise ContractFail(SaleLedgerErrors.INVALID_AMOUNT)
        approved = self.approved_amounts[sale_id]
        approved[investor] = Amount(approved.get(investor, 0) + amount)
        self.syscall.emit_event(
            "InvestorApproved",
            sale_id=sale_id,
            investor=investor,
            amount=amount,
            approved=approved[investor],
        )

    @public
    def make_investment(self, ctx: Context, sale_id: SaleId, investor: Address, value: Amount) -> Investment:
        """Record an investment of `value` payment units by `investor`."""
        setup = self._only_sale(ctx, sale_id)
        self._require_open(sale_id)
        if value <= 0:
            raise ContractFail(SaleLedgerErrors.INVALID_AMOUNT)

        invested = self.invested_amounts[sale_id].get(investor, 0) + value
        if invested > self.approved_amounts[sale_id].get(investor, 0):
            raise AboveApprovedAmount(SaleLedgerErrors.ABOVE_APPROVED)
        if value < setup.min_amount:
            raise ContractFail(SaleLedgerErrors.BELOW_MIN)
        if invested > setup.cap_amount:
            raise ContractFail(SaleLedgerErrors.ABOVE_CAP)
        if value > setup.remaining_amount:
            raise NotEnoughTokens(SaleLedgerErrors.NOT_ENOUGH_TOKENS)

        amount, fee = self._tokens_and_fee(setup, value)
        if amount == 0:
            raise ContractFail(SaleLedgerErrors.VALUE_TOO_SMALL)
        denominator = self.syscall.settings.FEE_POINTS_DENOMINATOR
        investor_fee = amount * setup.token_fee_investor_points // denominator
        payment_fee = value * setup.payment_fee_points // denominator

        self.invested_amounts[sale_id][investor] = Amount(invested)
        self.total_invested[sale_id] = Amount(self.total_invested[sale_id] + value)
        self.setups[sale_id] = setup._replace(remaining_amount=Amount(setup.remaining_amount - value))
        self.committed_tokens[sale_id] = Amount(self.committed_tokens[sale_id] + amount + fee)
        self.payment_fees[sale_id] = Amount(self.payment_fees[sale_id] + payment_fee)
        return Investment(amount, fee, investor_fee, payment_fee)

    @view
    def get_approved_amount(self, sale_id: SaleId, investor: Address) -> Amount:
        self._get_setup(sale_id)
        return self.approved_amounts[sale_id].get(investor, Amount(0))

    @view
    def get_invested_amount(self, sale_id: SaleId, investor: Address) -> Amount:
        self._get_setup(sale_id)
        return self.invested_amounts[sale_id].get(investor, Amount(0))

    # Listing and vesting

    @public
    def trigger_token_listing(self, ctx: Context, sale_id: SaleId) -> None:
        """Start the vesting clock of the sale. Can only happen once."""
        setup = self._only_sale_owner(ctx, sale_id)
        if setup.token_list_timestamp != 0:
            raise TokenAlreadyListed(SaleLedgerErrors.ALREADY_LISTED)
        if not self.launched[sale_id]:
            raise ContractFail(SaleLedgerErrors.NOT_LAUNCHED)
        self.setups[sale_id] = setup._replace(token_list_timestamp=Timestamp(ctx.timestamp))
        self.syscall.emit_event("TokenListed", sale_id=sale_id, timestamp=ctx.timestamp)

    @view
    def is_listed(self, sale_id: SaleId) -> bool:
        return self._get_setup(sale_id).token_list_timestamp != 0

    @view
    def vested_percentage(self, sale_id: SaleId, timestamp: Timestamp) -> int:
        setup = self._get_setup(sale_id)
        return calculate_vested_percentage(
            self.get_vesting_words(sale_id),
            setup.token_list_timestamp,
            timestamp,
            self.syscall.settings,
        )

    @view
    def get_vesting_words(self, sale_id: SaleId) -> list[int]:
        setup = self._get_setup(sale_id)
        return [setup.vesting_steps, *self.extra_vesting_words[sale_id]]

    # Swaps

    @public
    def reserve_tokens_for_swap(self, ctx: Context, sale_id: SaleId, amount: Amount) -> None:
        """Take `amount` selling tokens out of the unsold capacity of a sale."""
        if ctx.caller_id != self._resolve(BUNDLE_MANAGER):
            raise UnauthorizedCall(SaleLedgerErrors.ONLY_BUNDLE_MANAGER)
        setup = self._get_setup(sale_id)
        self._require_open(sale_id)
        if amount <= 0:
            raise ContractFail(SaleLedgerErrors.INVALID_AMOUNT)

        # value needed to buy `amount`, rounded up
        value = -(-amount * setup.pricing_payment // setup.pricing_token)
        if value > setup.remaining_amount:
            raise NotEnoughTokens(SaleLedgerErrors.NOT_ENOUGH_TOKENS)
        self.setups[sale_id] = setup._replace(remaining_amount=Amount(setup.remaining_amount - value))
        self.committed_tokens[sale_id] = Amount(self.committed_tokens[sale_id] + amount)

    # Sale funds

    @public
    def record_payment_withdrawal(self, ctx: Context, sale_id: SaleId, amount: Amount) -> Amount:
        """Book a payment withdrawal by the seller, 0 meaning everything available."""
        self._only_sale(ctx, sale_id)
        withdrawable = self._withdrawable_payment(sale_id)
        if amount < 0:
            raise ContractFail(SaleLedgerErrors.INVALID_AMOUNT)
        if amount == 0:
            amount = Amount(withdrawable)
            if amount == 0:
                raise ContractFail(SaleLedgerErrors.NOTHING_TO_WITHDRAW)
        if amount > withdrawable:
            raise ContractFail(SaleLedgerErrors.ABOVE_WITHDRAWABLE)
        self.payment_withdrawn[sale_id] = Amount(self.payment_withdrawn[sale_id] + amount)
        return amount

    @view
    def get_withdrawable_payment(self, sale_id: SaleId) -> Amount:
        self._get_setup(sale_id)
        return Amount(self._withdrawable_payment(sale_id))

    def _withdrawable_payment(self, sale_id: SaleId) -> int:
        return self.total_invested[sale_id] - self.payment_fees[sale_id] - self.payment_withdrawn[sale_id]

    @public
    def close_sale(self, ctx: Context, sale_id: SaleId) -> Amount:
        """Stop a listed sale and return the escrowed tokens no allocation owes."""
        setup = self._only_sale(ctx, sale_id)
        if setup.token_list_timestamp == 0:
            raise ContractFail(SaleLedgerErrors.NOT_LISTED)
        if self.closed[sale_id]:
            raise ContractFail(SaleLedgerErrors.CLOSED)
        self.setups[sale_id] = setup._replace(remaining_amount=Amount(0))
        self.closed[sale_id] = True
        return Amount(self.deposited_tokens[sale_id] - self.committed_tokens[sale_id])

    # Pricing

    @view
    def get_tokens_amount_and_fee_by_value(self, sale_id: SaleId, value: Amount) -> tuple[Amount, Amount]:
        return self._tokens_and_fee(self._get_setup(sale_id), value)

    @view
    def from_value_to_tokens_amount(self, sale_id: SaleId, value: Amount) -> Amount:
        setup = self._get_setup(sale_id)
        return Amount(value * setup.pricing_token // setup.pricing_payment)

    def _tokens_and_fee(self, setup: SaleSetup, value: int) -> tuple[Amount, Amount]:
        amount = value * setup.pricing_token // setup.pricing_payment
        fee = amount * setup.token_fee_points // self.syscall.settings.FEE_POINTS_DENOMINATOR
        return Amount(amount), Amount(fee)

    # Queries

    @view
    def get_setup(self, sale_id: SaleId) -> SaleSetup:
        return self._get_setup(sale_id)

    @view
    def get_payment_token(self, sale_id: SaleId) -> ContractId:
        self._get_setup(sale_id)
        return self.payment_tokens[sale_id]

    @view
    def get_sale_id_by_address(self, sale_address: ContractId) -> SaleId:
        """Sale id of a sale contract, 0 if the address is not a sale."""
        return self.sale_ids_by_address.get(sale_address, SaleId(0))

    @view
    def get_sale_address_by_id(self, sale_id: SaleId) -> ContractId:
        return self._get_setup(sale_id).sale_address

    @view
    def is_launched(self, sale_id: SaleId) -> bool:
        self._get_setup(sale_id)
        return self.launched[sale_id]

    @view
    def get_fee_wallet(self) -> Address:
        return self.fee_wallet

    @view
    def get_sale_info(self, sale_id: SaleId) -> SaleInfo:
        setup = self._get_setup(sale_id)
        return SaleInfo(
            sale_id=sale_id,
            owner=setup.owner,
            sale_address=setup.sale_address,
            payment_token=self.payment_tokens[sale_id],
            selling_token=setup.selling_token,
            total_value=setup.total_value,
            remaining_amount=setup.remaining_amount,
            total_invested=self.total_invested[sale_id],
            deposited_tokens=self.deposited_tokens[sale_id],
            committed_tokens=self.committed_tokens[sale_id],
            launched=self.launched[sale_id],
            token_list_timestamp=setup.token_list_timestamp,
            closed=self.closed[sale_id],
        )

    # Administration

    @public
    def set_fee_wallet(self, ctx: Context, fee_wallet: Address) -> None:
        if ctx.caller_id != self.owner:
            raise UnauthorizedCall(SaleLedgerErrors.UNAUTHORIZED)
        self.fee_wallet = fee_wallet

    # Helpers

    def _get_setup(self, sale_id: SaleId) -> SaleSetup:
        setup = self.setups.get(sale_id)
        if setup is None:
            raise SaleNotFound(SaleLedgerErrors.SALE_NOT_FOUND)
        return setup

    def _require_open(self, sale_id: SaleId) -> None:
        if not self.launched[sale_id]:
            raise ContractFail(SaleLedgerErrors.NOT_LAUNCHED)
        if self.closed[sale_id]:
            raise ContractFail(SaleLedgerErrors.CLOSED)

    def _only_factory(self, ctx: Context) -> None:
        if ctx.caller_id != self._resolve(SALE_FACTORY):
            raise UnauthorizedCall(SaleLedgerErrors.ONLY_FACTORY)

    def _only_sale(self, ctx: Context, sale_id: SaleId) -> SaleSetup:
        setup = self._get_setup(sale_id)
        if ctx.caller_id != setup.sale_address:
            raise UnauthorizedCall(SaleLedgerErrors.ONLY_SALE)
        return setup

    def _only_sale_owner(self, ctx: Context, sale_id: SaleId) -> SaleSetup:
        setup = self._get_setup(sale_id)
        if ctx.caller_id != setup.owner:
            raise UnauthorizedCall(SaleLedgerErrors.ONLY_SALE_OWNER)
        return setup
