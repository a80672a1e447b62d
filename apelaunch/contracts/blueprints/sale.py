from typing import NamedTuple

from apelaunch.contracts.blueprints.bundle_ledger import Allocation
from apelaunch.contracts.blueprints.registry import BUNDLE_LEDGER, BUNDLE_MANAGER, SALE_LEDGER, RegistryUser
from apelaunch.contracts.blueprints.sale_ledger import Investment, SaleInfo
from apelaunch.contracts.context import Context
from apelaunch.contracts.exception import ContractFail, UnauthorizedCall
from apelaunch.contracts.types import Address, Amount, ContractId, SaleId, public, view


class SaleState:
    """Sale states as seen from the sale contract"""

    CREATED = 0  # Waiting for the seller to deposit the tokens
    LAUNCHED = 1  # Accepting investments
    LISTED = 2  # Token listed, allocations vesting
    CLOSED = 3  # Unsold tokens returned to the seller


class SaleEscrowInfo(NamedTuple):
    """Balances held by the sale contract."""

    selling_token_balance: int
    payment_token_balance: int
    withdrawable_payment: int
    unsold_tokens: int


class SaleErrors:
    """Common error messages"""

    ONLY_OWNER = "only the sale owner can call this method"
    ONLY_BUNDLE_MANAGER = "only the bundle manager can call this method"
    INVALID_AMOUNT = "invalid amount"


class Sale(RegistryUser):
    """Escrow contract of a single sale.

    Holds the selling tokens deposited by the seller and the payment tokens
    paid by investors. Pricing, limits and accounting live in the sale ledger;
    allocations bought here are recorded as bundles in the bundle ledger.
    """

    sale_id: SaleId
    factory_id: ContractId

    @public
    def initialize(self, ctx: Context, sale_id: SaleId, registry_id: ContractId) -> None:
        self.sale_id = sale_id
        self.factory_id = ContractId(ctx.caller_id)
        self._init_registry(registry_id)

    @public
    def launch(self, ctx: Context) -> None:
        """Deposit the selling tokens and open the sale for investments.

        The seller must have approved this contract to spend `amount + fee`
        selling tokens for the total value of the sale.
        """
        setup = self._only_owner(ctx)
        amount, fee = self._ledger_call("set_launched", self.sale_id)
        self._pull(setup.selling_token, setup.owner, amount + fee)
        self.syscall.emit_event("SaleLaunched", sale_id=self.sale_id, total_value=setup.total_value, amount=amount)
        self.log.info("sale %d launched: value=%d tokens=%d fee=%d", self.sale_id, setup.total_value, amount, fee)

    @public
    def extend(self, ctx: Context, extra_value: Amount) -> None:
        """Grow the sale by `extra_value` payment units, depositing the matching tokens."""
        setup = self._only_owner(ctx)
        amount, fee = self._ledger_call("extend_sale", self.sale_id, extra_value)
        self._pull(setup.selling_token, setup.owner, amount + fee)
        self.syscall.emit_event("SaleExtended", sale_id=self.sale_id, extra_value=extra_value, amount=amount)

    @public
    def invest(self, ctx: Context, value: Amount) -> None:
        """Buy tokens for `value` payment units.

        The investor must have approved this contract to spend `value` of the
        payment token. Tokens are not delivered: they are recorded as an
        allocation vesting in the investor's bundle.
        """
        investor = ctx.address
        investment: Investment = self._ledger_call("make_investment", self.sale_id, investor, value)

        payment_token = self._ledger_view("get_payment_token", self.sale_id)
        fee_wallet = self._ledger_view("get_fee_wallet")
        self._pull(payment_token, investor, value)
        if investment.payment_fee > 0:
            self.syscall.call_public_method(payment_token, "transfer", fee_wallet, investment.payment_fee)

        bundle_ledger = self._resolve(BUNDLE_LEDGER)
        investor_amount = investment.amount - investment.investor_fee
        fee_amount = investment.fee + investment.investor_fee
        bundle_id = self.syscall.call_public_method(
            bundle_ledger, "mint_or_extend", investor, self._allocation(investor_amount)
        )
        if fee_amount > 0:
            self.syscall.call_public_method(bundle_ledger, "mint_or_extend", fee_wallet, self._allocation(fee_amount))

        self.syscall.emit_event(
            "Invested",
            sale_id=self.sale_id,
            investor=investor,
            value=value,
            amount=investor_amount,
            fee=fee_amount,
            bundle_id=bundle_id,
        )

    @public
    def withdraw_payment(self, ctx: Context, amount: Amount) -> None:
        """Send collected payment to the seller, 0 meaning everything available."""
        setup = self._only_owner(ctx)
        amount = self._ledger_call("record_payment_withdrawal", self.sale_id, amount)
        payment_token = self._ledger_view("get_payment_token", self.sale_id)
        self.syscall.call_public_method(payment_token, "transfer", setup.owner, amount)
        self.syscall.emit_event("PaymentWithdrawn", sale_id=self.sale_id, to=setup.owner, amount=amount)

    @public
    def vest(self, ctx: Context, recipient: Address, amount: Amount) -> None:
        """Release vested tokens to `recipient`. Called by the bundle manager."""
        if ctx.caller_id != self._resolve(BUNDLE_MANAGER):
            raise UnauthorizedCall(SaleErrors.ONLY_BUNDLE_MANAGER)
        if amount <= 0:
            raise ContractFail(SaleErrors.INVALID_AMOUNT)
        setup = self._ledger_view("get_setup", self.sale_id)
        self.syscall.call_public_method(setup.selling_token, "transfer", recipient, amount)

    @public
    def withdraw_unsold_tokens(self, ctx: Context) -> Amount:
        """Close the sale and return the escrowed tokens no allocation owes."""
        setup = self._only_owner(ctx)
        unsold = self._ledger_call("close_sale", self.sale_id)
        if unsold > 0:
            self.syscall.call_public_method(setup.selling_token, "transfer", setup.owner, unsold)
        self.log.info("sale %d closed: unsold=%d", self.sale_id, unsold)
        return unsold

    @view
    def get_sale_state(self) -> int:
        info: SaleInfo = self._ledger_view("get_sale_info", self.sale_id)
        if info.closed:
            return SaleState.CLOSED
        if info.token_list_timestamp != 0:
            return SaleState.LISTED
        if info.launched:
            return SaleState.LAUNCHED
        return SaleState.CREATED

    @view
    def get_sale_info(self) -> SaleInfo:
        return self._ledger_view("get_sale_info", self.sale_id)

    @view
    def get_escrow_info(self) -> SaleEscrowInfo:
        info: SaleInfo = self._ledger_view("get_sale_info", self.sale_id)
        this = self.syscall.get_contract_id()
        unsold = 0 if info.closed else info.deposited_tokens - info.committed_tokens
        return SaleEscrowInfo(
            selling_token_balance=self.syscall.call_view_method(info.selling_token, "balance_of", this),
            payment_token_balance=self.syscall.call_view_method(info.payment_token, "balance_of", this),
            withdrawable_payment=self._ledger_view("get_withdrawable_payment", self.sale_id),
            unsold_tokens=unsold,
        )

    def _allocation(self, amount: int) -> Allocation:
        return Allocation(self.sale_id, Amount(amount), Amount(amount))

    def _pull(self, token: ContractId, owner: Address, amount: int) -> None:
        self.syscall.call_public_method(token, "transfer_from", owner, self.syscall.get_contract_id(), amount)

    def _ledger_call(self, method_name: str, *args):
        return self.syscall.call_public_method(self._resolve(SALE_LEDGER), method_name, *args)

    def _ledger_view(self, method_name: str, *args):
        return self.syscall.call_view_method(self._resolve(SALE_LEDGER), method_name, *args)

    def _only_owner(self, ctx: Context):
        setup = self._ledger_view("get_setup", self.sale_id)
        if ctx.caller_id != setup.owner:
            raise UnauthorizedCall(SaleErrors.ONLY_OWNER)
        return setup
