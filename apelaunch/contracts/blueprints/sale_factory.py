from typing import Optional

from apelaunch.contracts.blueprints.registry import SALE_LEDGER, SALE_SETUP_HASHER, RegistryUser
from apelaunch.contracts.blueprints.sale import Sale
from apelaunch.contracts.blueprints.setup_hasher import SaleSetup
from apelaunch.contracts.context import Context
from apelaunch.contracts.exception import ContractFail, UnauthorizedCall
from apelaunch.contracts.types import ZERO_ADDRESS, Address, ContractId, SaleId, public, view
from apelaunch.contracts.vesting_codec import unpack_vesting_steps, validate_vesting_steps


class SaleStatus:
    """Sale creation states"""

    UNAPPROVED = 0  # No fingerprint approved for the id
    APPROVED = 1  # Fingerprint approved, sale contract not created yet
    CREATED = 2  # Sale contract created and stored in the ledger


class SaleFactoryErrors:
    """Common error messages"""

    UNAUTHORIZED = "Unauthorized action"
    NOT_OPERATOR = "only operators can approve sales"
    ALREADY_APPROVED = "sale already approved"
    INVALID_HASH = "setup hash must be 32 bytes"
    NOT_APPROVED = "non approved sale or modified params"
    ALREADY_CREATED = "sale already created"
    INVALID_SIGNATURE = "invalid signature"
    INVALID_OWNER = "invalid sale owner"
    INVALID_PRICING = "pricing must be positive"
    INVALID_TOTAL_VALUE = "total value must be positive"
    INVALID_LIMITS = "invalid investment limits"
    INVALID_FEE = "fee points above maximum"
    INVALID_PAYMENT_TOKEN_ID = "invalid payment token id"
    ALREADY_LISTED = "token list timestamp must be zero"
    INVALID_FUTURE_TOKEN = "future token sale is not a future token"


class NotOperator(ContractFail):
    pass


class NonApprovedSale(ContractFail):
    pass


class InvalidSignature(ContractFail):
    pass


class InvalidSaleSetup(ContractFail):
    pass


class SaleFactory(RegistryUser):
    """Creates sales in two steps.

    An operator first approves the fingerprint of a sale configuration,
    which reserves a sale id. Anyone can then create the sale by presenting
    the exact configuration, plus a validator signature when validators are
    configured.
    """

    REGISTRY_NAMES = (SALE_LEDGER, SALE_SETUP_HASHER)

    owner: Address
    operators: dict[Address, bool]
    validators: dict[Address, bool]
    sale_ids_by_hash: dict[bytes, SaleId]
    approved_hashes: dict[SaleId, bytes]
    created_sales: dict[SaleId, ContractId]

    @public
    def initialize(
        self,
        ctx: Context,
        registry_id: ContractId,
        operators: list[Address],
        validators: list[Address],
    ) -> None:
        self.owner = ctx.address
        self.operators = {operator: True for operator in operators}
        self.validators = {validator: True for validator in validators}
        self.sale_ids_by_hash = {}
        self.approved_hashes = {}
        self.created_sales = {}
        self._init_registry(registry_id)

    @public
    def approve_sale(self, ctx: Context, setup_hash: bytes) -> SaleId:
        """Approve a sale fingerprint and reserve its sale id."""
        if not self.operators.get(ctx.address, False):
            raise NotOperator(SaleFactoryErrors.NOT_OPERATOR)
        if len(setup_hash) != 32:
            raise ContractFail(SaleFactoryErrors.INVALID_HASH)
        if setup_hash in self.sale_ids_by_hash:
            raise ContractFail(SaleFactoryErrors.ALREADY_APPROVED)

        sale_id = self.syscall.call_public_method(self._resolve(SALE_LEDGER), "increment_next_sale_id")
        self.sale_ids_by_hash[setup_hash] = sale_id
        self.approved_hashes[sale_id] = setup_hash
        self.syscall.emit_event("SaleApproved", sale_id=sale_id, setup_hash=setup_hash, operator=ctx.address)
        return sale_id

    @public
    def new_sale(
        self,
        ctx: Context,
        sale_id: SaleId,
        setup: SaleSetup,
        extra_vesting_steps: list[int],
        payment_token: ContractId,
        signature: Optional[bytes] = None,
    ) -> ContractId:
        """Create the sale contract of an approved configuration."""
        if sale_id in self.created_sales:
            raise ContractFail(SaleFactoryErrors.ALREADY_CREATED)
        self._validate_setup(setup, extra_vesting_steps)

        hasher = self._resolve(SALE_SETUP_HASHER)
        setup_hash = self.syscall.call_view_method(
            hasher, "pack_and_hash_sale_configuration", setup, extra_vesting_steps, payment_token
        )
        if self.approved_hashes.get(sale_id) != setup_hash:
            raise NonApprovedSale(SaleFactoryErrors.NOT_APPROVED)

        if any(self.validators.values()):
            digest = self.syscall.call_view_method(hasher, "encode_for_signature", sale_id, setup_hash)
            signer = self.syscall.recover_signer(digest, signature) if signature else None
            if signer is None or not self.validators.get(signer, False):
                raise InvalidSignature(SaleFactoryErrors.INVALID_SIGNATURE)

        sale_address = self.syscall.create_contract(Sale, sale_id, self.registry_id)
        self.syscall.call_public_method(
            self._resolve(SALE_LEDGER),
            "new_sale",
            sale_id,
            setup,
            extra_vesting_steps,
            payment_token,
            sale_address,
        )
        self.created_sales[sale_id] = sale_address
        self.syscall.emit_event("NewSale", sale_id=sale_id, sale_address=sale_address, owner=setup.owner)
        self.log.info("sale %d created at %s", sale_id, sale_address)
        return sale_address

    def _validate_setup(self, setup: SaleSetup, extra_vesting_steps: list[int]) -> None:
        settings = self.syscall.settings
        if setup.owner == ZERO_ADDRESS:
            raise InvalidSaleSetup(SaleFactoryErrors.INVALID_OWNER)
        if setup.pricing_token <= 0 or setup.pricing_payment <= 0:
            raise InvalidSaleSetup(SaleFactoryErrors.INVALID_PRICING)
        if setup.total_value <= 0:
            raise InvalidSaleSetup(SaleFactoryErrors.INVALID_TOTAL_VALUE)
        if setup.min_amount < 0 or setup.cap_amount < setup.min_amount or setup.remaining_amount < 0:
            raise InvalidSaleSetup(SaleFactoryErrors.INVALID_LIMITS)
        if not 0 <= setup.payment_token_id < 256:
            raise InvalidSaleSetup(SaleFactoryErrors.INVALID_PAYMENT_TOKEN_ID)
        if not 0 <= setup.token_fee_points <= settings.MAX_TOKEN_FEE_POINTS:
            raise InvalidSaleSetup(SaleFactoryErrors.INVALID_FEE)
        if not 0 <= setup.payment_fee_points <= settings.MAX_PAYMENT_FEE_POINTS:
            raise InvalidSaleSetup(SaleFactoryErrors.INVALID_FEE)
        if not 0 <= setup.token_fee_investor_points <= settings.MAX_INVESTOR_FEE_POINTS:
            raise InvalidSaleSetup(SaleFactoryErrors.INVALID_FEE)
        if not 0 <= setup.extra_fee_points <= settings.FEE_POINTS_DENOMINATOR:
            raise InvalidSaleSetup(SaleFactoryErrors.INVALID_FEE)
        if setup.token_list_timestamp != 0:
            raise InvalidSaleSetup(SaleFactoryErrors.ALREADY_LISTED)

        # the packed words must decode to a valid schedule
        words = [setup.vesting_steps, *extra_vesting_steps]
        validate_vesting_steps(unpack_vesting_steps(words, settings), settings)

        if setup.future_token_sale_id != 0:
            future_setup = self.syscall.call_view_method(
                self._resolve(SALE_LEDGER), "get_setup", setup.future_token_sale_id
            )
            if not future_setup.is_future_token:
                raise InvalidSaleSetup(SaleFactoryErrors.INVALID_FUTURE_TOKEN)

    @public
    def set_operator(self, ctx: Context, operator: Address, active: bool) -> None:
        self._only_owner(ctx)
        self.operators[operator] = active
        self.syscall.emit_event("OperatorUpdated", operator=operator, active=active)

    @public
    def set_validator(self, ctx: Context, validator: Address, active: bool) -> None:
        self._only_owner(ctx)
        self.validators[validator] = active
        self.syscall.emit_event("ValidatorUpdated", validator=validator, active=active)

    @view
    def is_operator(self, address: Address) -> bool:
        return self.operators.get(address, False)

    @view
    def is_validator(self, address: Address) -> bool:
        return self.validators.get(address, False)

    @view
    def get_sale_id_by_setup_hash(self, setup_hash: bytes) -> SaleId:
        return self.sale_ids_by_hash.get(setup_hash, SaleId(0))

    @view
    def get_sale_status(self, sale_id: SaleId) -> int:
        if sale_id in self.created_sales:
            return SaleStatus.CREATED
        if sale_id in self.approved_hashes:
            return SaleStatus.APPROVED
        return SaleStatus.UNAPPROVED

    def _only_owner(self, ctx: Context) -> None:
        if ctx.caller_id != self.owner:
            raise UnauthorizedCall(SaleFactoryErrors.UNAUTHORIZED)
