from typing import NamedTuple, Sequence

from eth_abi import encode
from eth_utils import keccak

from apelaunch.contracts.blueprint import Blueprint
from apelaunch.contracts.context import Context
from apelaunch.contracts.types import (
    ZERO_ADDRESS,
    Address,
    Amount,
    ContractId,
    SaleId,
    Timestamp,
    public,
    view,
)
from apelaunch.contracts.vesting_codec import (
    calculate_vested_percentage,
    unpack_vesting_steps,
    validate_and_pack_vesting_steps,
    VestingStep,
)


class SaleSetup(NamedTuple):
    """Economic configuration of a sale, fixed when the sale is approved."""

    owner: Address
    min_amount: Amount  # Minimum single investment, in payment units
    cap_amount: Amount  # Maximum cumulative investment per investor
    remaining_amount: Amount  # Unsold capacity, in payment units (set on launch)
    pricing_token: int
    pricing_payment: int
    payment_token_id: int
    vesting_steps: int  # First packed vesting word
    selling_token: ContractId
    total_value: Amount  # Sale size, in payment units
    token_is_transferable: bool
    token_fee_points: int  # Token fee charged to the seller
    extra_fee_points: int
    payment_fee_points: int  # Payment fee forwarded to the fee wallet
    sale_address: ContractId = ContractId(ZERO_ADDRESS)
    is_future_token: bool = False
    future_token_sale_id: SaleId = SaleId(0)
    token_list_timestamp: Timestamp = Timestamp(0)
    token_fee_investor_points: int = 0  # Token fee charged to the investor


# ABI layout used to fingerprint a setup, one entry per SaleSetup field.
SETUP_ABI_TYPES = (
    "address",  # owner
    "uint256",  # min_amount
    "uint256",  # cap_amount
    "uint256",  # remaining_amount
    "uint256",  # pricing_token
    "uint256",  # pricing_payment
    "uint8",  # payment_token_id
    "uint256",  # vesting_steps
    "address",  # selling_token
    "uint256",  # total_value
    "bool",  # token_is_transferable
    "uint16",  # token_fee_points
    "uint16",  # extra_fee_points
    "uint16",  # payment_fee_points
    "address",  # sale_address
    "bool",  # is_future_token
    "uint256",  # future_token_sale_id
    "uint256",  # token_list_timestamp
    "uint16",  # token_fee_investor_points
)


def hash_sale_configuration(
    setup: SaleSetup,
    extra_vesting_steps: Sequence[int],
    payment_token: ContractId,
) -> bytes:
    """Keccak-256 fingerprint of a setup, its extra vesting words and payment token."""
    return keccak(
        encode(
            [*SETUP_ABI_TYPES, "uint256[]", "address"],
            [*setup, list(extra_vesting_steps), payment_token],
        )
    )


def hash_for_signature(sale_id: SaleId, setup_hash: bytes) -> bytes:
    """Digest a validator signs to vouch for `setup_hash` under `sale_id`."""
    return keccak(encode(["uint256", "bytes32"], [sale_id, setup_hash]))


class SaleSetupHasher(Blueprint):
    """Stateless helper contract that fingerprints sale configurations.

    The factory approves a sale by its fingerprint and later recomputes it
    from the parameters given at creation, so any change to the setup, the
    vesting schedule or the payment token invalidates the approval.
    """

    @public
    def initialize(self, ctx: Context) -> None:
        pass

    @view
    def pack_and_hash_sale_configuration(
        self,
        setup: SaleSetup,
        extra_vesting_steps: list[int],
        payment_token: ContractId,
    ) -> bytes:
        return hash_sale_configuration(setup, extra_vesting_steps, payment_token)

    @view
    def encode_for_signature(self, sale_id: SaleId, setup_hash: bytes) -> bytes:
        return hash_for_signature(sale_id, setup_hash)

    @view
    def validate_and_pack_vesting_steps(self, steps: list[tuple[int, int]]) -> tuple[list[int], str]:
        return validate_and_pack_vesting_steps(steps, self.syscall.settings)

    @view
    def unpack_vesting_steps(self, words: list[int]) -> list[VestingStep]:
        return unpack_vesting_steps(words, self.syscall.settings)

    @view
    def calculate_vested_percentage(
        self,
        words: list[int],
        list_timestamp: Timestamp,
        timestamp: Timestamp,
    ) -> int:
        return calculate_vested_percentage(words, list_timestamp, timestamp, self.syscall.settings)
