from typing import NamedTuple, Optional

from apelaunch.contracts.blueprints.bundle_ledger import Allocation, withdrawable_amount
from apelaunch.contracts.blueprints.registry import BUNDLE_LEDGER, SALE_LEDGER, RegistryUser
from apelaunch.contracts.context import Context
from apelaunch.contracts.exception import ContractFail, UnauthorizedCall
from apelaunch.contracts.types import Address, Amount, BundleId, ContractId, SaleId, public, view


class ManagerInfo(NamedTuple):
    owner: str
    fee_wallet: str
    fee_points: int


class BundleManagerErrors:
    """Common error messages"""

    UNAUTHORIZED = "Unauthorized action"
    ONLY_BUNDLE_LEDGER = "only the bundle ledger can call this method"
    NOT_OWNER = "caller is not the bundle owner"
    SPLIT_LENGTH_MISMATCH = "length of SAs does not match split"
    WITHDRAW_LENGTH_MISMATCH = "length of amounts does not match bundle"
    KEPT_TOO_LARGE = "kept amounts cannot be larger than remaining amounts"
    FEE_NOT_COVERED = "remaining amounts cannot cover the split fee"
    NOTHING_TO_SPLIT = "nothing to split"
    INVALID_AMOUNT = "invalid amount"
    NOT_AVAILABLE = "Cannot withdraw not available tokens"
    MERGEABLE = "NFTs are mergeable"
    MERGE_TOO_FEW = "at least two NFTs are required to merge"
    MERGE_DUPLICATED = "NFTs to merge must be distinct"
    MERGE_NOT_FOUND = "NFT does not exist"
    MERGE_OWNERS = "All NFTs must be owned by same owner"
    SWAP_MULTIPLE = "only bundles with a single allocation can be swapped"
    SWAP_NOT_FUTURE = "sale is not a future token"
    SWAP_NOT_LINKED = "new sale is not linked to the future token"
    FEE_TOO_HIGH = "fee points above maximum"


class LengthMismatch(ContractFail):
    pass


class KeptAmountTooLarge(ContractFail):
    pass


class NothingToSplit(ContractFail):
    pass


class NotMergeable(ContractFail):
    pass


class InvalidSwap(ContractFail):
    pass


class NotAvailableTokens(ContractFail):
    pass


def carve(allocation: Allocation, amount: int) -> tuple[Optional[Allocation], Allocation]:
    """Take `amount` out of the remaining amount of an allocation.

    The full amount moves in the same proportion, so both parts keep the
    vesting progress of the original. Returns `(piece, rest)`; `piece` is None
    when `amount` is zero.
    """
    if amount == 0:
        return None, allocation
    if amount == allocation.remaining_amount:
        moved_full = allocation.full_amount
    else:
        moved_full = amount * allocation.full_amount // allocation.remaining_amount
    piece = Allocation(allocation.sale_id, Amount(moved_full), Amount(amount))
    rest = Allocation(
        allocation.sale_id,
        Amount(allocation.full_amount - moved_full),
        Amount(allocation.remaining_amount - amount),
    )
    return piece, rest


class BundleManager(RegistryUser):
    """Reshapes bundles: split, merge, swap and withdraw.

    Split and merge charge `fee_points` of the amounts involved, paid to the
    sale ledger fee wallet as allocations of the same sales. Every change goes through
    the bundle ledger.
    """

    REGISTRY_NAMES = (SALE_LEDGER, BUNDLE_LEDGER)

    owner: Address
    fee_points: int

    @public
    def initialize(
        self,
        ctx: Context,
        registry_id: ContractId,
        fee_points: Optional[int] = None,
    ) -> None:
        settings = self.syscall.settings
        if fee_points is None:
            fee_points = settings.DEFAULT_BUNDLE_FEE_POINTS
        self._check_fee_points(fee_points)
        self.owner = ctx.address
        self.fee_points = fee_points
        self._init_registry(registry_id)

    @public
    def split(self, ctx: Context, bundle_id: BundleId, kept_amounts: list[Amount]) -> BundleId:
        """Move `kept_amounts` of each allocation to a new bundle.

        The fee is charged on the remaining amount of each allocation and
        taken from what stays in the original bundle, which is burned if
        nothing is left.
        """
        owner = self._only_bundle_owner(ctx, bundle_id)
        allocations = self._get_bundle(bundle_id)
        if len(kept_amounts) != len(allocations):
            raise LengthMismatch(BundleManagerErrors.SPLIT_LENGTH_MISMATCH)

        kept_side: list[Allocation] = []
        original_side: list[Allocation] = []
        fee_parts: list[Allocation] = []
        fees: list[int] = []
        for allocation, kept in zip(allocations, kept_amounts):
            if kept < 0:
                raise ContractFail(BundleManagerErrors.INVALID_AMOUNT)
            if kept > allocation.remaining_amount:
                raise KeptAmountTooLarge(BundleManagerErrors.KEPT_TOO_LARGE)
            fee = self._fee(allocation.remaining_amount)
            if kept + fee > allocation.remaining_amount:
                raise KeptAmountTooLarge(BundleManagerErrors.FEE_NOT_COVERED)

            kept_part, rest = carve(allocation, kept)
            fee_part, rest = carve(rest, fee)
            if kept_part is not None:
                kept_side.append(kept_part)
            if fee_part is not None:
                fee_parts.append(fee_part)
            if rest.remaining_amount > 0:
                original_side.append(rest)
            fees.append(fee)

        if not kept_side:
            raise NothingToSplit(BundleManagerErrors.NOTHING_TO_SPLIT)

        new_bundle_id = self._ledger_call("mint", owner, kept_side)
        self._ledger_call("update_bundle", bundle_id, original_side)
        self._pay_fees(fee_parts)
        self.syscall.emit_event(
            "BundleSplit",
            bundle_id=bundle_id,
            new_bundle_id=new_bundle_id,
            kept_amounts=list(kept_amounts),
            fees=fees,
        )
        return new_bundle_id

    @public
    def merge(self, ctx: Context, bundle_ids: list[BundleId]) -> BundleId:
        """Merge bundles into a new one, summing allocations of the same sale."""
        is_mergeable, message = self._check_mergeable(bundle_ids, ctx.address)
        if not is_mergeable:
            raise NotMergeable(message)

        totals: dict[SaleId, Allocation] = {}
        for bundle_id in bundle_ids:
            for allocation in self._get_bundle(bundle_id):
                current = totals.get(allocation.sale_id)
                if current is not None:
                    allocation = Allocation(
                        allocation.sale_id,
                        Amount(current.full_amount + allocation.full_amount),
                        Amount(current.remaining_amount + allocation.remaining_amount),
                    )
                totals[allocation.sale_id] = allocation

        merged: list[Allocation] = []
        fee_parts: list[Allocation] = []
        fees: list[int] = []
        for sale_id in sorted(totals):
            fee = self._fee(totals[sale_id].remaining_amount)
            fee_part, rest = carve(totals[sale_id], fee)
            if fee_part is not None:
                fee_parts.append(fee_part)
            if rest.remaining_amount > 0:
                merged.append(rest)
            fees.append(fee)

        for bundle_id in bundle_ids:
            self._ledger_call("burn", bundle_id)
        new_bundle_id = self._ledger_call("mint", ctx.address, merged)
        self._pay_fees(fee_parts)
        self.syscall.emit_event("BundleMerged", bundle_ids=list(bundle_ids), new_bundle_id=new_bundle_id, fees=fees)
        return new_bundle_id

    @public
    def swap(self, ctx: Context, bundle_id: BundleId, new_sale_id: SaleId) -> None:
        """Exchange a future-token allocation for one of the sale that delivers the real token."""
        self._only_bundle_owner(ctx, bundle_id)
        allocations = self._get_bundle(bundle_id)
        if len(allocations) != 1:
            raise InvalidSwap(BundleManagerErrors.SWAP_MULTIPLE)
        allocation = allocations[0]

        setup = self._ledger_view(SALE_LEDGER, "get_setup", allocation.sale_id)
        if not setup.is_future_token:
            raise InvalidSwap(BundleManagerErrors.SWAP_NOT_FUTURE)
        new_setup = self._ledger_view(SALE_LEDGER, "get_setup", new_sale_id)
        if new_setup.future_token_sale_id != allocation.sale_id:
            raise InvalidSwap(BundleManagerErrors.SWAP_NOT_LINKED)

        self.syscall.call_public_method(
            self._resolve(SALE_LEDGER), "reserve_tokens_for_swap", new_sale_id, allocation.remaining_amount
        )
        self._ledger_call("update_bundle", bundle_id, [allocation._replace(sale_id=new_sale_id)])
        self.syscall.emit_event(
            "BundleSwapped",
            bundle_id=bundle_id,
            old_sale_id=allocation.sale_id,
            new_sale_id=new_sale_id,
        )

    @public
    def withdraw(self, ctx: Context, bundle_id: BundleId, owner: Address, amounts: list[Amount]) -> None:
        """Release vested tokens of a bundle to `owner`. Called by the bundle ledger."""
        if ctx.caller_id != self._resolve(BUNDLE_LEDGER):
            raise UnauthorizedCall(BundleManagerErrors.ONLY_BUNDLE_LEDGER)
        allocations = self._get_bundle(bundle_id)
        if len(amounts) != len(allocations):
            raise LengthMismatch(BundleManagerErrors.WITHDRAW_LENGTH_MISMATCH)

        updated: list[Allocation] = []
        released: list[tuple[SaleId, int]] = []
        for allocation, requested in zip(allocations, amounts):
            vested = self._ledger_view(SALE_LEDGER, "vested_percentage", allocation.sale_id, ctx.timestamp)
            available = withdrawable_amount(allocation, vested)
            amount = available if requested == 0 else requested
            if requested < 0 or amount > available:
                raise NotAvailableTokens(BundleManagerErrors.NOT_AVAILABLE)
            if amount > 0:
                released.append((allocation.sale_id, amount))
                allocation = allocation._replace(remaining_amount=Amount(allocation.remaining_amount - amount))
            if allocation.remaining_amount > 0:
                updated.append(allocation)

        if not released:
            raise NotAvailableTokens(BundleManagerErrors.NOT_AVAILABLE)

        self._ledger_call("update_bundle", bundle_id, updated)
        for sale_id, amount in released:
            sale_address = self._ledger_view(SALE_LEDGER, "get_sale_address_by_id", sale_id)
            self.syscall.call_public_method(sale_address, "vest", owner, amount)
        self.syscall.emit_event(
            "Withdrawn",
            bundle_id=bundle_id,
            owner=owner,
            sale_ids=[sale_id for sale_id, _ in released],
            amounts=[amount for _, amount in released],
        )
        self.log.debug("bundle %d withdrawn by %s: %r", bundle_id, owner, released)

    @view
    def are_mergeable(self, bundle_ids: list[BundleId]) -> tuple[bool, str]:
        return self._check_mergeable(bundle_ids, None)

    @view
    def get_manager_info(self) -> ManagerInfo:
        fee_wallet = self._ledger_view(SALE_LEDGER, "get_fee_wallet")
        return ManagerInfo(owner=self.owner, fee_wallet=fee_wallet, fee_points=self.fee_points)

    @public
    def set_fee_points(self, ctx: Context, fee_points: int) -> None:
        self._only_owner(ctx)
        self._check_fee_points(fee_points)
        self.fee_points = fee_points

    def _check_mergeable(self, bundle_ids: list[BundleId], caller: Optional[Address]) -> tuple[bool, str]:
        if len(bundle_ids) < 2:
            return False, BundleManagerErrors.MERGE_TOO_FEW
        if len(set(bundle_ids)) != len(bundle_ids):
            return False, BundleManagerErrors.MERGE_DUPLICATED

        owners = set()
        bundle_ledger = self._resolve(BUNDLE_LEDGER)
        for bundle_id in bundle_ids:
            if not self.syscall.call_view_method(bundle_ledger, "exists", bundle_id):
                return False, BundleManagerErrors.MERGE_NOT_FOUND
            owners.add(self.syscall.call_view_method(bundle_ledger, "owner_of", bundle_id))
        if caller is not None:
            owners.add(caller)
        if len(owners) != 1:
            return False, BundleManagerErrors.MERGE_OWNERS
        return True, BundleManagerErrors.MERGEABLE

    def _pay_fees(self, fee_parts: list[Allocation]) -> None:
        fee_wallet = self._ledger_view(SALE_LEDGER, "get_fee_wallet")
        for fee_part in fee_parts:
            self._ledger_call("mint_or_extend", fee_wallet, fee_part)

    def _fee(self, amount: int) -> int:
        return amount * self.fee_points // self.syscall.settings.FEE_POINTS_DENOMINATOR

    def _check_fee_points(self, fee_points: int) -> None:
        if not 0 <= fee_points <= self.syscall.settings.MAX_BUNDLE_FEE_POINTS:
            raise ContractFail(BundleManagerErrors.FEE_TOO_HIGH)

    def _get_bundle(self, bundle_id: BundleId) -> list[Allocation]:
        return self._ledger_view(BUNDLE_LEDGER, "get_bundle", bundle_id)

    def _ledger_call(self, method_name: str, *args):
        return self.syscall.call_public_method(self._resolve(BUNDLE_LEDGER), method_name, *args)

    def _ledger_view(self, name: str, method_name: str, *args):
        return self.syscall.call_view_method(self._resolve(name), method_name, *args)

    def _only_owner(self, ctx: Context) -> None:
        if ctx.caller_id != self.owner:
            raise UnauthorizedCall(BundleManagerErrors.UNAUTHORIZED)

    def _only_bundle_owner(self, ctx: Context, bundle_id: BundleId) -> Address:
        owner = self._ledger_view(BUNDLE_LEDGER, "owner_of", bundle_id)
        if ctx.caller_id != owner:
            raise UnauthorizedCall(BundleManagerErrors.NOT_OWNER)
        return owner
