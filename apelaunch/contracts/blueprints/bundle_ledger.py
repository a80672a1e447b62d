import bisect
from typing import NamedTuple, Optional, Sequence

from apelaunch.conf.settings import LedgerSettings
from apelaunch.contracts.blueprints.registry import BUNDLE_MANAGER, SALE_LEDGER, RegistryUser
from apelaunch.contracts.context import Context
from apelaunch.contracts.exception import ContractFail, UnauthorizedCall
from apelaunch.contracts.types import ZERO_ADDRESS, Address, Amount, BundleId, ContractId, SaleId, Timestamp, public, view


class Allocation(NamedTuple):
    """A claim on the tokens of one sale.

    `full_amount` is the amount the vesting schedule applies to and
    `remaining_amount` what has not been withdrawn yet.
    """

    sale_id: SaleId
    full_amount: Amount
    remaining_amount: Amount


class BundleLedgerErrors:
    """Common error messages"""

    NOT_FOUND = "bundle does not exist"
    NOT_OWNER = "caller is not the bundle owner"
    ONLY_MANAGER = "only the bundle manager can call this method"
    ONLY_SALE = "only the sale contract can call this method"
    NOT_TRANSFERABLE = "bundle not transferable"
    INVALID_RECIPIENT = "invalid recipient"
    EMPTY_BUNDLE = "bundle must hold at least one allocation"
    DUPLICATED_SALE = "bundle cannot hold two allocations of the same sale"
    INVALID_ALLOCATION = "invalid allocation"
    INDEX_OUT_OF_BOUNDS = "owner index out of bounds"


class BundleNotFound(ContractFail):
    pass


class NotBundleOwner(ContractFail):
    pass


class InvalidAllocation(ContractFail):
    pass


class AmountOverflow(InvalidAllocation):
    pass


def pack_allocation(allocation: Allocation, settings: LedgerSettings) -> int:
    """Pack an allocation in one word: sale id, full amount, remaining amount.

    The sale id takes the most significant bits, the remaining amount the
    least significant ones.
    """
    amount_bits = settings.ALLOCATION_AMOUNT_BITS
    sale_id, full_amount, remaining_amount = allocation
    if not 0 < sale_id < (1 << settings.ALLOCATION_SALE_ID_BITS):
        raise AmountOverflow(f"sale id {sale_id} does not fit in {settings.ALLOCATION_SALE_ID_BITS} bits")
    if not 0 <= full_amount < (1 << amount_bits):
        raise AmountOverflow(f"amount {full_amount} does not fit in {amount_bits} bits")
    if not 0 <= remaining_amount <= full_amount:
        raise InvalidAllocation(BundleLedgerErrors.INVALID_ALLOCATION)
    return (sale_id << (2 * amount_bits)) | (full_amount << amount_bits) | remaining_amount


def unpack_allocation(word: int, settings: LedgerSettings) -> Allocation:
    amount_bits = settings.ALLOCATION_AMOUNT_BITS
    amount_mask = (1 << amount_bits) - 1
    return Allocation(
        SaleId(word >> (2 * amount_bits)),
        Amount((word >> amount_bits) & amount_mask),
        Amount(word & amount_mask),
    )


def withdrawable_amount(allocation: Allocation, vested_percentage: int) -> Amount:
    """Vested part of an allocation that has not been withdrawn yet."""
    vested = allocation.full_amount * vested_percentage // 100
    withdrawn = allocation.full_amount - allocation.remaining_amount
    return Amount(max(0, vested - withdrawn))


class BundleLedger(RegistryUser):
    """Registry of bundles: ownable, transferable lists of allocations.

    Each bundle holds allocations of distinct sales stored as packed words.
    Bundles are created by sales on investment and reshaped only by the
    bundle manager.
    """

    REGISTRY_NAMES = (SALE_LEDGER, BUNDLE_MANAGER)

    next_id: BundleId
    bundles: dict[BundleId, list[int]]  # Packed allocations
    owners: dict[BundleId, Address]
    owned_bundles: dict[Address, list[BundleId]]  # Sorted by id

    @public
    def initialize(self, ctx: Context, registry_id: ContractId) -> None:
        self.next_id = BundleId(1)
        self.bundles = {}
        self.owners = {}
        self.owned_bundles = {}
        self._init_registry(registry_id)

    # Minting and updates

    @public
    def mint_or_extend(self, ctx: Context, owner: Address, allocation: Allocation) -> Optional[BundleId]:
        """Give `allocation` to `owner`.

        While the sale is not listed, an allocation of a sale the owner already
        holds is added to the existing one. Otherwise a new bundle is minted.
        Returns the bundle that received the allocation.
        """
        self._only_sale_or_manager(ctx, allocation.sale_id)
        if allocation.remaining_amount == 0:
            return None

        if not self._sale_ledger_view("is_listed", allocation.sale_id):
            for bundle_id in self.owned_bundles.get(owner, []):
                allocations = self._get_allocations(bundle_id)
                for i, current in enumerate(allocations):
                    if current.sale_id != allocation.sale_id:
                        continue
                    allocations[i] = Allocation(
                        current.sale_id,
                        Amount(current.full_amount + allocation.full_amount),
                        Amount(current.remaining_amount + allocation.remaining_amount),
                    )
                    self._store(bundle_id, allocations)
                    self.syscall.emit_event("BundleUpdated", bundle_id=bundle_id)
                    return bundle_id

        return self._mint(owner, [allocation])

    @public
    def mint(self, ctx: Context, owner: Address, allocations: list[Allocation]) -> BundleId:
        self._only_manager(ctx)
        return self._mint(owner, allocations)

    @public
    def update_bundle(self, ctx: Context, bundle_id: BundleId, allocations: list[Allocation]) -> None:
        """Replace the allocations of a bundle, burning it when none is left."""
        self._only_manager(ctx)
        self.owner_of(bundle_id)
        if not allocations:
            self._burn(bundle_id)
            return
        self._store(bundle_id, allocations)
        self.syscall.emit_event("BundleUpdated", bundle_id=bundle_id)

    @public
    def burn(self, ctx: Context, bundle_id: BundleId) -> None:
        self._only_manager(ctx)
        self.owner_of(bundle_id)
        self._burn(bundle_id)

    # Owner operations

    @public
    def transfer_from(self, ctx: Context, from_: Address, to: Address, bundle_id: BundleId) -> None:
        owner = self.owner_of(bundle_id)
        if ctx.caller_id != owner or from_ != owner:
            raise NotBundleOwner(BundleLedgerErrors.NOT_OWNER)
        if to == ZERO_ADDRESS:
            raise ContractFail(BundleLedgerErrors.INVALID_RECIPIENT)
        for allocation in self._get_allocations(bundle_id):
            setup = self._sale_ledger_view("get_setup", allocation.sale_id)
            if not setup.token_is_transferable:
                raise ContractFail(BundleLedgerErrors.NOT_TRANSFERABLE)

        self._remove_from_owner(owner, bundle_id)
        self._add_to_owner(to, bundle_id)
        self.syscall.emit_event("Transfer", from_=owner, to=to, bundle_id=bundle_id)

    @public
    def withdraw(self, ctx: Context, bundle_id: BundleId, amounts: list[Amount]) -> None:
        """Withdraw vested tokens of each allocation, 0 meaning all available."""
        owner = self.owner_of(bundle_id)
        if ctx.caller_id != owner:
            raise NotBundleOwner(BundleLedgerErrors.NOT_OWNER)
        self.syscall.call_public_method(self._resolve(BUNDLE_MANAGER), "withdraw", bundle_id, owner, amounts)

    # Queries

    @view
    def exists(self, bundle_id: BundleId) -> bool:
        return bundle_id in self.owners

    @view
    def owner_of(self, bundle_id: BundleId) -> Address:
        owner = self.owners.get(bundle_id)
        if owner is None:
            raise BundleNotFound(BundleLedgerErrors.NOT_FOUND)
        return owner

    @view
    def balance_of(self, owner: Address) -> int:
        return len(self.owned_bundles.get(owner, []))

    @view
    def token_of_owner_by_index(self, owner: Address, index: int) -> BundleId:
        owned = self.owned_bundles.get(owner, [])
        if not 0 <= index < len(owned):
            raise ContractFail(BundleLedgerErrors.INDEX_OUT_OF_BOUNDS)
        return owned[index]

    @view
    def tokens_of_owner(self, owner: Address) -> list[BundleId]:
        return list(self.owned_bundles.get(owner, []))

    @view
    def get_bundle(self, bundle_id: BundleId) -> list[Allocation]:
        self.owner_of(bundle_id)
        return self._get_allocations(bundle_id)

    @view
    def get_packed_bundle(self, bundle_id: BundleId) -> list[int]:
        self.owner_of(bundle_id)
        return list(self.bundles[bundle_id])

    @view
    def withdrawables(self, bundle_id: BundleId, timestamp: Timestamp) -> tuple[list[SaleId], list[Amount]]:
        sale_ids: list[SaleId] = []
        amounts: list[Amount] = []
        for allocation in self.get_bundle(bundle_id):
            vested = self._sale_ledger_view("vested_percentage", allocation.sale_id, timestamp)
            sale_ids.append(allocation.sale_id)
            amounts.append(withdrawable_amount(allocation, vested))
        return sale_ids, amounts

    # Helpers

    def _mint(self, owner: Address, allocations: Sequence[Allocation]) -> BundleId:
        if owner == ZERO_ADDRESS:
            raise ContractFail(BundleLedgerErrors.INVALID_RECIPIENT)
        bundle_id = self.next_id
        self._store(bundle_id, allocations)
        self.next_id = BundleId(self.next_id + 1)
        self._add_to_owner(owner, bundle_id)
        self.syscall.emit_event("BundleMinted", bundle_id=bundle_id, owner=owner)
        return bundle_id

    def _burn(self, bundle_id: BundleId) -> None:
        owner = self.owners.pop(bundle_id)
        del self.bundles[bundle_id]
        self._remove_from_owner(owner, bundle_id)
        self.syscall.emit_event("BundleBurned", bundle_id=bundle_id, owner=owner)

    def _store(self, bundle_id: BundleId, allocations: Sequence[Allocation]) -> None:
        if not allocations:
            raise InvalidAllocation(BundleLedgerErrors.EMPTY_BUNDLE)
        sale_ids = [allocation.sale_id for allocation in allocations]
        if len(set(sale_ids)) != len(sale_ids):
            raise InvalidAllocation(BundleLedgerErrors.DUPLICATED_SALE)
        settings = self.syscall.settings
        self.bundles[bundle_id] = [pack_allocation(Allocation(*allocation), settings) for allocation in allocations]

    def _get_allocations(self, bundle_id: BundleId) -> list[Allocation]:
        settings = self.syscall.settings
        return [unpack_allocation(word, settings) for word in self.bundles[bundle_id]]

    def _add_to_owner(self, owner: Address, bundle_id: BundleId) -> None:
        self.owners[bundle_id] = owner
        bisect.insort(self.owned_bundles.setdefault(owner, []), bundle_id)

    def _remove_from_owner(self, owner: Address, bundle_id: BundleId) -> None:
        owned = self.owned_bundles[owner]
        owned.remove(bundle_id)
        if not owned:
            del self.owned_bundles[owner]

    def _sale_ledger_view(self, method_name: str, *args):
        return self.syscall.call_view_method(self._resolve(SALE_LEDGER), method_name, *args)

    def _only_manager(self, ctx: Context) -> None:
        if ctx.caller_id != self._resolve(BUNDLE_MANAGER):
            raise UnauthorizedCall(BundleLedgerErrors.ONLY_MANAGER)

    def _only_sale_or_manager(self, ctx: Context, sale_id: SaleId) -> None:
        if ctx.caller_id == self._resolve(BUNDLE_MANAGER):
            return
        if ctx.caller_id != self._sale_ledger_view("get_sale_address_by_id", sale_id):
            raise UnauthorizedCall(BundleLedgerErrors.ONLY_SALE)
