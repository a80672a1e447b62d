from typing import Optional

from apelaunch.contracts.blueprint import Blueprint
from apelaunch.contracts.context import Context
from apelaunch.contracts.exception import ContractFail, UnauthorizedCall
from apelaunch.contracts.types import Address, ContractId, public, view

# Names under which the platform components are registered.
SALE_SETUP_HASHER = "SaleSetupHasher"
SALE_LEDGER = "SaleLedger"
SALE_FACTORY = "SaleFactory"
BUNDLE_LEDGER = "BundleLedger"
BUNDLE_MANAGER = "BundleManager"


class RegistryErrors:
    """Common error messages"""

    UNAUTHORIZED = "only the registry owner can call this method"
    LENGTH_MISMATCH = "names and contract ids must have the same length"
    NOT_REGISTERED = "is not registered"
    ONLY_REGISTRY = "only the registry can push updates"


class NameNotRegistered(ContractFail):
    pass


class Registry(Blueprint):
    """Maps component names to contract ids.

    Registering a name pushes `update_registry` to every registered contract
    that consumes the registry, so components never keep a stale address.
    """

    owner: Address
    contracts: dict[str, ContractId]
    names: list[str]  # Registration order

    @public
    def initialize(self, ctx: Context) -> None:
        self.owner = ctx.address
        self.contracts = {}
        self.names = []

    @public
    def register(self, ctx: Context, names: list[str], contract_ids: list[ContractId]) -> None:
        """Register or replace components, then notify every registered consumer."""
        self._only_owner(ctx)
        if len(names) != len(contract_ids):
            raise ContractFail(RegistryErrors.LENGTH_MISMATCH)

        for name, contract_id in zip(names, contract_ids):
            if name not in self.contracts:
                self.names.append(name)
            self.contracts[name] = contract_id

        self.syscall.emit_event("RegistryUpdated", names=list(names), contract_ids=list(contract_ids))

        for name in self.names:
            contract_id = self.contracts[name]
            if issubclass(self.syscall.get_blueprint_class(contract_id), RegistryUser):
                self.syscall.call_public_method(contract_id, "update_registry")

    @public
    def change_owner(self, ctx: Context, new_owner: Address) -> None:
        self._only_owner(ctx)
        self.owner = new_owner

    @view
    def get(self, name: str) -> ContractId:
        contract_id = self.contracts.get(name)
        if contract_id is None:
            raise NameNotRegistered(f"{name} {RegistryErrors.NOT_REGISTERED}")
        return contract_id

    @view
    def get_or_none(self, name: str) -> Optional[ContractId]:
        return self.contracts.get(name)

    @view
    def get_names(self) -> list[str]:
        return list(self.names)

    def _only_owner(self, ctx: Context) -> None:
        if ctx.caller_id != self.owner:
            raise UnauthorizedCall(RegistryErrors.UNAUTHORIZED)


class RegistryUser(Blueprint):
    """Base for contracts that look up other components by name.

    Names listed in `REGISTRY_NAMES` are cached and refreshed whenever the
    registry pushes an update. Other names are resolved on every call.
    """

    REGISTRY_NAMES: tuple[str, ...] = ()

    registry_id: ContractId
    registry_cache: dict[str, ContractId]

    def _init_registry(self, registry_id: ContractId) -> None:
        self.registry_id = registry_id
        self._refresh_registry()

    def _refresh_registry(self) -> None:
        self.registry_cache = {}
        for name in self.REGISTRY_NAMES:
            contract_id = self.syscall.call_view_method(self.registry_id, "get_or_none", name)
            if contract_id is not None:
                self.registry_cache[name] = contract_id

    @public
    def update_registry(self, ctx: Context) -> None:
        if ctx.caller_id != self.registry_id:
            raise UnauthorizedCall(RegistryErrors.ONLY_REGISTRY)
        self._refresh_registry()
        self.log.debug("registry refreshed: %r", self.registry_cache)

    def _resolve(self, name: str) -> ContractId:
        contract_id = self.registry_cache.get(name)
        if contract_id is None:
            contract_id = self.syscall.call_view_method(self.registry_id, "get", name)
        return contract_id
