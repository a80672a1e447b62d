from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, NamedTuple, Optional

from eth_utils import keccak, to_checksum_address

from apelaunch.conf.get_settings import get_global_settings
from apelaunch.conf.settings import LedgerSettings
from apelaunch.contracts.blueprint import Blueprint
from apelaunch.contracts.context import Context
from apelaunch.contracts.crypto import EthSignatureVerifier, SignatureVerifier
from apelaunch.contracts.exception import ContractAlreadyExists, ContractDoesNotExist, ContractFail, MethodNotFound
from apelaunch.contracts.types import Address, ContractId, is_public, is_view

logger = logging.getLogger(__name__)


class Event(NamedTuple):
    contract_id: ContractId
    name: str
    data: dict[str, Any]


class _Snapshot(NamedTuple):
    states: dict[ContractId, dict[str, Any]]
    contracts: dict[ContractId, Blueprint]
    events_count: int
    nonce: int


class Syscall:
    """Gateway a contract uses to reach the runner.

    Calls made through it are executed with the contract itself as caller and
    with the timestamp of the call currently being executed.
    """

    def __init__(self, runner: "Runner", contract_id: ContractId) -> None:
        self._runner = runner
        self._contract_id = contract_id

    @property
    def settings(self) -> LedgerSettings:
        return self._runner.settings

    def get_contract_id(self) -> ContractId:
        return self._contract_id

    def _contract_context(self) -> Context:
        return self._runner.current_context.as_contract(self._contract_id)

    def call_public_method(self, contract_id: ContractId, method_name: str, *args: Any, **kwargs: Any) -> Any:
        return self._runner.call_public_method(contract_id, method_name, self._contract_context(), *args, **kwargs)

    def call_view_method(self, contract_id: ContractId, method_name: str, *args: Any, **kwargs: Any) -> Any:
        return self._runner.call_view_method(contract_id, method_name, *args, **kwargs)

    def create_contract(self, blueprint_class: type[Blueprint], *args: Any, **kwargs: Any) -> ContractId:
        return self._runner.create_contract(None, blueprint_class, self._contract_context(), *args, **kwargs)

    def get_blueprint_class(self, contract_id: ContractId) -> type[Blueprint]:
        return type(self._runner.get_readonly_contract(contract_id))

    def recover_signer(self, message: bytes, signature: bytes) -> Optional[Address]:
        return self._runner.signature_verifier.recover(message, signature)

    def emit_event(self, name: str, **data: Any) -> None:
        self._runner.emit_event(self._contract_id, name, data)


class Runner:
    """Executes blueprint methods against in-memory contract state.

    Every public call is atomic. The outermost call takes a snapshot of every
    contract; if anything raises, including a nested contract-to-contract
    call, all contracts, created contracts, events and id counters go back to
    that snapshot.
    """

    def __init__(
        self,
        settings: Optional[LedgerSettings] = None,
        signature_verifier: Optional[SignatureVerifier] = None,
    ) -> None:
        self.settings = settings or get_global_settings()
        self.signature_verifier: SignatureVerifier = signature_verifier or EthSignatureVerifier()
        self._contracts: dict[ContractId, Blueprint] = {}
        self._events: list[Event] = []
        self._nonce = 0
        self._ctx_stack: list[Context] = []
        self._snapshot: Optional[_Snapshot] = None

    @property
    def current_context(self) -> Context:
        if not self._ctx_stack:
            raise ContractFail("no call is being executed")
        return self._ctx_stack[-1]

    def gen_contract_id(self, seed: str = "contract") -> ContractId:
        self._nonce += 1
        digest = keccak(text=f"{seed}:{self._nonce}")
        return ContractId(to_checksum_address(digest[-20:]))

    def has_contract(self, contract_id: ContractId) -> bool:
        return contract_id in self._contracts

    def get_readonly_contract(self, contract_id: ContractId) -> Blueprint:
        try:
            return self._contracts[contract_id]
        except KeyError:
            raise ContractDoesNotExist(f"contract {contract_id} does not exist") from None

    def create_contract(
        self,
        contract_id: Optional[ContractId],
        blueprint_class: type[Blueprint],
        ctx: Context,
        *args: Any,
        **kwargs: Any,
    ) -> ContractId:
        with self._transaction(f"{blueprint_class.__name__}.initialize"):
            if contract_id is None:
                contract_id = self.gen_contract_id(blueprint_class.__name__)
            if contract_id in self._contracts:
                raise ContractAlreadyExists(f"contract {contract_id} already exists")
            contract = blueprint_class()
            contract._bind(Syscall(self, contract_id))
            self._contracts[contract_id] = contract
            method = self._get_method(contract, "initialize", is_public)
            self._run(method, ctx, args, kwargs)
        logger.debug("contract created: %s %s", blueprint_class.__name__, contract_id)
        return contract_id

    def call_public_method(self, contract_id: ContractId, method_name: str, ctx: Context, *args: Any,
                           **kwargs: Any) -> Any:
        contract = self.get_readonly_contract(contract_id)
        method = self._get_method(contract, method_name, is_public)
        with self._transaction(f"{type(contract).__name__}.{method_name}"):
            return self._run(method, ctx, args, kwargs)

    def call_view_method(self, contract_id: ContractId, method_name: str, *args: Any, **kwargs: Any) -> Any:
        contract = self.get_readonly_contract(contract_id)
        method = self._get_method(contract, method_name, is_view)
        return method(*args, **kwargs)

    def emit_event(self, contract_id: ContractId, name: str, data: dict[str, Any]) -> None:
        logger.debug("event %s from %s: %r", name, contract_id, data)
        self._events.append(Event(contract_id, name, data))

    def get_events(self, name: Optional[str] = None, contract_id: Optional[ContractId] = None) -> list[Event]:
        return [
            event for event in self._events
            if (name is None or event.name == name) and (contract_id is None or event.contract_id == contract_id)
        ]

    def _get_method(self, contract: Blueprint, method_name: str, check: Callable[[Any], bool]) -> Callable[..., Any]:
        method = getattr(contract, method_name, None)
        if method is None or not check(method):
            raise MethodNotFound(f"{type(contract).__name__}.{method_name} is not an exposed method")
        return method

    def _run(self, method: Callable[..., Any], ctx: Context, args: tuple, kwargs: dict) -> Any:
        self._ctx_stack.append(ctx)
        try:
            return method(ctx, *args, **kwargs)
        finally:
            self._ctx_stack.pop()

    @contextmanager
    def _transaction(self, description: str) -> Iterator[None]:
        if self._snapshot is not None:
            # nested call, the outermost transaction owns the snapshot
            yield
            return

        self._snapshot = self._take_snapshot()
        try:
            yield
        except Exception as e:
            logger.debug("rolling back %s: %s", description, e)
            self._restore_snapshot(self._snapshot)
            raise
        finally:
            self._snapshot = None

    def _take_snapshot(self) -> _Snapshot:
        states = {cid: contract._get_state() for cid, contract in self._contracts.items()}
        return _Snapshot(
            states=copy.deepcopy(states),
            contracts=dict(self._contracts),
            events_count=len(self._events),
            nonce=self._nonce,
        )

    def _restore_snapshot(self, snapshot: _Snapshot) -> None:
        self._contracts = snapshot.contracts
        for contract_id, contract in self._contracts.items():
            contract._set_state(snapshot.states[contract_id])
        del self._events[snapshot.events_count:]
        self._nonce = snapshot.nonce
