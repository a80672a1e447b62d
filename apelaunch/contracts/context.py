from __future__ import annotations

from dataclasses import dataclass

from apelaunch.contracts.types import Address, CallerId, ContractId, Timestamp


@dataclass(frozen=True, slots=True)
class Context:
    """Information about the call being executed."""
    caller_id: CallerId
    timestamp: Timestamp
    is_contract_call: bool = False

    @property
    def address(self) -> Address:
        return Address(self.caller_id)

    def as_contract(self, contract_id: ContractId) -> "Context":
        """Context used by a contract calling into another contract."""
        return Context(caller_id=contract_id, timestamp=self.timestamp, is_contract_call=True)
