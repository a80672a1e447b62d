from __future__ import annotations

from typing import Any, Callable, NewType, TypeVar

Address = NewType("Address", str)
ContractId = NewType("ContractId", str)
CallerId = Address | ContractId
Amount = NewType("Amount", int)
Timestamp = NewType("Timestamp", int)
SaleId = NewType("SaleId", int)
BundleId = NewType("BundleId", int)

ZERO_ADDRESS = Address("0x0000000000000000000000000000000000000000")

T = TypeVar("T", bound=Callable[..., Any])


def public(fn: T) -> T:
    """Mark a blueprint method as callable through the runner.

    Public methods receive a `Context` as first argument and run inside a
    transaction: any exception rolls back every write made during the call.
    """
    setattr(fn, "_is_public", True)
    return fn


def view(fn: T) -> T:
    """Mark a blueprint method as a read-only query."""
    setattr(fn, "_is_view", True)
    return fn


def is_public(fn: Any) -> bool:
    return getattr(fn, "_is_public", False)


def is_view(fn: Any) -> bool:
    return getattr(fn, "_is_view", False)
