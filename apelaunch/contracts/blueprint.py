from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from apelaunch.contracts.runner import Syscall

# Attributes bound by the runner. They are not contract state and are never
# snapshotted or restored.
RUNTIME_ATTRIBUTES = frozenset({"syscall", "log"})


class Blueprint:
    """Base class of every contract executed by the runner.

    Subclasses declare their state as class annotations and initialize it in
    a public `initialize` method. State must be built from plain values
    (ints, strings, bytes, tuples, lists and dicts) so it can be copied.
    """

    syscall: "Syscall"
    log: logging.Logger

    def _bind(self, syscall: "Syscall") -> None:
        self.syscall = syscall
        self.log = logging.getLogger(f"apelaunch.contracts.{type(self).__name__}")

    def _get_state(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if k not in RUNTIME_ATTRIBUTES}

    def _set_state(self, state: dict[str, Any]) -> None:
        runtime = {k: v for k, v in self.__dict__.items() if k in RUNTIME_ATTRIBUTES}
        self.__dict__.clear()
        self.__dict__.update(state)
        self.__dict__.update(runtime)
