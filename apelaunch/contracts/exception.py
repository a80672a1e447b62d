class ContractFail(Exception):
    """Raised by contract code to abort the current call.

    The runner rolls back every change made by the call before re-raising.
    """
    pass


class ContractDoesNotExist(ContractFail):
    pass


class ContractAlreadyExists(ContractFail):
    pass


class MethodNotFound(ContractFail):
    pass


class UnauthorizedCall(ContractFail):
    """Raised when a contract-only entry point is called by someone else."""
    pass
