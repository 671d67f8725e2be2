class PvmlabError(Exception):
    """Base class for every error the lab tool reports to the operator."""


class PreconditionError(PvmlabError):
    """
    Something the operation needs is missing or in the wrong state.
    Raised before any state is committed.
    """


class ExternalToolError(PvmlabError):
    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.output = output

    def __str__(self) -> str:
        if not self.output:
            return self.message
        return f"{self.message}\nQEMU output:\n{self.output}"


class StopFailedError(PvmlabError):
    def __init__(self, message: str, pid: int) -> None:
        super().__init__(message)
        self.pid = pid


class WaitTimeoutError(PvmlabError, TimeoutError):
    pass
