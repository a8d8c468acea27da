"""Error types raised by repo-updater."""

from collections.abc import Sequence


class UpdaterError(Exception):
    """Base class for all repo-updater errors."""


class CommandTimeoutError(UpdaterError, TimeoutError):
    """Raised when a subprocess exceeds its time budget and was killed."""

    def __init__(self, cmd: Sequence[str], timeout: float) -> None:
        self.cmd = tuple(cmd)
        self.timeout = timeout
        super().__init__(f"Command {' '.join(self.cmd)!r} timed out after {timeout:g}s")


class SpawnError(UpdaterError):
    """Raised when a subprocess could not be started at all."""


class ProcessError(UpdaterError):
    """Raised when a command exits non-zero or its output cannot be parsed."""

    def __init__(
        self, message: str, *, cmd: Sequence[str] = (), returncode: int | None = None, output: str = ""
    ) -> None:
        super().__init__(message)
        self.cmd = tuple(cmd)
        self.returncode = returncode
        self.output = output


class ValidationError(UpdaterError):
    """Raised for bad input, before any subprocess runs."""


class ConflictDetectedError(UpdaterError):
    """Raised when a merge or rebase left conflict or failure markers behind."""


class RollbackFailedError(UpdaterError):
    """Raised when restoring the rollback point failed.

    The repository may be left in an inconsistent state; no automated recovery remains.
    """

    def __init__(self, message: str, *, rollback_commit: str) -> None:
        super().__init__(message)
        self.rollback_commit = rollback_commit


class OperationInProgressError(UpdaterError):
    """Raised when an exclusive operation is requested while it is already running."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"{operation} already in progress")
        self.operation = operation
