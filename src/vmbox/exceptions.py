"""Exception hierarchy for sandbox operations."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vmbox._types import ExecResult


class VmboxError(Exception):
    """Base exception for all vmbox errors."""


class VmboxAuthenticationError(VmboxError):
    """Raised when no API key is available for a control-plane call."""


class SandboxError(VmboxError):
    """Base exception for sandbox operations.

    Errors raised in response to an HTTP reply carry the raw status code and
    body so failures can be diagnosed without turning up logging.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SandboxCreationError(SandboxError):
    """Raised when a sandbox could not be created or reconnected to."""

    def __init__(
        self,
        message: str,
        *,
        sandbox_id: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.sandbox_id = sandbox_id


class SandboxNotFoundError(SandboxCreationError):
    """Raised when reconnecting to a sandbox ID the control plane does not know."""


class SandboxLifecycleError(SandboxError):
    """Raised when destroying a sandbox or extending its timeout fails."""

    def __init__(
        self,
        message: str,
        *,
        sandbox_id: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.sandbox_id = sandbox_id


class SandboxNotReadyError(SandboxError):
    """Raised when a sandbox's command service does not come up before the deadline."""

    def __init__(self, message: str, *, timeout_seconds: float | None = None) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class SandboxClosedError(SandboxError):
    """Raised when an operation is attempted on a closed sandbox."""


class SandboxTimeoutError(SandboxError):
    """Raised when a sandbox operation exceeds its deadline.

    timeout_seconds is the configured deadline, not the elapsed time.
    """

    def __init__(self, message: str, *, timeout_seconds: float | None = None) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class SandboxExecutionError(SandboxError):
    """Raised when command execution fails inside a sandbox.

    Access execution details via exec_result when the command completed
    (for example with check=True and a non-zero exit code).
    """

    def __init__(
        self,
        message: str,
        *,
        exec_result: ExecResult | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.exec_result = exec_result


class SandboxProtocolError(SandboxExecutionError):
    """Raised when a streamed response cannot be decoded."""


class SandboxInterruptedError(SandboxExecutionError):
    """Raised when the connection drops while a response is being received."""


class SandboxFileError(SandboxError):
    """Raised when a file operation fails in the sandbox.

    This is a sandbox infrastructure error, not a user code error.
    """

    def __init__(
        self,
        message: str,
        *,
        filepath: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.filepath = filepath


class SandboxPathNotFoundError(SandboxFileError):
    """Raised when a file operation targets a path that does not exist."""


class SandboxWriteError(SandboxFileError):
    """Raised when a file could not be written."""


class SandboxReadError(SandboxFileError):
    """Raised when a file could not be read."""


class SandboxListError(SandboxFileError):
    """Raised when a directory could not be listed."""


class SandboxRemoveError(SandboxFileError):
    """Raised when a file or directory could not be removed."""


class SandboxMakeDirError(SandboxFileError):
    """Raised when a directory could not be created."""
