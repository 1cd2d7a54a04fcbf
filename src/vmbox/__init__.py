"""A Python client library for remote and local command sandboxes."""

from vmbox._auth import AuthHeaders, resolve_auth
from vmbox._base import Sandbox, SandboxFiles
from vmbox._defaults import SandboxDefaults
from vmbox._env import load_dotenv
from vmbox._lifecycle import LifecycleClient
from vmbox._local import LocalSandbox, LocalSandboxFiles
from vmbox._sandbox import RemoteSandbox, RemoteSandboxFiles
from vmbox._types import (
    ExecResult,
    ExecSpec,
    FileEntry,
    FileSpec,
    FileType,
    SandboxHandle,
)
from vmbox.exceptions import (
    SandboxClosedError,
    SandboxCreationError,
    SandboxError,
    SandboxExecutionError,
    SandboxFileError,
    SandboxInterruptedError,
    SandboxLifecycleError,
    SandboxListError,
    SandboxMakeDirError,
    SandboxNotFoundError,
    SandboxNotReadyError,
    SandboxPathNotFoundError,
    SandboxProtocolError,
    SandboxReadError,
    SandboxRemoveError,
    SandboxTimeoutError,
    SandboxWriteError,
    VmboxAuthenticationError,
    VmboxError,
)

__all__ = [
    "AuthHeaders",
    "ExecResult",
    "ExecSpec",
    "FileEntry",
    "FileSpec",
    "FileType",
    "LifecycleClient",
    "LocalSandbox",
    "LocalSandboxFiles",
    "RemoteSandbox",
    "RemoteSandboxFiles",
    "Sandbox",
    "SandboxClosedError",
    "SandboxCreationError",
    "SandboxDefaults",
    "SandboxError",
    "SandboxExecutionError",
    "SandboxFileError",
    "SandboxFiles",
    "SandboxHandle",
    "SandboxInterruptedError",
    "SandboxLifecycleError",
    "SandboxListError",
    "SandboxMakeDirError",
    "SandboxNotFoundError",
    "SandboxNotReadyError",
    "SandboxPathNotFoundError",
    "SandboxProtocolError",
    "SandboxReadError",
    "SandboxRemoveError",
    "SandboxTimeoutError",
    "SandboxWriteError",
    "VmboxAuthenticationError",
    "VmboxError",
    "load_dotenv",
    "resolve_auth",
]
