from __future__ import annotations

import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from functools import cached_property
from types import MappingProxyType

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class ExecSpec:
    """A command to run in a sandbox.

    Exactly one of ``command`` (an argv sequence) or ``script`` (shell text)
    is set. Use the ``of`` and ``shell`` constructors rather than building
    one by hand.

    Attributes:
        command: Program and arguments, run without shell interpretation
        script: Shell text, run through bash
        env: Environment variables layered over the sandbox environment
        cwd: Working directory; relative values resolve against the sandbox
            working root
        timeout_seconds: Deadline for the whole call, or None for the
            sandbox's default

    Example:
        spec = ExecSpec.of("python", "-c", "print('hi')", timeout_seconds=10)
        spec = ExecSpec.shell("echo $GREETING", env={"GREETING": "hello"})
    """

    command: tuple[str, ...] = ()
    script: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.script is not None and self.command:
            raise ValueError("ExecSpec takes either a command or a script, not both")
        if self.script is None and not self.command:
            raise ValueError("Command cannot be empty")
        if self.script is not None and not self.script.strip():
            raise ValueError("Script cannot be empty")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        for name in self.env:
            if not _ENV_NAME_RE.match(name):
                raise ValueError(f"Invalid environment variable name: {name!r}")
        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @classmethod
    def of(
        cls,
        *argv: str,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout_seconds: float | None = None,
    ) -> ExecSpec:
        """Build a spec from a program and its arguments."""
        return cls(command=argv, env=env or {}, cwd=cwd, timeout_seconds=timeout_seconds)

    @classmethod
    def shell(
        cls,
        script: str,
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout_seconds: float | None = None,
    ) -> ExecSpec:
        """Build a spec from shell text."""
        return cls(script=script, env=env or {}, cwd=cwd, timeout_seconds=timeout_seconds)

    @property
    def is_shell(self) -> bool:
        return self.script is not None

    def display(self) -> str:
        """Render the command for logs and error messages."""
        if self.script is not None:
            return self.script
        return shlex.join(self.command)


@dataclass
class ExecResult:
    """Result from a completed sandbox exec operation.

    Only produced once process completion was observed, so returncode is
    always the real exit status.

    Attributes:
        stdout_bytes: Raw stdout bytes, chunks concatenated in arrival order
        stderr_bytes: Raw stderr bytes, chunks concatenated in arrival order
        returncode: Exit code from the command
        duration_seconds: Wall-clock time of the call
        command: The command that was executed (for debugging)

    Properties:
        stdout: Lazily decoded stdout as UTF-8 string
        stderr: Lazily decoded stderr as UTF-8 string
    """

    stdout_bytes: bytes
    stderr_bytes: bytes
    returncode: int
    duration_seconds: float = 0.0
    command: str = ""

    @cached_property
    def stdout(self) -> str:
        """Decode stdout as UTF-8 (lazy, cached)."""
        return self.stdout_bytes.decode("utf-8", errors="replace")

    @cached_property
    def stderr(self) -> str:
        """Decode stderr as UTF-8 (lazy, cached)."""
        return self.stderr_bytes.decode("utf-8", errors="replace")

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def failed(self) -> bool:
        return self.returncode != 0

    @property
    def merged_log(self) -> str:
        """stdout followed by stderr.

        A plain concatenation; the relative timing of the two streams is not
        preserved.
        """
        return self.stdout + self.stderr

    @property
    def has_stdout(self) -> bool:
        return bool(self.stdout_bytes)

    @property
    def has_stderr(self) -> bool:
        return bool(self.stderr_bytes)

    @property
    def has_output(self) -> bool:
        return self.has_stdout or self.has_stderr

    def summary(self) -> str:
        """One-line description for logs."""
        return (
            f"exit={self.returncode} duration={self.duration_seconds:.3f}s "
            f"stdout={len(self.stdout_bytes)}B stderr={len(self.stderr_bytes)}B"
        )


class FileType(StrEnum):
    """Kind of a directory entry."""

    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class FileEntry:
    """One row of a directory listing.

    Attributes:
        name: Base name of the entry
        type: FileType.FILE or FileType.DIRECTORY
        path: Path relative to the sandbox working root (absolute when the
            entry lies outside it)
        size: Size in bytes, 0 for directories
        modified_time: Last modification time (timezone-aware, UTC)
    """

    name: str
    type: FileType
    path: str
    size: int
    modified_time: datetime

    @property
    def is_file(self) -> bool:
        return self.type is FileType.FILE

    @property
    def is_directory(self) -> bool:
        return self.type is FileType.DIRECTORY


@dataclass(frozen=True)
class FileSpec:
    """A file to place in a sandbox, path relative to the working root."""

    path: str
    content: str


@dataclass(frozen=True)
class SandboxHandle:
    """Identity of a remote sandbox as reported by the control plane."""

    sandbox_id: str
    domain: str
    access_token: str | None = None
    timeout_seconds: int | None = None
    template_id: str | None = None
    envd_version: str | None = None
