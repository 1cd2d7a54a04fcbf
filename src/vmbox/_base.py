"""Backend-neutral sandbox contract.

Every backend implements exactly these methods; anything backend-specific
lives on the concrete class only.
"""

from __future__ import annotations

import builtins
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Any

from vmbox._types import ExecResult, ExecSpec, FileEntry, FileSpec
from vmbox.exceptions import SandboxClosedError, SandboxExecutionError


class SandboxFiles(ABC):
    """File operations on a sandbox.

    Relative paths resolve against the sandbox's working root.
    """

    @abstractmethod
    async def write(self, path: str, content: str) -> None:
        """Create or replace a file, creating parent directories as needed."""

    @abstractmethod
    async def read(self, path: str) -> str:
        """Return the file's content as text."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Return True if path exists. Failures report False."""

    @abstractmethod
    async def list(self, path: str = ".", max_depth: int = 1) -> builtins.list[FileEntry]:
        """List a directory down to max_depth levels (0 for unlimited)."""

    @abstractmethod
    async def delete(self, path: str, *, recursive: bool = False) -> None:
        """Delete a file or directory.

        Non-empty directories require recursive=True.
        """

    @abstractmethod
    async def mkdir(self, path: str) -> None:
        """Create a directory and its parents. Existing directories are fine."""

    async def setup(self, files: Iterable[FileSpec]) -> None:
        """Write several files in order."""
        for spec in files:
            await self.write(spec.path, spec.content)


class Sandbox(ABC):
    """An isolated environment that runs commands and holds files.

    Usable as an async context manager, which closes the sandbox on exit:

        async with await RemoteSandbox.create() as sandbox:
            result = await sandbox.exec(["echo", "hello"])
    """

    @property
    @abstractmethod
    def files(self) -> SandboxFiles:
        """File operations accessor. Raises SandboxClosedError once closed."""

    @property
    @abstractmethod
    def work_dir(self) -> str:
        """Absolute working root inside the sandbox."""

    @property
    @abstractmethod
    def is_closed(self) -> bool: ...

    @abstractmethod
    async def close(self) -> None:
        """Release the sandbox. Calling it again is a no-op."""

    @abstractmethod
    async def _exec(self, spec: ExecSpec) -> ExecResult: ...

    async def exec(
        self,
        command: ExecSpec | Sequence[str],
        *,
        check: bool = False,
    ) -> ExecResult:
        """Execute a command in the sandbox.

        Args:
            command: An ExecSpec, or a program and its arguments
            check: If True, raise SandboxExecutionError on non-zero returncode

        Returns:
            ExecResult with stdout, stderr, returncode and duration

        Raises:
            SandboxClosedError: If the sandbox is closed
            SandboxTimeoutError: If the command exceeds its timeout
            SandboxExecutionError: If check=True and the command returns
                non-zero, or if the backend fails to run it

        Example:
            result = await sandbox.exec(["echo", "hello"])
            result = await sandbox.exec(ExecSpec.shell("ls | wc -l", timeout_seconds=5))
        """
        if isinstance(command, str):
            raise TypeError("Pass ExecSpec.shell(...) for shell text, or a list for argv")
        spec = command if isinstance(command, ExecSpec) else ExecSpec.of(*command)
        self._ensure_open()

        result = await self._exec(spec)

        if check and result.returncode != 0:
            raise SandboxExecutionError(
                f"Command {spec.display()} failed with exit code {result.returncode}",
                exec_result=result,
            )
        return result

    def _ensure_open(self) -> None:
        if self.is_closed:
            raise SandboxClosedError(f"{self!r} is closed")

    async def __aenter__(self) -> Sandbox:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
