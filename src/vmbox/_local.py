"""Local-process backend.

Runs commands as child processes of the current interpreter inside a working
directory on the host. There is no isolation: use it for tests and trusted
workloads only.
"""

from __future__ import annotations

import asyncio
import builtins
import contextlib
import errno
import logging
import os
import shutil
import signal
import tempfile
import time
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from vmbox._base import Sandbox, SandboxFiles
from vmbox._defaults import DEFAULT_COMMAND_TIMEOUT_SECONDS
from vmbox._types import ExecResult, ExecSpec, FileEntry, FileSpec, FileType
from vmbox.exceptions import (
    SandboxExecutionError,
    SandboxListError,
    SandboxMakeDirError,
    SandboxPathNotFoundError,
    SandboxReadError,
    SandboxRemoveError,
    SandboxTimeoutError,
    SandboxWriteError,
)

logger = logging.getLogger(__name__)


class LocalSandbox(Sandbox):
    """Sandbox backed by a host directory and host processes.

    Argv commands are spawned directly; shell specs run through ``bash -c``.
    Environment overlays are layered over the host environment.

    Example:
        async with await LocalSandbox.create() as sandbox:
            await sandbox.files.write("input.txt", "data")
            result = await sandbox.exec(["wc", "-c", "input.txt"])
    """

    def __init__(
        self,
        work_dir: str | os.PathLike[str] | None = None,
        *,
        cleanup_on_close: bool | None = None,
        default_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        """Use work_dir as the working root, or a fresh temporary directory.

        Args:
            work_dir: Existing directory to use (default: a new temp directory)
            cleanup_on_close: Delete the directory on close. Defaults to True
                for temp directories and False for caller-supplied ones.
            default_timeout_seconds: Deadline for exec calls without their own
        """
        if work_dir is None:
            root = Path(tempfile.mkdtemp(prefix="vmbox-"))
            cleanup = True if cleanup_on_close is None else cleanup_on_close
        else:
            root = Path(work_dir)
            if not root.is_dir():
                raise ValueError(f"Working directory does not exist: {root}")
            cleanup = bool(cleanup_on_close)

        # Resolved so that pwd inside the sandbox prints the same path
        self._work_dir = root.resolve()
        self._cleanup_on_close = cleanup
        self._default_timeout_seconds = default_timeout_seconds
        self._files = LocalSandboxFiles(self)
        self._closed = False
        logger.warning("LocalSandbox at %s provides no isolation", self._work_dir)

    @classmethod
    async def create(
        cls,
        work_dir: str | os.PathLike[str] | None = None,
        *,
        files: Iterable[FileSpec] | None = None,
        cleanup_on_close: bool | None = None,
        default_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> LocalSandbox:
        """Build a sandbox and write its initial files."""
        sandbox = cls(
            work_dir,
            cleanup_on_close=cleanup_on_close,
            default_timeout_seconds=default_timeout_seconds,
        )
        if files:
            try:
                await sandbox.files.setup(files)
            except BaseException:
                await sandbox.close()
                raise
        return sandbox

    @property
    def work_dir(self) -> str:
        return str(self._work_dir)

    @property
    def path(self) -> Path:
        """Working root as a host Path."""
        return self._work_dir

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def files(self) -> LocalSandboxFiles:
        self._ensure_open()
        return self._files

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<LocalSandbox {self._work_dir} ({state})>"

    def _resolve(self, path: str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return self._work_dir / candidate

    async def _exec(self, spec: ExecSpec) -> ExecResult:
        timeout = spec.timeout_seconds or self._default_timeout_seconds
        cwd = self._resolve(spec.cwd) if spec.cwd else self._work_dir
        env = {**os.environ, **spec.env}
        argv = ["bash", "-c", spec.script] if spec.script is not None else list(spec.command)

        logger.debug("Executing locally in %s: %s", cwd, spec.display())
        start_time = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                # Own process group, so a timeout kills the whole tree
                start_new_session=True,
            )
        except OSError as e:
            raise SandboxExecutionError(f"Failed to start {spec.display()}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError as e:
            await _kill(process)
            raise SandboxTimeoutError(
                f"Command {spec.display()} timed out after {timeout}s",
                timeout_seconds=timeout,
            ) from e
        except asyncio.CancelledError:
            await _kill(process)
            raise

        assert process.returncode is not None
        return ExecResult(
            stdout_bytes=stdout,
            stderr_bytes=stderr,
            returncode=process.returncode,
            duration_seconds=time.monotonic() - start_time,
            command=spec.display(),
        )

    async def close(self) -> None:
        """Mark the sandbox closed, deleting a temporary working root."""
        if self._closed:
            logger.debug("close() called on already-closed %r", self)
            return

        self._closed = True
        if self._cleanup_on_close:
            try:
                await asyncio.to_thread(shutil.rmtree, self._work_dir)
            except OSError as e:
                logger.warning("Failed to remove %s: %s", self._work_dir, e)
            else:
                logger.debug("Removed %s", self._work_dir)


async def _kill(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGKILL)
    await process.wait()


class LocalSandboxFiles(SandboxFiles):
    """File operations on a LocalSandbox, run in worker threads."""

    def __init__(self, sandbox: LocalSandbox) -> None:
        self._sandbox = sandbox

    def _path(self, path: str) -> Path:
        self._sandbox._ensure_open()
        return self._sandbox._resolve(path)

    async def write(self, path: str, content: str) -> None:
        target = self._path(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content.encode("utf-8"))

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise SandboxWriteError(
                f"Failed to write file '{target}': {e}", filepath=str(target)
            ) from e

    async def read(self, path: str) -> str:
        target = self._path(path)
        try:
            data = await asyncio.to_thread(target.read_bytes)
        except OSError as e:
            raise SandboxReadError(
                f"Failed to read file '{target}': {e}", filepath=str(target)
            ) from e
        return data.decode("utf-8", errors="replace")

    async def exists(self, path: str) -> bool:
        target = self._path(path)
        try:
            return await asyncio.to_thread(target.exists)
        except OSError:
            return False

    async def list(self, path: str = ".", max_depth: int = 1) -> builtins.list[FileEntry]:
        target = self._path(path)
        root = self._sandbox.path

        def _list() -> builtins.list[FileEntry]:
            if not target.exists():
                raise SandboxPathNotFoundError(
                    f"Directory does not exist: {target}", filepath=str(target)
                )
            if not target.is_dir():
                raise SandboxListError(
                    f"Path is not a directory: {target}", filepath=str(target)
                )
            entries: builtins.list[FileEntry] = []
            _walk(target, root, 1, max_depth, entries)
            return entries

        try:
            return await asyncio.to_thread(_list)
        except OSError as e:
            raise SandboxListError(
                f"Failed to list files in '{target}': {e}", filepath=str(target)
            ) from e

    async def delete(self, path: str, *, recursive: bool = False) -> None:
        target = self._path(path)

        def _delete() -> None:
            if not target.is_symlink() and not target.exists():
                raise SandboxPathNotFoundError(
                    f"File does not exist: {target}", filepath=str(target)
                )
            if target.is_dir() and not target.is_symlink():
                if recursive:
                    shutil.rmtree(target)
                else:
                    target.rmdir()
            else:
                target.unlink()

        try:
            await asyncio.to_thread(_delete)
        except OSError as e:
            if e.errno == errno.ENOTEMPTY:
                raise SandboxRemoveError(
                    f"Directory not empty: {target} (pass recursive=True)",
                    filepath=str(target),
                ) from e
            raise SandboxRemoveError(
                f"Failed to remove '{target}': {e}", filepath=str(target)
            ) from e

    async def mkdir(self, path: str) -> None:
        target = self._path(path)
        try:
            await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise SandboxMakeDirError(
                f"Failed to create directory '{target}': {e}", filepath=str(target)
            ) from e


def _walk(
    directory: Path,
    root: Path,
    depth: int,
    max_depth: int,
    entries: builtins.list[FileEntry],
) -> None:
    for child in sorted(directory.iterdir(), key=lambda p: p.name):
        stat = child.lstat()
        is_dir = child.is_dir() and not child.is_symlink()
        try:
            relative = str(child.relative_to(root))
        except ValueError:
            relative = str(child)
        entries.append(
            FileEntry(
                name=child.name,
                type=FileType.DIRECTORY if is_dir else FileType.FILE,
                path=relative,
                size=0 if is_dir else stat.st_size,
                modified_time=datetime.fromtimestamp(stat.st_mtime, UTC),
            )
        )
        if is_dir and (max_depth == 0 or depth < max_depth):
            _walk(child, root, depth + 1, max_depth, entries)
