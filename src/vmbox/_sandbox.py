from __future__ import annotations

import builtins
import logging
import posixpath
import warnings
from collections.abc import Iterable

import httpx

from vmbox._auth import envd_auth
from vmbox._base import Sandbox, SandboxFiles
from vmbox._defaults import SandboxDefaults
from vmbox._filesystem import FilesystemClient
from vmbox._lifecycle import LifecycleClient
from vmbox._process import ProcessClient
from vmbox._readiness import wait_for_ready
from vmbox._types import ExecResult, ExecSpec, FileEntry, FileSpec, SandboxHandle
from vmbox.exceptions import SandboxError, SandboxRemoveError

logger = logging.getLogger(__name__)


class RemoteSandbox(Sandbox):
    """Sandbox running in a remotely hosted micro-VM.

    Build one with ``create`` (new sandbox) or ``connect`` (existing sandbox
    by ID); both return only once the in-sandbox command service is ready.

    Example:
        async with await RemoteSandbox.create(template="base") as sandbox:
            result = await sandbox.exec(["uname", "-a"])
            await sandbox.files.write("notes.txt", "hello")

    Concurrent calls on one instance are allowed and are not ordered
    relative to each other. Await outstanding calls before ``close()``.
    """

    def __init__(
        self,
        handle: SandboxHandle,
        *,
        lifecycle: LifecycleClient,
        defaults: SandboxDefaults | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Wrap an existing handle. Prefer ``create`` or ``connect``."""
        self._handle = handle
        self._lifecycle = lifecycle
        self._defaults = defaults or SandboxDefaults()
        self._transport = transport
        self._envd_url = lifecycle.envd_url(handle)
        self._client: httpx.AsyncClient | None = None
        self._process: ProcessClient | None = None
        self._filesystem: FilesystemClient | None = None
        self._files = RemoteSandboxFiles(self)
        self._closed = False

    @classmethod
    async def create(
        cls,
        defaults: SandboxDefaults | None = None,
        *,
        template: str | None = None,
        timeout_seconds: int | None = None,
        env_vars: dict[str, str] | None = None,
        files: Iterable[FileSpec] | None = None,
        api_key: str | None = None,
        api_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RemoteSandbox:
        """Create a sandbox and wait until it accepts commands.

        Args:
            defaults: Optional SandboxDefaults to apply
            template: Template to boot (default: defaults.template)
            timeout_seconds: Server-side lifetime (default: defaults.sandbox_timeout_seconds)
            env_vars: Environment variables, merged over defaults.environment_variables
            files: Files to write once the sandbox is ready
            api_key: Control-plane API key (default: VMBOX_API_KEY env or ~/.netrc)
            api_url: Control-plane URL (default: VMBOX_API_URL env or defaults.api_url)
            transport: Optional httpx transport, shared by every HTTP client

        Raises:
            SandboxCreationError: If the control plane rejects the request
            SandboxNotReadyError: If the sandbox does not become ready in time
            VmboxAuthenticationError: If no API key is available

        Example:
            sandbox = await RemoteSandbox.create(
                template="python-3.12",
                env_vars={"MODE": "test"},
                files=[FileSpec("main.py", "print('hi')")],
            )
        """
        defaults = defaults or SandboxDefaults()
        lifecycle = LifecycleClient(defaults, api_key=api_key, api_url=api_url, transport=transport)
        try:
            handle = await lifecycle.create(template, timeout_seconds, env_vars)
        except BaseException:
            await lifecycle.aclose()
            raise

        sandbox = cls(handle, lifecycle=lifecycle, defaults=defaults, transport=transport)
        try:
            await sandbox._wait_for_ready()
            if files:
                await sandbox.files.setup(files)
        except BaseException:
            await sandbox._discard(destroy=True)
            raise
        return sandbox

    @classmethod
    async def connect(
        cls,
        sandbox_id: str,
        defaults: SandboxDefaults | None = None,
        *,
        timeout_seconds: int | None = None,
        api_key: str | None = None,
        api_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RemoteSandbox:
        """Attach to an existing sandbox by ID.

        The returned instance owns the sandbox: closing it destroys the
        sandbox.

        Raises:
            SandboxNotFoundError: If the sandbox doesn't exist
            SandboxNotReadyError: If the sandbox does not become ready in time

        Example:
            sandbox = await RemoteSandbox.connect("i8f2k0qz3x7m")
            result = await sandbox.exec(["cat", "state.json"])
        """
        defaults = defaults or SandboxDefaults()
        lifecycle = LifecycleClient(defaults, api_key=api_key, api_url=api_url, transport=transport)
        try:
            handle = await lifecycle.reconnect(sandbox_id, timeout_seconds)
        except BaseException:
            await lifecycle.aclose()
            raise

        sandbox = cls(handle, lifecycle=lifecycle, defaults=defaults, transport=transport)
        try:
            await sandbox._wait_for_ready()
        except BaseException:
            # Reconnect failures leave the sandbox to whoever created it
            await sandbox._discard(destroy=False)
            raise
        return sandbox

    @property
    def sandbox_id(self) -> str:
        return self._handle.sandbox_id

    @property
    def handle(self) -> SandboxHandle:
        return self._handle

    @property
    def envd_url(self) -> str:
        """Base URL of the command service inside the sandbox."""
        return self._envd_url

    @property
    def work_dir(self) -> str:
        return self._defaults.work_dir

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def files(self) -> RemoteSandboxFiles:
        self._ensure_open()
        return self._files

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<RemoteSandbox {self._handle.sandbox_id} ({state})>"

    def __del__(self) -> None:
        """Warn if sandbox was not properly closed."""
        if hasattr(self, "_closed") and not self._closed:
            warnings.warn(
                f"Sandbox {self._handle.sandbox_id} was not closed. "
                "Use 'await sandbox.close()' or the context manager pattern.",
                ResourceWarning,
                stacklevel=2,
            )

    def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure the envd HTTP client and its RPC wrappers are initialized."""
        if self._client is not None:
            return self._client

        auth = envd_auth(self._handle.access_token)
        logger.debug("Using %s auth strategy for envd", auth.strategy)

        self._client = httpx.AsyncClient(
            base_url=self._envd_url,
            headers=auth.headers,
            timeout=httpx.Timeout(
                self._defaults.request_timeout_seconds,
                connect=self._defaults.connect_timeout_seconds,
            ),
            transport=self._transport,
        )
        self._process = ProcessClient(
            self._client,
            work_dir=self._defaults.work_dir,
            default_timeout_seconds=self._defaults.command_timeout_seconds,
            connect_timeout_seconds=self._defaults.connect_timeout_seconds,
        )
        self._filesystem = FilesystemClient(
            self._client,
            work_dir=self._defaults.work_dir,
            request_timeout_seconds=self._defaults.request_timeout_seconds,
        )
        logger.debug("Initialized envd client for %s", self._envd_url)
        return self._client

    async def _close_client(self) -> None:
        """Close the envd HTTP client if open."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._process = None
            self._filesystem = None
            logger.debug("Closed envd client")

    def _filesystem_client(self) -> FilesystemClient:
        self._ensure_open()
        self._ensure_client()
        assert self._filesystem is not None
        return self._filesystem

    async def _wait_for_ready(self) -> None:
        await wait_for_ready(
            self._ensure_client(),
            sandbox_id=self.sandbox_id,
            timeout_seconds=self._defaults.ready_timeout_seconds,
            poll_interval_seconds=self._defaults.ready_poll_interval_seconds,
            probe_timeout_seconds=self._defaults.health_check_timeout_seconds,
        )

    async def _discard(self, *, destroy: bool) -> None:
        """Tear down after a failed create/connect without masking the original error."""
        self._closed = True
        try:
            if destroy:
                await self._lifecycle.destroy(self.sandbox_id)
        except SandboxError as e:
            logger.warning("Failed to destroy sandbox %s during cleanup: %s", self.sandbox_id, e)
        finally:
            await self._close_client()
            await self._lifecycle.aclose()

    async def _exec(self, spec: ExecSpec) -> ExecResult:
        self._ensure_client()
        assert self._process is not None
        logger.debug("Executing in sandbox %s: %s", self.sandbox_id, spec.display())
        return await self._process.run(spec)

    async def extend_timeout(self, timeout_seconds: int) -> None:
        """Reset the sandbox's server-side lifetime to timeout_seconds from now.

        Raises:
            SandboxClosedError: If the sandbox is closed
            SandboxLifecycleError: If the control plane rejects the request
        """
        self._ensure_open()
        await self._lifecycle.extend_timeout(self.sandbox_id, timeout_seconds)

    async def detach(self) -> None:
        """Close the clients but leave the sandbox running.

        The sandbox lives until its server-side timeout expires or someone
        destroys it; reattach with ``connect``. The instance is closed
        afterwards.
        """
        if self._closed:
            return

        self._closed = True
        logger.info("Detached from sandbox %s", self.sandbox_id)
        await self._close_client()
        await self._lifecycle.aclose()

    async def close(self) -> None:
        """Destroy the sandbox and close the clients.

        The instance is marked closed even if the destroy call fails.
        """
        if self._closed:
            logger.debug("close() called on already-closed sandbox %s", self.sandbox_id)
            return

        self._closed = True
        try:
            await self._lifecycle.destroy(self.sandbox_id)
        finally:
            await self._close_client()
            await self._lifecycle.aclose()


class RemoteSandboxFiles(SandboxFiles):
    """File operations on a RemoteSandbox.

    Relative paths resolve against the sandbox's working root before they
    reach the filesystem service.
    """

    def __init__(self, sandbox: RemoteSandbox) -> None:
        self._sandbox = sandbox

    def resolve(self, path: str) -> str:
        """Map a sandbox-relative path to an absolute one."""
        if path.startswith("/"):
            return posixpath.normpath(path)
        if path in ("", "."):
            return self._sandbox.work_dir
        return posixpath.normpath(posixpath.join(self._sandbox.work_dir, path))

    async def write(self, path: str, content: str) -> None:
        fs = self._sandbox._filesystem_client()
        full_path = self.resolve(path)
        parent = posixpath.dirname(full_path)
        if parent and parent != "/":
            await fs.make_dir(parent)
        await fs.write(full_path, content)

    async def read(self, path: str) -> str:
        return await self._sandbox._filesystem_client().read(self.resolve(path))

    async def exists(self, path: str) -> bool:
        return await self._sandbox._filesystem_client().exists(self.resolve(path))

    async def list(self, path: str = ".", max_depth: int = 1) -> builtins.list[FileEntry]:
        return await self._sandbox._filesystem_client().list_dir(self.resolve(path), max_depth)

    async def delete(self, path: str, *, recursive: bool = False) -> None:
        fs = self._sandbox._filesystem_client()
        full_path = self.resolve(path)

        # The filesystem service always removes recursively
        if not recursive:
            entry = await fs.stat(full_path)
            if entry.is_directory and await fs.list_dir(full_path, 1):
                raise SandboxRemoveError(
                    f"Directory not empty: {full_path} (pass recursive=True)",
                    filepath=full_path,
                )

        await fs.remove(full_path)

    async def mkdir(self, path: str) -> None:
        await self._sandbox._filesystem_client().make_dir(self.resolve(path))
