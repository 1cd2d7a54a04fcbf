"""Shared fixtures for vmbox unit tests."""

import asyncio
import base64
import contextlib
import json
import os
import shutil
import signal
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

from vmbox import RemoteSandbox, SandboxDefaults
from vmbox._envelope import FLAG_END_STREAM, decode, encode, encode_json

# Environment variables that affect configuration and authentication.
# These are cleared before each test to ensure isolation.
VMBOX_ENV_VARS = (
    "VMBOX_API_KEY",
    "VMBOX_API_URL",
    "VMBOX_DOMAIN",
)

TEST_API_KEY = "test-api-key"
TEST_API_URL = "https://api.test"
TEST_DOMAIN = "sandbox.test"


@pytest.fixture(autouse=True)
def clean_vmbox_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear all vmbox env vars before each test.

    This runs automatically for every test (autouse=True) and ensures:
    1. Tests start with a clean environment (no leakage from local setup)
    2. The original environment is restored after each test (even on failure)
    3. Tests are deterministic regardless of the developer's local env
    """
    for var in VMBOX_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def mock_vmbox_api_key(monkeypatch: pytest.MonkeyPatch) -> str:
    """Set a mock VMBOX_API_KEY for the test."""
    monkeypatch.setenv("VMBOX_API_KEY", TEST_API_KEY)
    return TEST_API_KEY


class FakeE2B:
    """In-process stand-in for the control plane and the in-sandbox envd.

    Serves both APIs through httpx.MockTransport. Commands run as real host
    subprocesses and file operations hit the host filesystem, so sandbox
    paths are host paths (point ``work_dir`` at a temp directory).

    Knobs:
        unhealthy_probes: Number of health checks answered with 502 first
        omit_end_event: Stream responses without the terminal end event
        exec_status: Force a non-2xx status for process starts
    """

    def __init__(self, *, api_key: str = TEST_API_KEY, domain: str = TEST_DOMAIN) -> None:
        self.api_key = api_key
        self.domain = domain
        self.requests: list[httpx.Request] = []
        self.sandboxes: dict[str, dict[str, Any]] = {}
        self.destroy_calls = 0
        self.timeouts: dict[str, int] = {}
        self.health_probes = 0
        self.unhealthy_probes = 0
        self.omit_end_event = False
        self.exec_status: int | None = None
        self._counter = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add_sandbox(self, sandbox_id: str, env: dict[str, str] | None = None) -> None:
        self.sandboxes[sandbox_id] = {
            "env": dict(env or {}),
            "token": f"token-{sandbox_id}",
            "template": "base",
            "alive": True,
        }

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.startswith("/sandboxes"):
            return self._control_plane(request)
        return await self._envd(request)

    # Control plane

    def _control_plane(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("X-API-Key") != self.api_key:
            return httpx.Response(401, json={"code": 401, "message": "Invalid API key"})

        parts = request.url.path.strip("/").split("/")
        match (request.method, parts):
            case ("POST", ["sandboxes"]):
                body = json.loads(request.content)
                self._counter += 1
                sandbox_id = f"sbx{self._counter}"
                self.add_sandbox(sandbox_id, body.get("envVars"))
                self.sandboxes[sandbox_id]["template"] = body["templateID"]
                self.timeouts[sandbox_id] = body["timeout"]
                return httpx.Response(201, json=self._sandbox_json(sandbox_id))
            case ("POST", ["sandboxes", sandbox_id, "connect"]):
                if not self._alive(sandbox_id):
                    return httpx.Response(404, json={"code": 404, "message": "not found"})
                self.timeouts[sandbox_id] = json.loads(request.content)["timeout"]
                return httpx.Response(200, json=self._sandbox_json(sandbox_id))
            case ("POST", ["sandboxes", sandbox_id, "timeout"]):
                if not self._alive(sandbox_id):
                    return httpx.Response(404, json={"code": 404, "message": "not found"})
                self.timeouts[sandbox_id] = json.loads(request.content)["timeout"]
                return httpx.Response(204)
            case ("DELETE", ["sandboxes", sandbox_id]):
                if not self._alive(sandbox_id):
                    return httpx.Response(404, json={"code": 404, "message": "not found"})
                self.sandboxes[sandbox_id]["alive"] = False
                self.destroy_calls += 1
                return httpx.Response(204)
        return httpx.Response(405)

    def _alive(self, sandbox_id: str) -> bool:
        return self.sandboxes.get(sandbox_id, {}).get("alive", False)

    def _sandbox_json(self, sandbox_id: str) -> dict[str, Any]:
        sandbox = self.sandboxes[sandbox_id]
        return {
            "sandboxID": sandbox_id,
            "templateID": sandbox["template"],
            "clientID": "client",
            "domain": self.domain,
            "envdAccessToken": sandbox["token"],
            "envdVersion": "0.2.0",
        }

    # envd

    async def _envd(self, request: httpx.Request) -> httpx.Response:
        # Host is "<port>-<sandbox id>.<domain>"
        sandbox_id = request.url.host.split(".", 1)[0].split("-", 1)[-1]
        sandbox = self.sandboxes.get(sandbox_id)
        if sandbox is None or not sandbox["alive"]:
            return httpx.Response(502, text="sandbox not running")
        if request.headers.get("X-Access-Token") != sandbox["token"]:
            return httpx.Response(401, json={"code": "unauthenticated", "message": "bad token"})

        path = request.url.path
        if path == "/health":
            self.health_probes += 1
            if self.unhealthy_probes > 0:
                self.unhealthy_probes -= 1
                return httpx.Response(502, text="Bad Gateway")
            return httpx.Response(204)
        if path == "/process.Process/Start":
            return await self._start_process(request, sandbox)
        if path == "/files":
            return self._files(request)
        if path.startswith("/filesystem.Filesystem/"):
            payload = json.loads(request.content)
            return self._filesystem(path.rsplit("/", 1)[-1], Path(payload["path"]), payload)
        return httpx.Response(404, text="no route")

    async def _start_process(
        self, request: httpx.Request, sandbox: dict[str, Any]
    ) -> httpx.Response:
        if self.exec_status is not None:
            return httpx.Response(self.exec_status, text="process service unavailable")

        [frame] = decode(request.content)
        process = json.loads(frame.payload)["process"]
        # No login profile, keeps host dotfiles out of the output
        args = [arg for arg in process["args"] if arg != "-l"]
        env = {**os.environ, **sandbox["env"], **process.get("envs", {})}

        proc = await asyncio.create_subprocess_exec(
            process["cmd"],
            *args,
            cwd=process["cwd"],
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                os.killpg(proc.pid, signal.SIGKILL)
            await proc.wait()
            raise

        body = encode_json({"event": {"start": {"pid": proc.pid}}})
        for stream, data in (("stdout", stdout), ("stderr", stderr)):
            for offset in range(0, len(data), 4096):
                chunk = base64.b64encode(data[offset : offset + 4096]).decode("ascii")
                body += encode_json({"event": {"data": {stream: chunk}}})
        if not self.omit_end_event:
            end: dict[str, Any] = {"exited": True, "status": f"exit status {proc.returncode}"}
            # proto3 JSON drops zero values
            if proc.returncode:
                end["exitCode"] = proc.returncode
            body += encode_json({"event": {"end": end}})
            trailer = b"{}"
        else:
            trailer = json.dumps(
                {"error": {"code": "unavailable", "message": "process stream reset"}}
            ).encode()
        body += encode(trailer, FLAG_END_STREAM)
        return httpx.Response(
            200, content=body, headers={"Content-Type": "application/connect+json"}
        )

    def _files(self, request: httpx.Request) -> httpx.Response:
        target = Path(request.url.params["path"])
        if request.method == "GET":
            if not target.exists():
                return httpx.Response(404, json={"code": 404, "message": "file not found"})
            if target.is_dir():
                return httpx.Response(400, json={"code": 400, "message": "path is a directory"})
            return httpx.Response(200, content=target.read_bytes())

        boundary = request.headers["content-type"].split("boundary=", 1)[1].strip('"')
        for part in request.content.split(b"--" + boundary.encode()):
            head, sep, data = part.partition(b"\r\n\r\n")
            if sep and b'name="file"' in head:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data.removesuffix(b"\r\n"))
                return httpx.Response(
                    200, json=[{"name": target.name, "type": "file", "path": str(target)}]
                )
        return httpx.Response(400, json={"code": 400, "message": "missing file part"})

    def _filesystem(self, method: str, target: Path, payload: dict[str, Any]) -> httpx.Response:
        match method:
            case "Stat":
                if not target.exists():
                    return _connect_error(404, "not_found", f"no such file or directory: {target}")
                return httpx.Response(200, json={"entry": _entry_info(target, nanos_form=True)})
            case "ListDir":
                if not target.exists():
                    return _connect_error(404, "not_found", f"path not found: {target}")
                if not target.is_dir():
                    return _connect_error(
                        400, "invalid_argument", f"path is not a directory: {target}"
                    )
                depth = payload.get("depth", 1)
                entries = [_entry_info(child) for child in _walk(target, depth)]
                return httpx.Response(200, json={"entries": entries})
            case "Remove":
                # envd removes recursively and ignores missing paths
                if target.is_dir():
                    shutil.rmtree(target)
                elif target.exists():
                    target.unlink()
                return httpx.Response(200, json={})
            case "MakeDir":
                if target.exists():
                    return _connect_error(
                        409, "already_exists", f"directory already exists: {target}"
                    )
                target.mkdir(parents=True)
                return httpx.Response(200, json={"entry": _entry_info(target)})
        return _connect_error(404, "unimplemented", method)


def _connect_error(status: int, code: str, message: str) -> httpx.Response:
    return httpx.Response(status, json={"code": code, "message": message})


def _walk(directory: Path, depth: int, level: int = 1) -> list[Path]:
    found: list[Path] = []
    for child in sorted(directory.iterdir()):
        found.append(child)
        if child.is_dir() and (depth == 0 or level < depth):
            found.extend(_walk(child, depth, level + 1))
    return found


def _entry_info(path: Path, *, nanos_form: bool = False) -> dict[str, Any]:
    stat = path.stat()
    if nanos_form:
        modified: Any = {"seconds": str(int(stat.st_mtime)), "nanos": stat.st_mtime_ns % 10**9}
    else:
        stamp = datetime.fromtimestamp(int(stat.st_mtime), UTC).strftime("%Y-%m-%dT%H:%M:%S")
        modified = f"{stamp}.{stat.st_mtime_ns % 10**9:09d}Z"
    return {
        "name": path.name,
        "type": "FILE_TYPE_DIRECTORY" if path.is_dir() else "FILE_TYPE_FILE",
        "path": str(path),
        "size": str(stat.st_size),
        "mode": 0o755 if path.is_dir() else 0o644,
        "permissions": "drwxr-xr-x" if path.is_dir() else "-rw-r--r--",
        "owner": "user",
        "group": "user",
        "modifiedTime": modified,
    }


@pytest.fixture
def fake_e2b() -> FakeE2B:
    return FakeE2B()


@pytest.fixture
def sandbox_home(tmp_path: Path) -> Path:
    """Host directory standing in for the sandbox working root."""
    home = tmp_path / "home" / "user"
    home.mkdir(parents=True)
    return home.resolve()


@pytest.fixture
def remote_defaults(sandbox_home: Path) -> SandboxDefaults:
    return SandboxDefaults(
        api_url=TEST_API_URL,
        domain=TEST_DOMAIN,
        api_key=TEST_API_KEY,
        work_dir=str(sandbox_home),
        ready_poll_interval_seconds=0.01,
        ready_timeout_seconds=5,
        command_timeout_seconds=30,
    )


@pytest_asyncio.fixture
async def remote_sandbox(
    fake_e2b: FakeE2B, remote_defaults: SandboxDefaults
) -> AsyncIterator[RemoteSandbox]:
    """A RemoteSandbox created against the fake, closed after the test."""
    sandbox = await RemoteSandbox.create(remote_defaults, transport=fake_e2b.transport())
    yield sandbox
    await sandbox.close()
