"""Streaming command execution against the in-sandbox process service.

One exec is one ``process.Process/Start`` call: the request is a single
enveloped JSON message, the response a sequence of enveloped process events
(start, data..., end) followed by an end-stream trailer.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import posixpath
import re
import shlex
import time
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from vmbox._defaults import DEFAULT_COMMAND_TIMEOUT_SECONDS, DEFAULT_CONNECT_TIMEOUT_SECONDS
from vmbox._envelope import encode_json, end_stream_error, iter_messages
from vmbox._types import ExecResult, ExecSpec
from vmbox.exceptions import (
    SandboxExecutionError,
    SandboxInterruptedError,
    SandboxProtocolError,
    SandboxTimeoutError,
)

logger = logging.getLogger(__name__)

START_PATH = "/process.Process/Start"
SHELL = "/bin/bash"

CONNECT_STREAM_HEADERS = {
    "Content-Type": "application/connect+json",
    "Connect-Protocol-Version": "1",
    "Connect-Content-Encoding": "identity",
}

_EXIT_STATUS_RE = re.compile(r"^exit status (-?\d+)$")


@dataclass(frozen=True)
class StartEvent:
    pid: int


@dataclass(frozen=True)
class DataEvent:
    stream: Literal["stdout", "stderr"]
    data: bytes


@dataclass(frozen=True)
class EndEvent:
    """Terminal process event.

    envd omits ``exitCode`` when it is zero (proto3 JSON drops default
    values), so the exit code is resolved from several fields.
    """

    exit_code: int | None
    exited: bool = False
    status: str | None = None
    error: str | None = None

    def resolved_exit_code(self) -> int:
        """Exit code from the numeric field, else parsed from status, else inferred.

        Parsing "exit status N" is a compatibility shim for servers that only
        report the textual status; it is not part of the protocol contract.
        """
        if self.exit_code is not None:
            return self.exit_code
        if self.status:
            match = _EXIT_STATUS_RE.match(self.status.strip())
            if match:
                return int(match.group(1))
        return 0 if self.exited else -1


ProcessEvent = StartEvent | DataEvent | EndEvent


def parse_process_event(text: str) -> ProcessEvent | None:
    """Parse one streamed message.

    Returns:
        The event, or None for messages that carry nothing to collect
        (keepalives, pty output)

    Raises:
        SandboxProtocolError: If the message is not a JSON object or an event
            has fields of the wrong type
    """
    try:
        message = json.loads(text)
    except ValueError as e:
        raise SandboxProtocolError(f"Malformed process event: {text[:200]!r}") from e
    if not isinstance(message, dict):
        raise SandboxProtocolError(f"Malformed process event: {text[:200]!r}")

    try:
        return _parse_event(message.get("event") or {})
    except (TypeError, ValueError) as e:
        raise SandboxProtocolError(f"Malformed process event: {text[:200]!r}: {e}") from e


def _parse_event(event: Any) -> ProcessEvent | None:
    if not isinstance(event, dict):
        raise TypeError(f"event must be an object, got {type(event).__name__}")

    if "start" in event:
        start = _section(event, "start")
        return StartEvent(pid=int(start.get("pid", 0)))

    if "data" in event:
        data = _section(event, "data")
        for stream in ("stdout", "stderr"):
            if stream in data:
                return DataEvent(stream=stream, data=_decode_chunk(data[stream]))
        return None

    if "end" in event:
        end = _section(event, "end")
        raw_code = end.get("exitCode", end.get("exit_code"))
        return EndEvent(
            exit_code=int(raw_code) if raw_code is not None else None,
            exited=bool(end.get("exited", False)),
            status=_optional_str(end, "status"),
            error=_optional_str(end, "error"),
        )

    return None


def _section(event: dict[str, Any], key: str) -> dict[str, Any]:
    value = event[key]
    if not isinstance(value, dict):
        raise TypeError(f"{key} must be an object, got {type(value).__name__}")
    return value


def _optional_str(section: dict[str, Any], key: str) -> str | None:
    value = section.get(key)
    if value is not None and not isinstance(value, str):
        raise TypeError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _decode_chunk(value: Any) -> bytes:
    if not isinstance(value, str):
        raise TypeError(f"output chunk must be a string, got {type(value).__name__}")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        # Not base64; keep the text as sent
        return value.encode("utf-8")


def build_shell_script(spec: ExecSpec) -> str:
    """Render spec as bash text, environment exports first.

    The process service has no per-call environment channel, so variables
    are exported ahead of the command. Argv commands are shell-quoted so the
    arguments reach the program unchanged.
    """
    lines = [f"export {name}={shlex.quote(value)}" for name, value in spec.env.items()]
    lines.append(spec.script if spec.script is not None else shlex.join(spec.command))
    return "\n".join(lines)


class ProcessClient:
    """Runs commands through the process service of one sandbox.

    Each call is bounded as a whole (request plus full response) by the
    spec's timeout or the client's default. Calls are never retried.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        work_dir: str,
        default_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._work_dir = work_dir
        self._default_timeout_seconds = default_timeout_seconds
        self._connect_timeout_seconds = connect_timeout_seconds

    def resolve_cwd(self, cwd: str | None) -> str:
        if cwd is None:
            return self._work_dir
        return posixpath.normpath(posixpath.join(self._work_dir, cwd))

    def start_request(self, spec: ExecSpec) -> dict[str, Any]:
        """Build the Start request message for spec."""
        return {
            "process": {
                "cmd": SHELL,
                "args": ["-l", "-c", build_shell_script(spec)],
                "envs": {},
                "cwd": self.resolve_cwd(spec.cwd),
            },
            "stdin": False,
        }

    async def run(self, spec: ExecSpec) -> ExecResult:
        """Execute spec and wait for the process to finish.

        Raises:
            SandboxTimeoutError: If the call exceeds its deadline
            SandboxExecutionError: On a non-2xx response, transport failure,
                or a stream that ends without an end event
            SandboxInterruptedError: If the connection drops mid-response
            SandboxProtocolError: If the stream cannot be decoded
        """
        timeout = spec.timeout_seconds or self._default_timeout_seconds
        body = encode_json(self.start_request(spec))

        logger.debug("Executing command: %s (timeout %ss)", spec.display(), timeout)
        start_time = time.monotonic()

        try:
            data = await asyncio.wait_for(self._post(body, spec), timeout=timeout)
        except TimeoutError as e:
            raise SandboxTimeoutError(
                f"Command {spec.display()} timed out after {timeout}s",
                timeout_seconds=timeout,
            ) from e

        result = self._assemble(data, spec, duration_seconds=time.monotonic() - start_time)
        logger.debug("Command completed: %s", result.summary())
        return result

    async def _post(self, body: bytes, spec: ExecSpec) -> bytes:
        try:
            response = await self._client.post(
                START_PATH,
                content=body,
                headers=CONNECT_STREAM_HEADERS,
                # Deadline is enforced around the whole call, not per read
                timeout=httpx.Timeout(None, connect=self._connect_timeout_seconds),
            )
        except (httpx.ReadError, httpx.RemoteProtocolError) as e:
            raise SandboxInterruptedError(
                f"Connection lost while running {spec.display()}: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise SandboxExecutionError(f"Failed to run {spec.display()}: {e}") from e

        if not response.is_success:
            raise SandboxExecutionError(
                f"Failed to run {spec.display()}: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.content

    def _assemble(self, data: bytes, spec: ExecSpec, *, duration_seconds: float) -> ExecResult:
        stdout = bytearray()
        stderr = bytearray()
        end: EndEvent | None = None
        events = 0

        for text in iter_messages(data):
            event = parse_process_event(text)
            events += 1
            match event:
                case StartEvent(pid=pid):
                    logger.debug("Process started with pid %d", pid)
                case DataEvent(stream="stdout", data=chunk):
                    stdout += chunk
                case DataEvent(data=chunk):
                    stderr += chunk
                case EndEvent():
                    end = event
                    break

        if end is None:
            message = f"Stream ended without an end event for command: {spec.display()}"
            error = end_stream_error(data)
            if error is not None:
                message += f" ({error.get('code', 'unknown')}: {error.get('message', '')})"
            raise SandboxExecutionError(message, body=data.decode("utf-8", errors="replace"))

        logger.debug("Processed %d process events", events)
        if end.error:
            logger.debug("Process reported error: %s", end.error)

        return ExecResult(
            stdout_bytes=bytes(stdout),
            stderr_bytes=bytes(stderr),
            returncode=end.resolved_exit_code(),
            duration_seconds=duration_seconds,
            command=spec.display(),
        )
