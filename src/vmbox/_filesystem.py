"""File operations against the in-sandbox filesystem service.

Unary Connect RPCs (``filesystem.Filesystem/*``, plain JSON bodies) plus the
``/files`` REST endpoint for content upload and download. Every path given to
this client must be absolute.
"""

from __future__ import annotations

import logging
import posixpath
import re
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from vmbox._defaults import DEFAULT_REQUEST_TIMEOUT_SECONDS
from vmbox._types import FileEntry, FileType
from vmbox.exceptions import (
    SandboxFileError,
    SandboxListError,
    SandboxMakeDirError,
    SandboxPathNotFoundError,
    SandboxReadError,
    SandboxRemoveError,
    SandboxWriteError,
)

logger = logging.getLogger(__name__)

FILES_PATH = "/files"
RPC_PREFIX = "/filesystem.Filesystem"

CONNECT_UNARY_HEADERS = {"Connect-Protocol-Version": "1"}

_FRACTION_RE = re.compile(r"\.(\d+)")


def _is_not_found(response: httpx.Response) -> bool:
    if response.status_code == 404:
        return True
    body = response.text.lower()
    return "not_found" in body or "no such file" in body


def parse_modified_time(value: Any) -> datetime:
    """Convert a protobuf Timestamp to an aware UTC datetime.

    Accepts the ``{seconds, nanos}`` object form as well as the RFC 3339
    string that canonical proto JSON uses. A missing value maps to now.
    """
    if value is None:
        return datetime.now(UTC)
    if isinstance(value, dict):
        seconds = int(value.get("seconds", 0) or 0)
        nanos = int(value.get("nanos", 0) or 0)
        return datetime.fromtimestamp(seconds, UTC) + timedelta(microseconds=nanos // 1000)
    if isinstance(value, str):
        # datetime only keeps microseconds
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    raise ValueError(f"Unsupported timestamp: {value!r}")


class FilesystemClient:
    """Filesystem operations for one sandbox."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        work_dir: str,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._work_dir = work_dir.rstrip("/") or "/"
        self._timeout = request_timeout_seconds

    async def write(self, path: str, content: str | bytes) -> None:
        """Upload content to path, replacing any existing file.

        Raises:
            SandboxWriteError: On any non-2xx response or transport failure
        """
        data = content.encode("utf-8") if isinstance(content, str) else content
        logger.debug("Writing file %s (%d bytes)", path, len(data))

        try:
            response = await self._client.post(
                FILES_PATH,
                params={"path": path},
                files={"file": (posixpath.basename(path), data, "application/octet-stream")},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise SandboxWriteError(f"Failed to write file '{path}': {e}", filepath=path) from e

        if not response.is_success:
            raise SandboxWriteError(
                f"Failed to write file '{path}': {response.status_code} - {response.text}",
                filepath=path,
                status_code=response.status_code,
                body=response.text,
            )

    async def read_bytes(self, path: str) -> bytes:
        """Download the raw content of path.

        Raises:
            SandboxReadError: On any non-2xx response or transport failure
        """
        logger.debug("Reading file %s", path)
        try:
            response = await self._client.get(
                FILES_PATH, params={"path": path}, timeout=self._timeout
            )
        except httpx.HTTPError as e:
            raise SandboxReadError(f"Failed to read file '{path}': {e}", filepath=path) from e

        if not response.is_success:
            raise SandboxReadError(
                f"Failed to read file '{path}': {response.status_code} - {response.text}",
                filepath=path,
                status_code=response.status_code,
                body=response.text,
            )
        return response.content

    async def read(self, path: str) -> str:
        """Download path and decode it as UTF-8."""
        return (await self.read_bytes(path)).decode("utf-8", errors="replace")

    async def list_dir(self, path: str, depth: int = 1) -> list[FileEntry]:
        """List a directory.

        Args:
            path: Directory to list
            depth: How many levels to descend; 0 means unlimited

        Raises:
            SandboxPathNotFoundError: If path does not exist
            SandboxListError: If path is not a directory, or on any other failure
        """
        response = await self._rpc(
            "ListDir", {"path": path, "depth": depth}, path=path, error_cls=SandboxListError
        )

        if not response.is_success:
            if _is_not_found(response):
                raise SandboxPathNotFoundError(
                    f"Directory does not exist: {path}",
                    filepath=path,
                    status_code=response.status_code,
                    body=response.text,
                )
            if "not a directory" in response.text.lower():
                raise SandboxListError(
                    f"Path is not a directory: {path}",
                    filepath=path,
                    status_code=response.status_code,
                    body=response.text,
                )
            raise SandboxListError(
                f"Failed to list files in '{path}': {response.status_code} - {response.text}",
                filepath=path,
                status_code=response.status_code,
                body=response.text,
            )

        payload = self._json(response, path, SandboxListError)
        entries = [self._parse_entry(raw) for raw in payload.get("entries") or []]
        logger.debug("Listed %d entries under %s (depth %d)", len(entries), path, depth)
        return entries

    async def stat(self, path: str) -> FileEntry:
        """Describe a single file or directory.

        Raises:
            SandboxPathNotFoundError: If path does not exist
            SandboxFileError: On any other failure
        """
        response = await self._rpc("Stat", {"path": path}, path=path, error_cls=SandboxFileError)

        if not response.is_success:
            if _is_not_found(response):
                raise SandboxPathNotFoundError(
                    f"Path does not exist: {path}",
                    filepath=path,
                    status_code=response.status_code,
                    body=response.text,
                )
            raise SandboxFileError(
                f"Failed to stat '{path}': {response.status_code} - {response.text}",
                filepath=path,
                status_code=response.status_code,
                body=response.text,
            )

        payload = self._json(response, path, SandboxFileError)
        return self._parse_entry(payload.get("entry") or {"path": path})

    async def exists(self, path: str) -> bool:
        """Return True if path exists.

        Never raises: a failed probe is indistinguishable from absence and
        reports False.
        """
        try:
            response = await self._client.post(
                f"{RPC_PREFIX}/Stat",
                json={"path": path},
                headers=CONNECT_UNARY_HEADERS,
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            logger.debug("Stat of %s failed, reporting missing: %s", path, e)
            return False
        return response.is_success

    async def remove(self, path: str) -> None:
        """Remove a file, or a directory with everything under it.

        Raises:
            SandboxPathNotFoundError: If path does not exist
            SandboxRemoveError: On any other failure
        """
        # Remove itself succeeds on missing paths
        if not await self.exists(path):
            raise SandboxPathNotFoundError(f"File does not exist: {path}", filepath=path)

        response = await self._rpc(
            "Remove", {"path": path}, path=path, error_cls=SandboxRemoveError
        )
        if not response.is_success:
            if _is_not_found(response):
                raise SandboxPathNotFoundError(
                    f"File does not exist: {path}",
                    filepath=path,
                    status_code=response.status_code,
                    body=response.text,
                )
            raise SandboxRemoveError(
                f"Failed to remove '{path}': {response.status_code} - {response.text}",
                filepath=path,
                status_code=response.status_code,
                body=response.text,
            )
        logger.debug("Removed %s", path)

    async def make_dir(self, path: str) -> None:
        """Create a directory and any missing parents. Existing directories are fine.

        Raises:
            SandboxMakeDirError: On any failure other than "already exists"
        """
        response = await self._rpc(
            "MakeDir", {"path": path}, path=path, error_cls=SandboxMakeDirError
        )
        if response.is_success:
            return
        if response.status_code == 409 and "already_exists" in response.text:
            logger.debug("Directory already exists (ignored): %s", path)
            return
        raise SandboxMakeDirError(
            f"Failed to create directory '{path}': {response.status_code} - {response.text}",
            filepath=path,
            status_code=response.status_code,
            body=response.text,
        )

    async def _rpc(
        self,
        method: str,
        payload: dict[str, Any],
        *,
        path: str,
        error_cls: type[SandboxFileError],
    ) -> httpx.Response:
        try:
            return await self._client.post(
                f"{RPC_PREFIX}/{method}",
                json=payload,
                headers=CONNECT_UNARY_HEADERS,
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise error_cls(f"{method} failed for '{path}': {e}", filepath=path) from e

    @staticmethod
    def _json(
        response: httpx.Response, path: str, error_cls: type[SandboxFileError]
    ) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise error_cls(
                f"Invalid response for '{path}': {response.text}",
                filepath=path,
                status_code=response.status_code,
                body=response.text,
            ) from e
        return payload if isinstance(payload, dict) else {}

    def _relative_path(self, path: str) -> str:
        if path == self._work_dir:
            return "."
        prefix = self._work_dir if self._work_dir.endswith("/") else self._work_dir + "/"
        if path.startswith(prefix):
            return path[len(prefix) :]
        return path

    def _parse_entry(self, raw: dict[str, Any]) -> FileEntry:
        path = raw.get("path", "")
        kind = str(raw.get("type", "")).upper()
        file_type = (
            FileType.DIRECTORY if kind in ("FILE_TYPE_DIRECTORY", "DIRECTORY") else FileType.FILE
        )
        size = 0 if file_type is FileType.DIRECTORY else int(raw.get("size", 0) or 0)
        return FileEntry(
            name=raw.get("name") or posixpath.basename(path.rstrip("/")),
            type=file_type,
            path=self._relative_path(path),
            size=size,
            modified_time=parse_modified_time(raw.get("modifiedTime", raw.get("modified_time"))),
        )
