"""Unit tests for vmbox._filesystem module."""

import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

from tests.unit.vmbox.conftest import TEST_DOMAIN, FakeE2B
from vmbox._filesystem import FilesystemClient, parse_modified_time
from vmbox._types import FileType
from vmbox.exceptions import (
    SandboxFileError,
    SandboxListError,
    SandboxMakeDirError,
    SandboxPathNotFoundError,
    SandboxReadError,
    SandboxRemoveError,
    SandboxWriteError,
)


def _static_client(status: int, **kwargs) -> FilesystemClient:
    transport = httpx.MockTransport(lambda request: httpx.Response(status, **kwargs))
    client = httpx.AsyncClient(base_url="https://envd.test", transport=transport)
    return FilesystemClient(client, work_dir="/home/user")


@pytest_asyncio.fixture
async def filesystem(fake_e2b: FakeE2B, sandbox_home: Path) -> AsyncIterator[FilesystemClient]:
    """FilesystemClient talking to the fake envd, rooted at sandbox_home."""
    fake_e2b.add_sandbox("sbx")
    async with httpx.AsyncClient(
        base_url=f"https://49983-sbx.{TEST_DOMAIN}",
        headers={"X-Access-Token": "token-sbx"},
        transport=fake_e2b.transport(),
    ) as client:
        yield FilesystemClient(client, work_dir=str(sandbox_home))


class TestParseModifiedTime:
    """Tests for parse_modified_time."""

    def test_seconds_nanos_object(self) -> None:
        """Test the {seconds, nanos} form, including string seconds."""
        parsed = parse_modified_time({"seconds": "1700000000", "nanos": 123456789})

        assert parsed == datetime(2023, 11, 14, 22, 13, 20, 123456, tzinfo=UTC)

    def test_rfc3339_with_nanoseconds(self) -> None:
        """Test nanosecond fractions are truncated to microseconds."""
        parsed = parse_modified_time("2024-01-02T03:04:05.123456789Z")

        assert parsed == datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=UTC)

    def test_rfc3339_short_fraction_and_offset(self) -> None:
        """Test short fractions and offsets normalize to UTC."""
        parsed = parse_modified_time("2024-01-02T05:04:05.5+02:00")

        assert parsed == datetime(2024, 1, 2, 3, 4, 5, 500000, tzinfo=UTC)

    def test_naive_string_assumed_utc(self) -> None:
        """Test timestamps without an offset are taken as UTC."""
        assert parse_modified_time("2024-01-02T03:04:05").tzinfo is UTC

    def test_missing_is_now(self) -> None:
        """Test a missing timestamp maps to an aware now."""
        before = datetime.now(UTC)

        parsed = parse_modified_time(None)

        assert parsed.tzinfo is not None
        assert parsed >= before

    def test_unsupported_value(self) -> None:
        """Test other types are rejected."""
        with pytest.raises(ValueError, match="Unsupported timestamp"):
            parse_modified_time(12345)


class TestReadWrite:
    """Tests for FilesystemClient.write and read."""

    @pytest.mark.asyncio
    async def test_write_then_read_bytes(
        self, filesystem: FilesystemClient, sandbox_home: Path
    ) -> None:
        """Test uploads land on disk and download byte-for-byte."""
        target = str(sandbox_home / "data.bin")

        await filesystem.write(target, b"\x00\x01binary\xff")

        assert (sandbox_home / "data.bin").read_bytes() == b"\x00\x01binary\xff"
        assert await filesystem.read_bytes(target) == b"\x00\x01binary\xff"

    @pytest.mark.asyncio
    async def test_write_text_is_utf8(self, filesystem: FilesystemClient, sandbox_home: Path) -> None:
        """Test str content is encoded as UTF-8."""
        target = str(sandbox_home / "text.txt")

        await filesystem.write(target, "grüße\n")

        assert await filesystem.read(target) == "grüße\n"

    @pytest.mark.asyncio
    async def test_read_missing(self, filesystem: FilesystemClient, sandbox_home: Path) -> None:
        """Test reading a missing file raises SandboxReadError with the status."""
        with pytest.raises(SandboxReadError, match="Failed to read file") as exc_info:
            await filesystem.read(str(sandbox_home / "missing.txt"))

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_write_failure(self) -> None:
        """Test a rejected upload raises SandboxWriteError."""
        filesystem = _static_client(507, text="disk full")

        with pytest.raises(SandboxWriteError, match="disk full") as exc_info:
            await filesystem.write("/home/user/x", "data")

        assert exc_info.value.filepath == "/home/user/x"


class TestListDir:
    """Tests for FilesystemClient.list_dir."""

    @pytest.mark.asyncio
    async def test_entries_are_relative_to_work_dir(
        self, filesystem: FilesystemClient, sandbox_home: Path
    ) -> None:
        """Test entry paths are reported relative to the working root."""
        (sandbox_home / "pkg").mkdir()
        (sandbox_home / "pkg" / "mod.py").write_text("x = 1\n")

        entries = await filesystem.list_dir(str(sandbox_home), depth=2)

        by_path = {entry.path: entry for entry in entries}
        assert set(by_path) == {"pkg", "pkg/mod.py"}
        assert by_path["pkg"].type is FileType.DIRECTORY
        assert by_path["pkg"].size == 0
        assert by_path["pkg/mod.py"].size == 6
        assert by_path["pkg/mod.py"].modified_time.tzinfo is not None

    @pytest.mark.asyncio
    async def test_missing_directory(self, filesystem: FilesystemClient, sandbox_home: Path) -> None:
        """Test a missing directory raises SandboxPathNotFoundError."""
        with pytest.raises(SandboxPathNotFoundError, match="Directory does not exist"):
            await filesystem.list_dir(str(sandbox_home / "nope"))

    @pytest.mark.asyncio
    async def test_file_is_not_a_directory(
        self, filesystem: FilesystemClient, sandbox_home: Path
    ) -> None:
        """Test listing a file raises SandboxListError, not PathNotFound."""
        (sandbox_home / "file.txt").write_text("x")

        with pytest.raises(SandboxListError, match="not a directory") as exc_info:
            await filesystem.list_dir(str(sandbox_home / "file.txt"))

        assert not isinstance(exc_info.value, SandboxPathNotFoundError)

    @pytest.mark.asyncio
    async def test_not_found_code_in_body(self) -> None:
        """Test a not_found error code is recognized regardless of status."""
        filesystem = _static_client(500, json={"code": "not_found", "message": "gone"})

        with pytest.raises(SandboxPathNotFoundError):
            await filesystem.list_dir("/home/user/gone")

    @pytest.mark.asyncio
    async def test_request_body(self) -> None:
        """Test ListDir is a unary Connect call with path and depth."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        client = httpx.AsyncClient(base_url="https://envd.test", transport=httpx.MockTransport(handler))
        entries = await FilesystemClient(client, work_dir="/home/user").list_dir("/srv", depth=0)

        assert entries == []
        [request] = seen
        assert request.url.path == "/filesystem.Filesystem/ListDir"
        assert request.headers["Connect-Protocol-Version"] == "1"
        assert json.loads(request.content) == {"path": "/srv", "depth": 0}


class TestStatAndExists:
    """Tests for FilesystemClient.stat and exists."""

    @pytest.mark.asyncio
    async def test_stat_file(self, filesystem: FilesystemClient, sandbox_home: Path) -> None:
        """Test stat describes a single entry."""
        (sandbox_home / "a.txt").write_text("abc")

        entry = await filesystem.stat(str(sandbox_home / "a.txt"))

        assert entry.name == "a.txt"
        assert entry.path == "a.txt"
        assert entry.is_file
        assert entry.size == 3

    @pytest.mark.asyncio
    async def test_stat_missing(self, filesystem: FilesystemClient, sandbox_home: Path) -> None:
        """Test stat of a missing path raises SandboxPathNotFoundError."""
        with pytest.raises(SandboxPathNotFoundError, match="Path does not exist"):
            await filesystem.stat(str(sandbox_home / "missing"))

    @pytest.mark.asyncio
    async def test_stat_other_failure(self) -> None:
        """Test unexpected failures raise the base SandboxFileError."""
        with pytest.raises(SandboxFileError) as exc_info:
            await _static_client(500, text="boom").stat("/x")

        assert not isinstance(exc_info.value, SandboxPathNotFoundError)

    @pytest.mark.asyncio
    async def test_exists(self, filesystem: FilesystemClient, sandbox_home: Path) -> None:
        """Test exists for present and absent paths."""
        (sandbox_home / "here").mkdir()

        assert await filesystem.exists(str(sandbox_home / "here")) is True
        assert await filesystem.exists(str(sandbox_home / "gone")) is False

    @pytest.mark.asyncio
    async def test_exists_never_raises(self) -> None:
        """Test transport failures report False."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(base_url="https://envd.test", transport=httpx.MockTransport(handler))

        assert await FilesystemClient(client, work_dir="/").exists("/x") is False


class TestRemoveAndMakeDir:
    """Tests for FilesystemClient.remove and make_dir."""

    @pytest.mark.asyncio
    async def test_remove_file(self, filesystem: FilesystemClient, sandbox_home: Path) -> None:
        """Test removing an existing file."""
        (sandbox_home / "a.txt").write_text("x")

        await filesystem.remove(str(sandbox_home / "a.txt"))

        assert not (sandbox_home / "a.txt").exists()

    @pytest.mark.asyncio
    async def test_remove_missing(self, filesystem: FilesystemClient, sandbox_home: Path) -> None:
        """Test removing a missing path raises SandboxPathNotFoundError."""
        with pytest.raises(SandboxPathNotFoundError, match="File does not exist"):
            await filesystem.remove(str(sandbox_home / "missing"))

    @pytest.mark.asyncio
    async def test_remove_failure(self) -> None:
        """Test a failing Remove raises SandboxRemoveError."""
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            if request.url.path.endswith("/Stat"):
                return httpx.Response(200, json={"entry": {"path": "/x"}})
            return httpx.Response(500, text="permission denied")

        client = httpx.AsyncClient(base_url="https://envd.test", transport=httpx.MockTransport(handler))

        with pytest.raises(SandboxRemoveError, match="permission denied"):
            await FilesystemClient(client, work_dir="/").remove("/x")

        assert calls == ["/filesystem.Filesystem/Stat", "/filesystem.Filesystem/Remove"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "body"),
        [
            (404, '{"code":"not_found","message":"path not found"}'),
            (500, '{"code":"unknown","message":"no such file or directory"}'),
        ],
    )
    async def test_remove_vanished_after_stat(self, status: int, body: str) -> None:
        """Test a Remove that reports not-found after Stat succeeded raises SandboxPathNotFoundError."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/Stat"):
                return httpx.Response(200, json={"entry": {"path": "/x"}})
            return httpx.Response(status, text=body)

        client = httpx.AsyncClient(base_url="https://envd.test", transport=httpx.MockTransport(handler))

        with pytest.raises(SandboxPathNotFoundError) as exc_info:
            await FilesystemClient(client, work_dir="/").remove("/x")

        assert exc_info.value.status_code == status
        assert exc_info.value.filepath == "/x"
        assert not isinstance(exc_info.value, SandboxRemoveError)

    @pytest.mark.asyncio
    async def test_make_dir_creates_parents(
        self, filesystem: FilesystemClient, sandbox_home: Path
    ) -> None:
        """Test make_dir creates nested directories."""
        await filesystem.make_dir(str(sandbox_home / "a" / "b"))

        assert (sandbox_home / "a" / "b").is_dir()

    @pytest.mark.asyncio
    async def test_make_dir_existing_is_fine(
        self, filesystem: FilesystemClient, sandbox_home: Path
    ) -> None:
        """Test an already_exists conflict is not an error."""
        await filesystem.make_dir(str(sandbox_home))

    @pytest.mark.asyncio
    async def test_make_dir_failure(self) -> None:
        """Test other failures raise SandboxMakeDirError."""
        with pytest.raises(SandboxMakeDirError) as exc_info:
            await _static_client(403, text="read-only").make_dir("/etc/x")

        assert exc_info.value.status_code == 403
