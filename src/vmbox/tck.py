"""Backend compatibility kit.

Every backend must pass this suite unmodified. Subclass it in a test module
and provide a ``sandbox`` fixture that yields a fresh, open sandbox:

    class TestMyBackendCompatibility(SandboxCompatibilityKit):
        @pytest_asyncio.fixture
        async def sandbox(self):
            sb = await MyBackend.create()
            yield sb
            await sb.close()

The class name lacks a ``Test`` prefix so pytest only collects the
subclasses.

This module imports pytest, which is not a runtime dependency. Install
``vmbox-client[test]`` to use it; ``import vmbox`` never loads it.
"""

from __future__ import annotations

import pytest

from vmbox._base import Sandbox
from vmbox._types import ExecSpec, FileSpec
from vmbox.exceptions import (
    SandboxClosedError,
    SandboxExecutionError,
    SandboxListError,
    SandboxPathNotFoundError,
    SandboxReadError,
    SandboxRemoveError,
    SandboxTimeoutError,
)

SPECIAL_CONTENT = (
    "line one\n"
    "line two\n"
    "\ttabbed $HOME `uname` $(whoami) 'single' \"double\"\n"
    "& | ; < > * ? ! # ~ \\ %s {}\n"
    "unicode: héllo wörld ✓\n"
)


class SandboxCompatibilityKit:
    """Behavioral contract shared by all sandbox backends."""

    # Execution

    @pytest.mark.asyncio
    async def test_basic_execution(self, sandbox: Sandbox) -> None:
        result = await sandbox.exec(["echo", "Hello from sandbox"])

        assert result.success
        assert result.returncode == 0
        assert "Hello from sandbox" in result.merged_log
        assert result.duration_seconds > 0
        assert result.has_output

    @pytest.mark.asyncio
    async def test_environment_variables(self, sandbox: Sandbox) -> None:
        spec = ExecSpec.shell("echo $TEST_VAR", env={"TEST_VAR": "test-value"})
        result = await sandbox.exec(spec)

        assert result.success
        assert result.merged_log.strip() == "test-value"

    @pytest.mark.asyncio
    async def test_environment_values_are_not_shell_evaluated(self, sandbox: Sandbox) -> None:
        value = "a b; echo injected $(echo sub) 'q'"
        spec = ExecSpec.shell('printf "%s" "$RAW"', env={"RAW": value})
        result = await sandbox.exec(spec)

        assert result.stdout == value

    @pytest.mark.asyncio
    async def test_working_directory(self, sandbox: Sandbox) -> None:
        result = await sandbox.exec(["pwd"])

        assert result.success
        assert result.stdout.strip() == sandbox.work_dir

    @pytest.mark.asyncio
    async def test_cwd_override(self, sandbox: Sandbox) -> None:
        await sandbox.files.mkdir("subdir")
        result = await sandbox.exec(ExecSpec.of("pwd", cwd="subdir"))

        assert result.success
        assert result.stdout.strip() == f"{sandbox.work_dir}/subdir"

    @pytest.mark.asyncio
    async def test_argv_is_not_shell_interpreted(self, sandbox: Sandbox) -> None:
        result = await sandbox.exec(["echo", "$HOME; echo oops | cat"])

        assert result.stdout.strip() == "$HOME; echo oops | cat"

    @pytest.mark.asyncio
    async def test_timeout(self, sandbox: Sandbox) -> None:
        spec = ExecSpec.shell("sleep 5", timeout_seconds=1)

        with pytest.raises(SandboxTimeoutError) as exc_info:
            await sandbox.exec(spec)

        assert exc_info.value.timeout_seconds == 1

    @pytest.mark.asyncio
    async def test_error_exit_code(self, sandbox: Sandbox) -> None:
        result = await sandbox.exec(["ls", "/nonexistent"])

        assert result.failed
        assert result.returncode != 0
        assert "No such file or directory" in result.stderr
        assert "No such file or directory" in result.merged_log

    @pytest.mark.asyncio
    async def test_specific_exit_code(self, sandbox: Sandbox) -> None:
        result = await sandbox.exec(ExecSpec.shell("exit 3"))

        assert result.returncode == 3

    @pytest.mark.asyncio
    async def test_check_raises_on_failure(self, sandbox: Sandbox) -> None:
        with pytest.raises(SandboxExecutionError) as exc_info:
            await sandbox.exec(ExecSpec.shell("echo partial; exit 7"), check=True)

        assert exc_info.value.exec_result is not None
        assert exc_info.value.exec_result.returncode == 7
        assert "partial" in exc_info.value.exec_result.stdout

    @pytest.mark.asyncio
    async def test_stdout_only(self, sandbox: Sandbox) -> None:
        result = await sandbox.exec(ExecSpec.shell("echo stdout-content"))

        assert result.success
        assert "stdout-content" in result.stdout
        assert result.has_stdout
        assert result.stderr == ""
        assert not result.has_stderr
        assert result.merged_log == result.stdout

    @pytest.mark.asyncio
    async def test_stderr_only(self, sandbox: Sandbox) -> None:
        result = await sandbox.exec(ExecSpec.shell("echo error-message >&2"))

        assert result.success
        assert "error-message" in result.stderr
        assert result.has_stderr
        assert "error-message" not in result.stdout

    @pytest.mark.asyncio
    async def test_mixed_streams_stay_disjoint(self, sandbox: Sandbox) -> None:
        result = await sandbox.exec(ExecSpec.shell("echo to-stdout; echo to-stderr >&2"))

        assert result.success
        assert "to-stdout" in result.stdout
        assert "to-stderr" in result.stderr
        assert "to-stderr" not in result.stdout
        assert "to-stdout" not in result.stderr
        assert result.merged_log == result.stdout + result.stderr

    @pytest.mark.asyncio
    async def test_large_output(self, sandbox: Sandbox) -> None:
        result = await sandbox.exec(ExecSpec.shell("seq 1 20000"))

        lines = result.stdout.splitlines()
        assert len(lines) == 20000
        assert lines[0] == "1"
        assert lines[-1] == "20000"

    @pytest.mark.asyncio
    async def test_multiple_executions(self, sandbox: Sandbox) -> None:
        first = await sandbox.exec(["echo", "first"])
        second = await sandbox.exec(["echo", "second"])
        third = await sandbox.exec(["echo", "third"])

        assert first.success and second.success and third.success
        assert "first" in first.merged_log
        assert "second" in second.merged_log
        assert "third" in third.merged_log

    @pytest.mark.asyncio
    async def test_filesystem_root_visible(self, sandbox: Sandbox) -> None:
        result = await sandbox.exec(["ls", "/"])

        assert result.success
        assert result.stdout.strip()

    # State

    @pytest.mark.asyncio
    async def test_initial_state(self, sandbox: Sandbox) -> None:
        assert not sandbox.is_closed
        assert sandbox.work_dir.startswith("/")

    @pytest.mark.asyncio
    async def test_close(self, sandbox: Sandbox) -> None:
        await sandbox.close()

        assert sandbox.is_closed

    @pytest.mark.asyncio
    async def test_close_twice_is_noop(self, sandbox: Sandbox) -> None:
        await sandbox.close()
        await sandbox.close()

        assert sandbox.is_closed

    @pytest.mark.asyncio
    async def test_closed_sandbox_fails_fast(self, sandbox: Sandbox) -> None:
        await sandbox.close()

        with pytest.raises(SandboxClosedError):
            await sandbox.exec(["echo", "nope"])
        with pytest.raises(SandboxClosedError):
            sandbox.files  # noqa: B018

    @pytest.mark.asyncio
    async def test_file_accessor_fails_after_close(self, sandbox: Sandbox) -> None:
        files = sandbox.files
        await sandbox.close()

        with pytest.raises(SandboxClosedError):
            await files.read("anything.txt")

    # Files

    @pytest.mark.asyncio
    async def test_write_read_round_trip(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("roundtrip.txt", SPECIAL_CONTENT)

        assert await sandbox.files.read("roundtrip.txt") == SPECIAL_CONTENT

    @pytest.mark.asyncio
    async def test_write_empty_file(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("empty.txt", "")

        assert await sandbox.files.exists("empty.txt")
        assert await sandbox.files.read("empty.txt") == ""

    @pytest.mark.asyncio
    async def test_write_overwrites(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("over.txt", "first version, longer")
        await sandbox.files.write("over.txt", "second")

        assert await sandbox.files.read("over.txt") == "second"

    @pytest.mark.asyncio
    async def test_write_creates_parent_directories(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("nested/deep/file.txt", "deep")

        assert await sandbox.files.exists("nested/deep")
        assert await sandbox.files.read("nested/deep/file.txt") == "deep"

    @pytest.mark.asyncio
    async def test_written_file_visible_to_commands(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("shared.txt", "from files api")
        result = await sandbox.exec(["cat", "shared.txt"])

        assert result.stdout == "from files api"

    @pytest.mark.asyncio
    async def test_absolute_paths(self, sandbox: Sandbox) -> None:
        path = f"{sandbox.work_dir}/absolute.txt"
        await sandbox.files.write(path, "abs")

        assert await sandbox.files.read("absolute.txt") == "abs"

    @pytest.mark.asyncio
    async def test_read_nonexistent(self, sandbox: Sandbox) -> None:
        with pytest.raises(SandboxReadError, match="Failed to read file"):
            await sandbox.files.read("nonexistent.txt")

    @pytest.mark.asyncio
    async def test_exists_false_for_missing(self, sandbox: Sandbox) -> None:
        assert not await sandbox.files.exists("nope.txt")

    @pytest.mark.asyncio
    async def test_list_directory(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("file1.txt", "one")
        await sandbox.files.write("file2.txt", "two")
        await sandbox.files.mkdir("subdir")

        entries = {entry.name: entry for entry in await sandbox.files.list(".")}

        assert {"file1.txt", "file2.txt", "subdir"} <= set(entries)
        assert entries["file1.txt"].is_file
        assert entries["file2.txt"].is_file
        assert entries["subdir"].is_directory

    @pytest.mark.asyncio
    async def test_list_entry_details(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("details/data.txt", "12345")
        await sandbox.files.mkdir("details/inner")

        entries = {entry.name: entry for entry in await sandbox.files.list("details")}

        data = entries["data.txt"]
        assert data.path == "details/data.txt"
        assert data.size == 5
        assert data.modified_time.tzinfo is not None
        inner = entries["inner"]
        assert inner.path == "details/inner"
        assert inner.size == 0

    @pytest.mark.asyncio
    async def test_list_with_depth(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("tree/root.txt", "r")
        await sandbox.files.write("tree/level1/file1.txt", "1")
        await sandbox.files.write("tree/level1/level2/file2.txt", "2")

        depth1 = {entry.name for entry in await sandbox.files.list("tree", max_depth=1)}
        depth2 = {entry.name for entry in await sandbox.files.list("tree", max_depth=2)}
        unlimited = {entry.name for entry in await sandbox.files.list("tree", max_depth=0)}

        assert {"root.txt", "level1"} <= depth1
        assert "file1.txt" not in depth1
        assert {"root.txt", "level1", "file1.txt", "level2"} <= depth2
        assert "file2.txt" not in depth2
        assert "file2.txt" in unlimited

    @pytest.mark.asyncio
    async def test_list_nonexistent(self, sandbox: Sandbox) -> None:
        with pytest.raises(SandboxPathNotFoundError, match="does not exist"):
            await sandbox.files.list("nonexistent")

    @pytest.mark.asyncio
    async def test_list_file_not_directory(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("afile.txt", "content")

        with pytest.raises(SandboxListError, match="not a directory") as exc_info:
            await sandbox.files.list("afile.txt")

        assert not isinstance(exc_info.value, SandboxPathNotFoundError)

    @pytest.mark.asyncio
    async def test_delete_file(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("todelete.txt", "bye")
        assert await sandbox.files.exists("todelete.txt")

        await sandbox.files.delete("todelete.txt")

        assert not await sandbox.files.exists("todelete.txt")

    @pytest.mark.asyncio
    async def test_delete_empty_directory(self, sandbox: Sandbox) -> None:
        await sandbox.files.mkdir("emptydir")
        assert await sandbox.files.exists("emptydir")

        await sandbox.files.delete("emptydir")

        assert not await sandbox.files.exists("emptydir")

    @pytest.mark.asyncio
    async def test_delete_directory_recursive(self, sandbox: Sandbox) -> None:
        paths = [
            "dirwithcontent/file.txt",
            "dirwithcontent/subdir/nested.txt",
            "dirwithcontent/subdir/deeper/leaf.txt",
        ]
        for path in paths:
            await sandbox.files.write(path, path)

        await sandbox.files.delete("dirwithcontent", recursive=True)

        assert not await sandbox.files.exists("dirwithcontent")
        for path in [*paths, "dirwithcontent/subdir", "dirwithcontent/subdir/deeper"]:
            assert not await sandbox.files.exists(path)

    @pytest.mark.asyncio
    async def test_delete_non_empty_directory_requires_recursive(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("keepme/file.txt", "still here")

        with pytest.raises(SandboxRemoveError):
            await sandbox.files.delete("keepme")

        assert await sandbox.files.exists("keepme/file.txt")

    @pytest.mark.asyncio
    async def test_delete_nonexistent(self, sandbox: Sandbox) -> None:
        with pytest.raises(SandboxPathNotFoundError, match="does not exist"):
            await sandbox.files.delete("nonexistent")

    @pytest.mark.asyncio
    async def test_delete_several(self, sandbox: Sandbox) -> None:
        await sandbox.files.write("chain1.txt", "1")
        await sandbox.files.write("chain2.txt", "2")

        await sandbox.files.delete("chain1.txt")
        await sandbox.files.delete("chain2.txt")

        assert not await sandbox.files.exists("chain1.txt")
        assert not await sandbox.files.exists("chain2.txt")

    @pytest.mark.asyncio
    async def test_mkdir_is_idempotent(self, sandbox: Sandbox) -> None:
        await sandbox.files.mkdir("made/nested")
        await sandbox.files.mkdir("made/nested")

        assert await sandbox.files.exists("made/nested")

    @pytest.mark.asyncio
    async def test_setup_files(self, sandbox: Sandbox) -> None:
        await sandbox.files.setup(
            [
                FileSpec("setup/a.txt", "alpha"),
                FileSpec("setup/b/b.txt", "beta"),
            ]
        )

        assert await sandbox.files.read("setup/a.txt") == "alpha"
        assert await sandbox.files.read("setup/b/b.txt") == "beta"
