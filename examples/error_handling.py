"""Error handling patterns for vmbox.

Demonstrates:
- SandboxExecutionError with check=True
- SandboxTimeoutError from an exec timeout
- SandboxPathNotFoundError from file operations
- SandboxNotFoundError when reconnecting to an unknown ID

Usage:
    python examples/error_handling.py
"""

import asyncio
import os

from vmbox import ExecSpec, RemoteSandbox, SandboxDefaults
from vmbox.exceptions import (
    SandboxExecutionError,
    SandboxNotFoundError,
    SandboxPathNotFoundError,
    SandboxTimeoutError,
)


async def main() -> None:
    if not os.environ.get("VMBOX_API_KEY"):
        raise RuntimeError(
            "Missing VMBOX_API_KEY. Set it in your environment before running this example."
        )

    defaults = SandboxDefaults(sandbox_timeout_seconds=120)

    async with await RemoteSandbox.create(defaults) as sandbox:
        # --- SandboxExecutionError with check=True ---
        print("1. SandboxExecutionError with check=True")
        print("-" * 50)

        # Without check=True, non-zero exit codes don't raise
        result = await sandbox.exec(ExecSpec.shell("exit 42"))
        print(f"   Without check: returncode={result.returncode} (no exception)")

        try:
            await sandbox.exec(ExecSpec.shell("echo oops >&2; exit 1"), check=True)
        except SandboxExecutionError as e:
            print("   With check=True: caught SandboxExecutionError")
            print(f"   returncode={e.exec_result.returncode} stderr={e.exec_result.stderr!r}")
        print()

        # --- SandboxTimeoutError ---
        print("2. SandboxTimeoutError from exec timeout")
        print("-" * 50)
        try:
            await sandbox.exec(ExecSpec.of("sleep", "10", timeout_seconds=1))
        except SandboxTimeoutError as e:
            print(f"   Caught SandboxTimeoutError (timeout_seconds={e.timeout_seconds})")
        print()

        # --- SandboxPathNotFoundError ---
        print("3. SandboxPathNotFoundError from file operations")
        print("-" * 50)
        try:
            await sandbox.files.list("does/not/exist")
        except SandboxPathNotFoundError as e:
            print(f"   Caught SandboxPathNotFoundError for {e.filepath}")
        print()

    # --- SandboxNotFoundError ---
    print("4. SandboxNotFoundError when reconnecting")
    print("-" * 50)
    try:
        await RemoteSandbox.connect("non-existent-sandbox-id")
    except SandboxNotFoundError as e:
        print(f"   Caught SandboxNotFoundError (sandbox_id={e.sandbox_id})")
    print()

    print("All error handling patterns demonstrated!")


if __name__ == "__main__":
    asyncio.run(main())
