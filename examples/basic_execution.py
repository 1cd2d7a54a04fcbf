"""Basic remote sandbox example.

This example demonstrates:
- Creating a sandbox using the context manager pattern
- Executing argv and shell commands
- Writing, listing and reading files
"""

import asyncio
import logging
import os

from vmbox import ExecSpec, RemoteSandbox, SandboxDefaults


async def main() -> None:
    if not os.environ.get("VMBOX_API_KEY"):
        raise RuntimeError(
            "Missing VMBOX_API_KEY. Set it in your environment before running this example."
        )

    logging.basicConfig(level=logging.INFO)

    # Define reusable defaults
    defaults = SandboxDefaults(
        template="base",
        sandbox_timeout_seconds=120,
        command_timeout_seconds=30,
    )

    async with await RemoteSandbox.create(defaults) as sandbox:
        print(f"Sandbox started: {sandbox.sandbox_id}")
        print(f"Command service: {sandbox.envd_url}")

        # Argv commands are passed through unchanged
        result = await sandbox.exec(["echo", "Hello from vmbox sandbox"])
        print(result.stdout.rstrip())

        # Shell text needs an explicit ExecSpec.shell
        result = await sandbox.exec(ExecSpec.shell("uname -a && id -un"))
        print(result.stdout.rstrip())

        # Relative paths resolve against the working root
        await sandbox.files.write("data/hello.txt", "Hello, World!\n")
        for entry in await sandbox.files.list("data"):
            print(f"{entry.type:<9} {entry.size:>6}B {entry.path}")

        content = await sandbox.files.read("data/hello.txt")
        print(f"read back: {content.rstrip()}")

        result = await sandbox.exec(ExecSpec.of("cat", "hello.txt", cwd="data"))
        print(f"cat -> {result.stdout.rstrip()} ({result.summary()})")


if __name__ == "__main__":
    asyncio.run(main())
