"""Local sandbox example.

Runs the same calls as the remote examples against LocalSandbox, which needs
no API key. Handy for developing against the Sandbox interface offline.

This example demonstrates:
- Creating a LocalSandbox with initial files and a .env overlay
- Writing code against the backend-neutral Sandbox type
"""

import asyncio
import tempfile
from pathlib import Path

from vmbox import ExecSpec, FileSpec, LocalSandbox, Sandbox, load_dotenv


async def word_count(sandbox: Sandbox, path: str) -> int:
    """Works unchanged on any backend."""
    result = await sandbox.exec(["wc", "-w", path], check=True)
    return int(result.stdout.split()[0])


async def main() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        env_file = Path(tmp) / ".env"
        env_file.write_text("GREETING=hello from .env\n")
        env = load_dotenv(str(env_file))

        files = [FileSpec("docs/intro.txt", "the quick brown fox jumps over the lazy dog\n")]
        async with await LocalSandbox.create(files=files) as sandbox:
            print(f"Working root: {sandbox.work_dir}")

            print(f"Words: {await word_count(sandbox, 'docs/intro.txt')}")

            result = await sandbox.exec(ExecSpec.shell('echo "$GREETING"', env=env))
            print(result.stdout.rstrip())

            for entry in await sandbox.files.list(".", max_depth=0):
                print(f"{entry.type:<9} {entry.path}")


if __name__ == "__main__":
    asyncio.run(main())
