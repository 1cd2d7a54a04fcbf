#!/usr/bin/env python3
"""Example: Reconnect to an existing sandbox by ID.

This example creates a sandbox with the bare LifecycleClient, which does not
destroy anything on exit, and later attaches to it with RemoteSandbox.connect().
Closing the connected instance destroys the sandbox.

Usage:
    # First, create a sandbox and note its ID
    python examples/reconnect_to_sandbox.py --create

    # Then reconnect to it (and destroy it on exit with --stop)
    python examples/reconnect_to_sandbox.py --sandbox-id <id> [--stop]
"""

import argparse
import asyncio

from vmbox import LifecycleClient, RemoteSandbox
from vmbox.exceptions import SandboxNotFoundError


async def create_long_running_sandbox() -> str:
    """Create a sandbox that outlives this process."""
    print("Creating a sandbox with a 10 minute lifetime...")

    async with LifecycleClient() as lifecycle:
        handle = await lifecycle.create(timeout_seconds=600)

    print(f"Created sandbox: {handle.sandbox_id}")
    print("To reconnect later, run:")
    print(f"  python examples/reconnect_to_sandbox.py --sandbox-id {handle.sandbox_id}")
    return handle.sandbox_id


async def reconnect_to_sandbox(sandbox_id: str, stop: bool = False) -> None:
    """Reconnect to an existing sandbox and optionally destroy it."""
    print(f"Reconnecting to sandbox: {sandbox_id}")

    try:
        sandbox = await RemoteSandbox.connect(sandbox_id, timeout_seconds=600)
    except SandboxNotFoundError:
        print(f"Error: Sandbox {sandbox_id} not found")
        return

    result = await sandbox.exec(["uptime"])
    print(f"uptime: {result.stdout.strip()}")

    if stop:
        await sandbox.close()
        print("Sandbox destroyed")
        return

    # Keep it alive: reset the lifetime and release only the local clients
    await sandbox.extend_timeout(600)
    await sandbox.detach()
    print("Sandbox left running for another 10 minutes")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--create", action="store_true", help="Create a new sandbox")
    parser.add_argument("--sandbox-id", help="Sandbox ID to reconnect to")
    parser.add_argument("--stop", action="store_true", help="Destroy the sandbox after use")
    args = parser.parse_args()

    if args.create:
        asyncio.run(create_long_running_sandbox())
    elif args.sandbox_id:
        asyncio.run(reconnect_to_sandbox(args.sandbox_id, stop=args.stop))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
