from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

DEFAULT_API_URL: str = "https://api.e2b.dev"
DEFAULT_DOMAIN: str = "e2b.dev"
DEFAULT_TEMPLATE: str = "base"

# Port the in-sandbox command service (envd) listens on
DEFAULT_ENVD_PORT: int = 49983

# Working root inside the sandbox; relative paths resolve against it
DEFAULT_WORK_DIR: str = "/home/user"

# How long the sandbox lives server-side before the control plane reaps it
DEFAULT_SANDBOX_TIMEOUT_SECONDS: int = 300

# Deadline for one exec call (request + full streamed response)
DEFAULT_COMMAND_TIMEOUT_SECONDS: float = 120.0

# Timeout for unary file RPCs against envd
DEFAULT_REQUEST_TIMEOUT_SECONDS: float = 30.0

# Timeouts for control-plane calls, separate from command execution
DEFAULT_LIFECYCLE_TIMEOUT_SECONDS: float = 60.0
DEFAULT_CONNECT_TIMEOUT_SECONDS: float = 30.0

# Readiness polling against GET /health
DEFAULT_READY_TIMEOUT_SECONDS: float = 60.0
DEFAULT_READY_POLL_INTERVAL_SECONDS: float = 0.5
DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS: float = 5.0


@dataclass(frozen=True)
class SandboxDefaults:
    """Immutable configuration defaults for remote sandboxes.

    All fields have sensible defaults. Override only what you need.

    There are three separate timeout concepts:
    - sandbox_timeout_seconds: How long the sandbox lives before the control
      plane reaps it (server-side)
    - command_timeout_seconds: Deadline for a single exec call (client-side)
    - lifecycle_timeout_seconds / connect_timeout_seconds: How long to wait
      on control-plane calls (client-side)

    Instances are passed explicitly at construction, so sandboxes with
    different configurations can coexist in one process.

    Example:
        ```python
        defaults = SandboxDefaults(
            template="python-3.12",
            sandbox_timeout_seconds=900,
            command_timeout_seconds=30,
            environment_variables={"LOG_LEVEL": "info"},
        )
        ```
    """

    api_url: str = DEFAULT_API_URL
    domain: str = DEFAULT_DOMAIN
    template: str = DEFAULT_TEMPLATE
    api_key: str | None = None
    work_dir: str = DEFAULT_WORK_DIR
    envd_port: int = DEFAULT_ENVD_PORT
    sandbox_timeout_seconds: int = DEFAULT_SANDBOX_TIMEOUT_SECONDS
    command_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    lifecycle_timeout_seconds: float = DEFAULT_LIFECYCLE_TIMEOUT_SECONDS
    connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS
    ready_timeout_seconds: float = DEFAULT_READY_TIMEOUT_SECONDS
    ready_poll_interval_seconds: float = DEFAULT_READY_POLL_INTERVAL_SECONDS
    health_check_timeout_seconds: float = DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS
    environment_variables: dict[str, str] = field(default_factory=dict)

    def merge_environment_variables(self, additional: dict[str, str] | None) -> dict[str, str]:
        """Combine default environment variables with additional ones.

        Additional environment variables override defaults with the same key.
        """
        merged = dict(self.environment_variables)
        if additional:
            merged.update(additional)
        return merged

    def with_overrides(self, **kwargs: Any) -> SandboxDefaults:
        """Create new defaults with some values overridden."""
        return replace(self, **kwargs)
