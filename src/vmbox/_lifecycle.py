"""Control-plane REST client: create, reconnect, extend and destroy sandboxes."""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from vmbox._auth import resolve_auth
from vmbox._defaults import SandboxDefaults
from vmbox._types import SandboxHandle
from vmbox.exceptions import (
    SandboxCreationError,
    SandboxLifecycleError,
    SandboxNotFoundError,
    VmboxAuthenticationError,
)

logger = logging.getLogger(__name__)


class LifecycleClient:
    """Client for the sandbox control-plane API.

    One instance may manage any number of sandboxes. Calls are bounded by
    ``lifecycle_timeout_seconds`` (with ``connect_timeout_seconds`` for the
    TCP/TLS handshake), independent of command timeouts.

    Example:
        async with LifecycleClient(api_key="...") as lifecycle:
            handle = await lifecycle.create("base", 300, {})
            ...
            await lifecycle.destroy(handle.sandbox_id)
    """

    def __init__(
        self,
        defaults: SandboxDefaults | None = None,
        *,
        api_key: str | None = None,
        api_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._defaults = defaults or SandboxDefaults()
        self._api_url = (
            api_url or os.environ.get("VMBOX_API_URL") or self._defaults.api_url
        ).rstrip("/")
        self._api_key = api_key or self._defaults.api_key
        self._domain = os.environ.get("VMBOX_DOMAIN") or self._defaults.domain
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def api_url(self) -> str:
        return self._api_url

    async def __aenter__(self) -> LifecycleClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure the HTTP client is initialized."""
        if self._client is not None:
            return self._client

        auth = resolve_auth(self._api_key, api_url=self._api_url)
        if not auth:
            raise VmboxAuthenticationError(
                "No API key found. Pass api_key=, set VMBOX_API_KEY, or add a "
                f"~/.netrc entry for {httpx.URL(self._api_url).host}"
            )
        logger.debug("Using %s auth strategy", auth.strategy)

        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            headers=auth.headers,
            timeout=httpx.Timeout(
                self._defaults.lifecycle_timeout_seconds,
                connect=self._defaults.connect_timeout_seconds,
            ),
            transport=self._transport,
        )
        logger.debug("Initialized lifecycle client for %s", self._api_url)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if open."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("Closed lifecycle client")

    async def create(
        self,
        template: str | None = None,
        timeout_seconds: int | None = None,
        env_vars: dict[str, str] | None = None,
    ) -> SandboxHandle:
        """Create a sandbox.

        Args:
            template: Template to boot (default: defaults.template)
            timeout_seconds: Server-side lifetime (default: defaults.sandbox_timeout_seconds)
            env_vars: Environment variables, merged over defaults.environment_variables

        Returns:
            Handle for the new sandbox

        Raises:
            SandboxCreationError: On any non-2xx response or transport failure
            VmboxAuthenticationError: If no API key is available
        """
        template = template or self._defaults.template
        timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else self._defaults.sandbox_timeout_seconds
        )
        payload = {
            "templateID": template,
            "timeout": int(timeout),
            "envVars": self._defaults.merge_environment_variables(env_vars),
            "secure": True,
        }

        client = await self._ensure_client()
        logger.debug("Creating sandbox from template %s (timeout %ds)", template, int(timeout))

        try:
            response = await client.post("/sandboxes", json=payload)
        except httpx.HTTPError as e:
            raise SandboxCreationError(
                f"Failed to create sandbox from template '{template}': {e}"
            ) from e

        if response.status_code not in (200, 201):
            raise SandboxCreationError(
                f"Failed to create sandbox from template '{template}': "
                f"{response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        handle = self._parse_handle(response, timeout_seconds=int(timeout))
        logger.info("Created sandbox %s from template %s", handle.sandbox_id, template)
        return handle

    async def reconnect(
        self,
        sandbox_id: str,
        timeout_seconds: int | None = None,
    ) -> SandboxHandle:
        """Resume a previously created sandbox.

        Raises:
            SandboxNotFoundError: If the control plane does not know sandbox_id
            SandboxCreationError: On any other non-2xx response or transport failure
        """
        timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else self._defaults.sandbox_timeout_seconds
        )
        client = await self._ensure_client()
        logger.debug("Reconnecting to sandbox %s", sandbox_id)

        try:
            response = await client.post(
                f"/sandboxes/{sandbox_id}/connect", json={"timeout": int(timeout)}
            )
        except httpx.HTTPError as e:
            raise SandboxCreationError(
                f"Failed to reconnect to sandbox '{sandbox_id}': {e}",
                sandbox_id=sandbox_id,
            ) from e

        if response.status_code == 404:
            raise SandboxNotFoundError(
                f"Sandbox '{sandbox_id}' not found",
                sandbox_id=sandbox_id,
                status_code=response.status_code,
                body=response.text,
            )
        if not response.is_success:
            raise SandboxCreationError(
                f"Failed to reconnect to sandbox '{sandbox_id}': "
                f"{response.status_code} - {response.text}",
                sandbox_id=sandbox_id,
                status_code=response.status_code,
                body=response.text,
            )

        handle = self._parse_handle(response, timeout_seconds=int(timeout), sandbox_id=sandbox_id)
        logger.info("Reconnected to sandbox %s", handle.sandbox_id)
        return handle

    async def extend_timeout(self, sandbox_id: str, timeout_seconds: int) -> None:
        """Reset the sandbox's server-side lifetime to timeout_seconds from now.

        Raises:
            SandboxLifecycleError: If the control plane rejects the request
        """
        client = await self._ensure_client()
        logger.debug("Setting timeout of sandbox %s to %ds", sandbox_id, timeout_seconds)

        try:
            response = await client.post(
                f"/sandboxes/{sandbox_id}/timeout", json={"timeout": int(timeout_seconds)}
            )
        except httpx.HTTPError as e:
            raise SandboxLifecycleError(
                f"Failed to extend timeout of sandbox '{sandbox_id}': {e}",
                sandbox_id=sandbox_id,
            ) from e

        if response.status_code not in (200, 204):
            raise SandboxLifecycleError(
                f"Failed to extend timeout of sandbox '{sandbox_id}': "
                f"{response.status_code} - {response.text}",
                sandbox_id=sandbox_id,
                status_code=response.status_code,
                body=response.text,
            )

    async def destroy(self, sandbox_id: str) -> bool:
        """Kill a sandbox.

        Returns:
            True if the sandbox was destroyed, False if it was already gone

        Raises:
            SandboxLifecycleError: On any other non-2xx response or transport failure
        """
        client = await self._ensure_client()
        logger.debug("Destroying sandbox %s", sandbox_id)

        try:
            response = await client.delete(f"/sandboxes/{sandbox_id}")
        except httpx.HTTPError as e:
            raise SandboxLifecycleError(
                f"Failed to destroy sandbox '{sandbox_id}': {e}",
                sandbox_id=sandbox_id,
            ) from e

        if response.status_code == 404:
            logger.debug("Sandbox %s already gone", sandbox_id)
            return False
        if response.status_code not in (200, 204):
            raise SandboxLifecycleError(
                f"Failed to destroy sandbox '{sandbox_id}': "
                f"{response.status_code} - {response.text}",
                sandbox_id=sandbox_id,
                status_code=response.status_code,
                body=response.text,
            )

        logger.info("Destroyed sandbox %s", sandbox_id)
        return True

    def envd_url(self, handle: SandboxHandle) -> str:
        """Base URL of the command service inside the sandbox."""
        return f"https://{self._defaults.envd_port}-{handle.sandbox_id}.{handle.domain}"

    def _parse_handle(
        self,
        response: httpx.Response,
        *,
        timeout_seconds: int,
        sandbox_id: str | None = None,
    ) -> SandboxHandle:
        try:
            data = response.json()
        except ValueError as e:
            raise SandboxCreationError(
                f"Invalid control-plane response: {response.text}",
                sandbox_id=sandbox_id,
                status_code=response.status_code,
                body=response.text,
            ) from e

        if not isinstance(data, dict):
            data = {}
        resolved_id = data.get("sandboxID") or sandbox_id
        if not resolved_id:
            raise SandboxCreationError(
                f"Control-plane response has no sandboxID: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        return SandboxHandle(
            sandbox_id=resolved_id,
            domain=data.get("domain") or self._domain,
            access_token=data.get("envdAccessToken") or None,
            timeout_seconds=timeout_seconds,
            template_id=data.get("templateID"),
            envd_version=data.get("envdVersion"),
        )
