"""Authentication resolution for vmbox clients.

Two credentials are in play:
1. Control-plane API key -> X-API-Key header on lifecycle calls
2. Per-sandbox envd access token -> X-Access-Token header on in-sandbox calls

API key resolution order: explicit argument, VMBOX_API_KEY env var, then the
~/.netrc entry for the control-plane host. The envd token comes from the
create/connect response and is optional for unsecured sandboxes.
"""

from __future__ import annotations

import logging
import netrc
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal
from urllib.parse import urlsplit

from vmbox._defaults import DEFAULT_API_URL

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
ACCESS_TOKEN_HEADER = "X-Access-Token"


@dataclass(frozen=True)
class AuthHeaders:
    """Resolved authentication headers and strategy used."""

    headers: dict[str, str]
    strategy: Literal["explicit", "env", "netrc", "envd", "none"]

    def __bool__(self) -> bool:
        """Return True if any auth headers are present."""
        return bool(self.headers)


class _AuthMode:
    """Configuration for an authentication mode."""

    def __init__(self, try_auth: Callable[[str], AuthHeaders | None]) -> None:
        self.try_auth = try_auth


def resolve_auth(api_key: str | None = None, *, api_url: str = DEFAULT_API_URL) -> AuthHeaders:
    """Resolve control-plane authentication headers.

    Args:
        api_key: Explicit API key; wins over every other source
        api_url: Control-plane URL, used to pick the ~/.netrc machine entry

    Returns:
        AuthHeaders with resolved headers and strategy name. The headers are
        empty (strategy "none") when no key could be found.
    """
    if api_key:
        return AuthHeaders(headers={API_KEY_HEADER: api_key}, strategy="explicit")

    for mode in _AUTH_MODES:
        auth = mode.try_auth(api_url)
        if auth is not None:
            logger.debug("Using %s authentication", auth.strategy)
            return auth

    logger.debug("No API key found")
    return AuthHeaders(headers={}, strategy="none")


def envd_auth(access_token: str | None) -> AuthHeaders:
    """Build headers for calls to the in-sandbox command service.

    An absent token is legal; the header is then omitted entirely.
    """
    if not access_token:
        return AuthHeaders(headers={}, strategy="none")
    return AuthHeaders(headers={ACCESS_TOKEN_HEADER: access_token}, strategy="envd")


def _try_env_auth(api_url: str) -> AuthHeaders | None:
    api_key = os.environ.get("VMBOX_API_KEY")
    if not api_key:
        return None
    return AuthHeaders(headers={API_KEY_HEADER: api_key}, strategy="env")


def _try_netrc_auth(api_url: str) -> AuthHeaders | None:
    host = urlsplit(api_url).hostname
    if not host:
        return None
    api_key = _read_api_key_from_netrc(host)
    if not api_key:
        return None
    return AuthHeaders(headers={API_KEY_HEADER: api_key}, strategy="netrc")


def _read_api_key_from_netrc(host: str) -> str | None:
    """Read an API key for host from ~/.netrc.

    Returns:
        The password field of the matching machine entry, None otherwise
    """
    netrc_path = Path.home() / ".netrc"

    try:
        nrc = netrc.netrc(str(netrc_path))
    except FileNotFoundError:
        logger.debug("No .netrc file found at %s", netrc_path)
        return None
    except netrc.NetrcParseError as e:
        logger.warning("Failed to parse .netrc: %s", e)
        return None

    auth = nrc.authenticators(host)
    if auth is None:
        logger.debug("No entry for %s in .netrc", host)
        return None

    # auth is (login, account, password)
    _login, _account, password = auth
    return password


# Auth modes in priority order - first successful returns
_AUTH_MODES = [
    _AuthMode(try_auth=_try_env_auth),
    _AuthMode(try_auth=_try_netrc_auth),
]
