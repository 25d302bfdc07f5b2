# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
OAuth client configuration.

Parses the JSON client secrets file that providers such as Google hand out
("installed" or "web" application types) into an OAuthConfig.
"""

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union
from urllib.parse import urlsplit

from .errors import ConfigError

lib_logger = logging.getLogger("oauther")

CREDENTIAL_SECTIONS = ("installed", "web")


@dataclass(frozen=True)
class OAuthConfig:
    """
    Client identity and endpoints for one OAuth2 provider.
    """

    client_id: str
    auth_url: str
    token_url: str
    client_secret: str = ""
    scopes: Tuple[str, ...] = ()
    redirect_url: Optional[str] = None

    def with_scopes(self, scopes: Iterable[str]) -> "OAuthConfig":
        return replace(self, scopes=tuple(scopes))

    def with_redirect_url(self, redirect_url: str) -> "OAuthConfig":
        return replace(self, redirect_url=redirect_url)


def config_from_json(
    data: Union[bytes, str, Dict[str, Any]], *scopes: str
) -> OAuthConfig:
    """
    Build an OAuthConfig from the contents of a client secrets file.

    Args:
        data: Raw JSON (bytes or str) or an already decoded dict
        scopes: Scopes to request

    Returns:
        OAuthConfig for the "installed" or "web" client in the file

    Raises:
        ConfigError: If the JSON is malformed or required fields are missing
    """
    if isinstance(data, (bytes, str)):
        try:
            data = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ConfigError(f"Credentials are not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Credentials must be a JSON object")

    section = None
    for name in CREDENTIAL_SECTIONS:
        if isinstance(data.get(name), dict):
            section = data[name]
            break
    if section is None:
        raise ConfigError(
            f"Credentials must contain one of: {', '.join(CREDENTIAL_SECTIONS)}"
        )

    missing = [key for key in ("client_id", "auth_uri", "token_uri") if not section.get(key)]
    if missing:
        raise ConfigError(f"Credentials missing required fields: {', '.join(missing)}")
    for key in ("auth_uri", "token_uri"):
        parts = urlsplit(str(section[key]))
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigError(f"Credentials field {key} is not an absolute URL: {section[key]}")

    redirect_uris = section.get("redirect_uris") or []
    return OAuthConfig(
        client_id=section["client_id"],
        client_secret=section.get("client_secret", ""),
        auth_url=section["auth_uri"],
        token_url=section["token_uri"],
        scopes=tuple(scopes),
        redirect_url=redirect_uris[0] if redirect_uris else None,
    )


def load_config(path: Union[str, Path], *scopes: str) -> OAuthConfig:
    """Read a client secrets file from disk and parse it."""
    path = Path(path).expanduser()
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ConfigError(f"Cannot read credentials file '{path}': {e}") from e
    lib_logger.debug(f"Loaded OAuth client credentials from '{path.name}'")
    return config_from_json(raw, *scopes)
