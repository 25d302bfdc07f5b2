# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
oauther obtains and caches OAuth2 tokens for third-party HTTP APIs.

The caller usually has a JSON client credentials file and wants an
authorized HTTP client:

    creds = Path("credentials.json").read_bytes()
    client = await oauther.client("token.json", creds, "https://www.googleapis.com/auth/gmail.insert")

or, composing token sources explicitly:

    src = oauther.FileCache(oauther.LoopbackTokenSource(), "token.json")
    client = await oauther.http_client_from_source(creds, src, scope)
"""

from .clients import BearerAuth, client, get_token, http_client, http_client_from_source
from .config import OAuthConfig, config_from_json, load_config
from .errors import (
    AuthMismatchError,
    BrowserError,
    CancelledError,
    ConfigError,
    ExchangeError,
    NoTokenError,
    OAutherError,
    ProviderError,
    SetupError,
    TokenCacheError,
)
from .exchange import exchange_code, refresh_token
from .loopback import LoopbackAuthorizer, authorize
from .settings import LoopbackSettings, get_loopback_settings
from .sources import (
    CodeTokenSource,
    FileCache,
    LoopbackTokenSource,
    TokenSource,
    WebTokenSource,
)
from .token import Token

__all__ = [
    "AuthMismatchError",
    "BearerAuth",
    "BrowserError",
    "CancelledError",
    "CodeTokenSource",
    "ConfigError",
    "ExchangeError",
    "FileCache",
    "LoopbackAuthorizer",
    "LoopbackSettings",
    "LoopbackTokenSource",
    "NoTokenError",
    "OAuthConfig",
    "OAutherError",
    "ProviderError",
    "SetupError",
    "Token",
    "TokenCacheError",
    "TokenSource",
    "WebTokenSource",
    "authorize",
    "client",
    "config_from_json",
    "exchange_code",
    "get_loopback_settings",
    "get_token",
    "http_client",
    "http_client_from_source",
    "load_config",
    "refresh_token",
]
