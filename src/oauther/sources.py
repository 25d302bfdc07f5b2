# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Token sources: composable strategies for obtaining a token for a config.

A typical chain caches the result of an interactive flow on disk:

    src = FileCache(LoopbackTokenSource(), "token.json")
    token = await src.get(config)
"""

import inspect
import json
import logging
import os
import stat
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union
from urllib.parse import urlencode

from .config import OAuthConfig
from .errors import TokenCacheError
from .exchange import exchange_code
from .loopback import authorize
from .settings import LoopbackSettings
from .token import Token

lib_logger = logging.getLogger("oauther")

# Callback turning an authorization URL into the code the user got from it
AuthCodeFn = Callable[[str], Union[str, Awaitable[str]]]


class TokenSource(ABC):
    """Something that can produce a token for an OAuth client config."""

    @abstractmethod
    async def get(self, config: OAuthConfig) -> Token:
        pass


class LoopbackTokenSource(TokenSource):
    """Obtains a token through the browser loopback flow."""

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        settings: Optional[LoopbackSettings] = None,
    ):
        self.timeout = timeout
        self.settings = settings

    async def get(self, config: OAuthConfig) -> Token:
        return await authorize(config, timeout=self.timeout, settings=self.settings)


class WebTokenSource(TokenSource):
    """
    Obtains a token by asking a callback for an auth code.

    The callback receives the authorization URL, must send the user there,
    and return the code the provider displayed or redirected with. A simple
    console version:

        def ask(url):
            print(f"Get an auth code from the following URL, then enter it here:\\n{url}")
            return input().strip()
    """

    STATE = "state-token"

    def __init__(self, auth_code_fn: AuthCodeFn):
        self.auth_code_fn = auth_code_fn

    def auth_url(self, config: OAuthConfig) -> str:
        params = {
            "client_id": config.client_id,
            "response_type": "code",
            "scope": " ".join(config.scopes),
            "state": self.STATE,
            "access_type": "offline",
        }
        if config.redirect_url:
            params["redirect_uri"] = config.redirect_url
        separator = "&" if "?" in config.auth_url else "?"
        return f"{config.auth_url}{separator}{urlencode(params)}"

    async def get(self, config: OAuthConfig) -> Token:
        code = self.auth_code_fn(self.auth_url(config))
        if inspect.isawaitable(code):
            code = await code
        return await exchange_code(config, code.strip())


class CodeTokenSource(TokenSource):
    """
    Exchanges an auth code supplied up front (e.g. on the command line),
    or defers to another source when the code is empty.
    """

    def __init__(self, src: TokenSource, code: str = ""):
        self.src = src
        self.code = code

    async def get(self, config: OAuthConfig) -> Token:
        if not self.code:
            return await self.src.get(config)
        lib_logger.info("Using supplied authorization code")
        return await exchange_code(config, self.code)


def read_token_file(path: Union[str, Path]) -> Optional[Token]:
    """
    Load a token saved by write_token_file.

    Returns:
        The token, or None if the file does not exist

    Raises:
        TokenCacheError: If the file exists but cannot be read or decoded
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        raise TokenCacheError(f"Cannot read token file '{path}': {e}") from e

    if not isinstance(data, dict):
        raise TokenCacheError(f"Token file '{path}' does not contain a JSON object")
    try:
        return Token.from_dict(data)
    except (TypeError, ValueError, OverflowError) as e:
        raise TokenCacheError(f"Cannot decode token in '{path}': {e}") from e


def write_token_file(path: Union[str, Path], token: Token) -> None:
    """Write a token as indented JSON, readable by the owner only."""
    path = Path(path)
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(token.to_dict(), f, indent=2)
        # O_CREAT mode does not apply to files that already existed
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError as e:
        raise TokenCacheError(f"Cannot write token file '{path}': {e}") from e
    lib_logger.debug(f"Saved OAuth token to '{path.name}'")


class FileCache(TokenSource):
    """
    Uses a file as persistent storage for the token, and another source
    for cache misses.

    The cached token is returned as-is, even if expired; use
    oauther.clients.get_token for refresh-on-expiry semantics.
    """

    def __init__(self, src: TokenSource, filename: Union[str, Path]):
        self.src = src
        self.filename = Path(filename)

    async def get(self, config: OAuthConfig) -> Token:
        token = read_token_file(self.filename)
        if token is not None:
            lib_logger.debug(f"Using cached OAuth token from '{self.filename.name}'")
            return token

        lib_logger.info(f"No cached token at '{self.filename.name}', requesting a new one")
        token = await self.src.get(config)
        write_token_file(self.filename, token)
        return token
