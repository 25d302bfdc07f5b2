# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Authorized HTTP clients and the high-level token helpers.
"""

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

import httpx

from .config import OAuthConfig, config_from_json
from .errors import ExchangeError
from .exchange import refresh_token
from .loopback import authorize
from .settings import LoopbackSettings
from .sources import TokenSource, read_token_file, write_token_file
from .token import Token

lib_logger = logging.getLogger("oauther")

Credentials = Union[bytes, str, Dict[str, Any]]
RefreshCallback = Callable[[Token], Any]


class BearerAuth(httpx.Auth):
    """
    httpx auth that sends the token in the Authorization header.

    With a config and a refresh token available, an expired token is
    refreshed before the request goes out (async clients only).
    """

    def __init__(
        self,
        token: Token,
        config: Optional[OAuthConfig] = None,
        on_refresh: Optional[RefreshCallback] = None,
    ):
        self.token = token
        self.config = config
        self.on_refresh = on_refresh
        self._lock: Optional[asyncio.Lock] = None

    def _can_refresh(self) -> bool:
        return self.config is not None and bool(self.token.refresh_token)

    async def _refresh(self):
        self.token = await refresh_token(self.config, self.token)
        lib_logger.info("Refreshed expired OAuth access token")
        if self.on_refresh is not None:
            result = self.on_refresh(self.token)
            if inspect.isawaitable(result):
                await result

    def auth_flow(self, request: httpx.Request):
        request.headers["Authorization"] = self.token.authorization_header()
        yield request

    async def async_auth_flow(self, request: httpx.Request):
        if not self.token.valid() and self._can_refresh():
            if self._lock is None:
                self._lock = asyncio.Lock()
            async with self._lock:
                if not self.token.valid():
                    await self._refresh()
        request.headers["Authorization"] = self.token.authorization_header()
        yield request


def http_client(
    config: Optional[OAuthConfig],
    token: Token,
    *,
    on_refresh: Optional[RefreshCallback] = None,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """
    Build an httpx.AsyncClient that authorizes every request with token.

    Extra keyword arguments are passed to httpx.AsyncClient.
    """
    auth = BearerAuth(token, config=config, on_refresh=on_refresh)
    return httpx.AsyncClient(auth=auth, **kwargs)


async def http_client_from_source(
    creds: Credentials, src: TokenSource, *scopes: str, **kwargs: Any
) -> httpx.AsyncClient:
    """
    Parse client credentials, get a token from src and build a client with it.
    """
    config = config_from_json(creds, *scopes)
    token = await src.get(config)
    return http_client(config, token, **kwargs)


async def _renew_token(
    config: OAuthConfig,
    expired: Optional[Token],
    filename: Path,
    settings: Optional[LoopbackSettings],
) -> Token:
    token = None
    if expired is not None and expired.refresh_token:
        try:
            token = await refresh_token(config, expired)
        except ExchangeError as e:
            lib_logger.warning(f"Token refresh failed, falling back to browser auth: {e}")

    if token is None:
        token = await authorize(config, settings=settings)

    write_token_file(filename, token)
    return token


async def _get_token(
    filename: Union[str, Path],
    creds: Credentials,
    scopes: Tuple[str, ...],
    settings: Optional[LoopbackSettings],
) -> Tuple[Token, OAuthConfig]:
    config = config_from_json(creds, *scopes)
    filename = Path(filename)

    token = read_token_file(filename)
    if token is None:
        lib_logger.info(f"No token file at '{filename.name}', starting authorization")
        return await _renew_token(config, None, filename, settings), config
    if not token.valid():
        lib_logger.info(f"Token in '{filename.name}' is expired or invalid")
        return await _renew_token(config, token, filename, settings), config
    return token, config


async def get_token(
    filename: Union[str, Path],
    creds: Credentials,
    *scopes: str,
    settings: Optional[LoopbackSettings] = None,
) -> Token:
    """
    Obtain a token, using filename as a cache.

    A missing or invalid cached token is refreshed when possible; otherwise
    loopback authorization runs in the user's browser. Any newly obtained
    token is written back to filename before it is returned.

    Args:
        filename: Token cache file
        creds: Contents of the client credentials JSON file
        scopes: Scopes to request
    """
    token, _ = await _get_token(filename, creds, scopes, settings)
    return token


async def client(
    filename: Union[str, Path],
    creds: Credentials,
    *scopes: str,
    settings: Optional[LoopbackSettings] = None,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """
    Obtain an authorized httpx.AsyncClient.

    Arguments and authorization work as for get_token; tokens refreshed by the
    client later on are saved back to filename.
    """
    token, config = await _get_token(filename, creds, scopes, settings)
    return http_client(
        config,
        token,
        on_refresh=lambda tok: write_token_file(filename, tok),
        **kwargs,
    )
