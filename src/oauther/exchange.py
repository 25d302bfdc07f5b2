# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Token endpoint calls: authorization code exchange and token refresh.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

import httpx

from .config import OAuthConfig
from .errors import ExchangeError
from .settings import DEFAULT_EXCHANGE_TIMEOUT
from .token import Token

lib_logger = logging.getLogger("oauther")


def _decode_token_response(response: httpx.Response) -> Dict[str, Any]:
    content_type = response.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "text/plain" in content_type:
        return dict(parse_qsl(response.text))
    try:
        data = response.json()
    except ValueError as e:
        raise ExchangeError(
            f"Token endpoint returned an unreadable body: {e}",
            status_code=response.status_code,
        ) from e
    if not isinstance(data, dict):
        raise ExchangeError(
            "Token endpoint returned a non-object body",
            status_code=response.status_code,
        )
    return data


async def _post_token_request(
    config: OAuthConfig,
    form: Dict[str, str],
    client: Optional[httpx.AsyncClient],
    timeout: float,
) -> Token:
    form = dict(form)
    form["client_id"] = config.client_id
    if config.client_secret:
        form["client_secret"] = config.client_secret

    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                response = await own_client.post(
                    config.token_url, data=form, headers=headers
                )
        else:
            response = await client.post(config.token_url, data=form, headers=headers)
    except httpx.HTTPError as e:
        raise ExchangeError(f"Token request to {config.token_url} failed: {e}") from e

    if response.status_code >= 400:
        try:
            data = _decode_token_response(response)
        except ExchangeError:
            data = {}
        error = data.get("error") or response.text.strip() or "unknown error"
        description = data.get("error_description")
        detail = f"{error}: {description}" if description else error
        lib_logger.error(
            f"Token endpoint returned HTTP {response.status_code}: {error}"
        )
        raise ExchangeError(
            f"Token request failed with HTTP {response.status_code}: {detail}",
            status_code=response.status_code,
        )

    data = _decode_token_response(response)
    if data.get("error"):
        description = data.get("error_description")
        detail = f"{data['error']}: {description}" if description else data["error"]
        raise ExchangeError(
            f"Token endpoint reported an error: {detail}",
            status_code=response.status_code,
        )

    try:
        return Token.from_response(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ExchangeError(
            f"Token endpoint response is missing a usable access_token: {e}",
            status_code=response.status_code,
        ) from e


async def exchange_code(
    config: OAuthConfig,
    code: str,
    *,
    code_verifier: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
) -> Token:
    """
    Exchange an authorization code for a token.

    Args:
        config: Client configuration (supplies token_url and client credentials)
        code: Authorization code from the callback
        code_verifier: PKCE verifier matching the challenge sent earlier
        redirect_uri: Redirect URI used in the authorization request;
            defaults to config.redirect_url
        client: Optional httpx client to send the request with
        timeout: Request timeout when oauther creates its own client

    Returns:
        The issued Token

    Raises:
        ExchangeError: On transport failure or a rejected request
    """
    form = {
        "grant_type": "authorization_code",
        "code": code,
    }
    redirect_uri = redirect_uri or config.redirect_url
    if redirect_uri:
        form["redirect_uri"] = redirect_uri
    if code_verifier:
        form["code_verifier"] = code_verifier

    lib_logger.info("Exchanging authorization code for tokens...")
    return await _post_token_request(config, form, client, timeout)


async def refresh_token(
    config: OAuthConfig,
    token: Token,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
) -> Token:
    """
    Use a token's refresh_token to obtain a new access token.

    The refresh token is carried over when the provider does not rotate it.
    """
    if not token.refresh_token:
        raise ExchangeError("Token has no refresh_token")

    form = {
        "grant_type": "refresh_token",
        "refresh_token": token.refresh_token,
    }
    lib_logger.debug("Refreshing OAuth access token...")
    refreshed = await _post_token_request(config, form, client, timeout)
    if not refreshed.refresh_token:
        refreshed.refresh_token = token.refresh_token
    return refreshed
