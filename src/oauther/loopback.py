# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Loopback authorization for native apps.

The user's browser is opened on the provider's authorization URL and a
short-lived HTTP server is started on an ephemeral port of 127.0.0.1. When
the user grants access, the provider redirects the browser to that server
with an authorization code, which is exchanged (with the PKCE verifier) for
a token.

See https://developers.google.com/identity/protocols/oauth2/native-app
"""

import asyncio
import base64
import contextlib
import hashlib
import logging
import secrets
import socket
import string
import webbrowser
from importlib import resources
from typing import Any, Awaitable, Callable, Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from aiohttp import ClientConnectionError, web
from rich.console import Console
from rich.markup import escape as rich_escape
from rich.panel import Panel
from rich.text import Text

from .config import OAuthConfig
from .errors import (
    AuthMismatchError,
    BrowserError,
    CancelledError,
    ConfigError,
    ExchangeError,
    NoTokenError,
    ProviderError,
    SetupError,
)
from .exchange import exchange_code
from .settings import LoopbackSettings, get_loopback_settings
from .token import Token

lib_logger = logging.getLogger("oauther")

LOOPBACK_HOST = "127.0.0.1"

# RFC 7636 unreserved characters
CODE_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "-._~"
CODE_LENGTH = 64

DONE_HTML: bytes = resources.files("oauther").joinpath("done.html").read_bytes()

ExchangeFn = Callable[[str, str, str], Awaitable[Token]]
BrowserOpener = Callable[[str], Any]

console = Console()


def generate_code_value(length: int = CODE_LENGTH) -> str:
    """Random string over the unreserved alphabet, for PKCE verifiers and state."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def code_challenge(code_verifier: str) -> str:
    """S256 challenge: unpadded base64url of SHA-256(verifier)."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def build_auth_url(
    config: OAuthConfig,
    redirect_uri: str,
    challenge: str,
    state: str,
) -> str:
    """
    Add the authorization request parameters to the configured auth URL.

    Parameters already present in config.auth_url are kept unless they are
    one of the ones set here.
    """
    params = {
        "client_id": config.client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(config.scopes),
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        "state": state,
    }
    parts = urlsplit(config.auth_url)
    if not parts.scheme or not parts.netloc:
        raise ConfigError(f"Invalid authorization URL: {config.auth_url}")

    query = [(k, v) for k, v in parse_qsl(parts.query) if k not in params]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _bind_listener() -> socket.socket:
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    except OSError as e:
        raise SetupError(f"Cannot create loopback listener: {e}") from e
    try:
        sock.bind((LOOPBACK_HOST, 0))
        sock.listen(16)
        sock.setblocking(False)
    except OSError as e:
        sock.close()
        raise SetupError(f"Cannot listen on {LOOPBACK_HOST}: {e}") from e
    return sock


class _LoopbackAttempt:
    """
    State of a single authorization attempt and the callback handler for it.

    All handlers run on the event loop that owns the attempt, so claiming it
    is a plain test-and-set with no await in between.
    """

    def __init__(self, redirect_uri: str, exchange: ExchangeFn):
        self.redirect_uri = redirect_uri
        self.code_verifier = generate_code_value()
        self.code_challenge = code_challenge(self.code_verifier)
        self.state = generate_code_value()
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._exchange = exchange
        self._claimed = False

    def _claim(self) -> bool:
        if self._claimed:
            return False
        self._claimed = True
        return True

    def _settle(self, token: Optional[Token] = None, error: Optional[Exception] = None):
        if self.future.done():
            return
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(token)

    def abandon(self):
        if not self.future.done():
            self.future.cancel()
        elif not self.future.cancelled():
            # Mark any recorded error as retrieved
            self.future.exception()

    async def _finish(
        self,
        request: web.Request,
        response: web.Response,
        token: Optional[Token] = None,
        error: Optional[Exception] = None,
    ) -> web.Response:
        # The page is written before completion fires so teardown cannot cut it off
        try:
            await response.prepare(request)
            await response.write_eof()
        except (OSError, RuntimeError, ClientConnectionError) as e:
            # Browser went away before the page was written
            lib_logger.debug(f"Could not deliver OAuth callback response: {e!r}")
        finally:
            self._settle(token, error)
        return response

    async def handle_callback(self, request: web.Request) -> web.StreamResponse:
        query = request.query
        error = query.get("error", "")
        code = query.get("code", "")

        if not error and not code:
            lib_logger.warning("OAuth callback without code or error; still waiting")
            return web.Response(status=400, text="Missing authorization code")

        if not self._claim():
            lib_logger.warning(
                "Ignoring extra OAuth callback; this authorization is already being completed"
            )
            return web.Response(status=409, text="Authorization already completed")

        if error:
            description = query.get("error_description") or None
            lib_logger.error(f"OAuth callback received error: {error}")
            failure = ProviderError(error, description)
            return await self._finish(
                request, web.Response(status=401, text=str(failure)), error=failure
            )

        if query.get("state", "") != self.state:
            lib_logger.error("OAuth callback state mismatch")
            failure = AuthMismatchError("state mismatch")
            return await self._finish(
                request, web.Response(status=401, text=str(failure)), error=failure
            )

        try:
            token = await self._exchange(code, self.code_verifier, self.redirect_uri)
        except ExchangeError as e:
            failure = e
        except Exception as e:
            failure = ExchangeError(f"Token exchange failed: {e}")
            failure.__cause__ = e
        else:
            lib_logger.info("Authorization code exchanged successfully")
            return await self._finish(
                request,
                web.Response(body=DONE_HTML, content_type="text/html", charset="utf-8"),
                token=token,
            )

        lib_logger.error(f"OAuth token exchange failed: {failure}")
        return await self._finish(
            request, web.Response(status=401, text=str(failure)), error=failure
        )


class LoopbackAuthorizer:
    """
    Runs the native-app loopback flow with PKCE for one OAuth client.

    Every call to authorize() gets its own listener, verifier and state;
    nothing is shared between calls.
    """

    def __init__(
        self,
        config: OAuthConfig,
        *,
        open_browser: Optional[BrowserOpener] = None,
        exchange: Optional[ExchangeFn] = None,
        settings: Optional[LoopbackSettings] = None,
    ):
        self.config = config
        self.settings = settings or get_loopback_settings()
        self._open_browser = open_browser or webbrowser.open
        self._exchange = exchange

    def _exchange_fn(self, config: OAuthConfig) -> ExchangeFn:
        if self._exchange is not None:
            return self._exchange

        async def exchange(code: str, code_verifier: str, redirect_uri: str) -> Token:
            return await exchange_code(
                config,
                code,
                code_verifier=code_verifier,
                redirect_uri=redirect_uri,
                timeout=self.settings.exchange_timeout,
            )

        return exchange

    def _launch_browser(self, auth_url: str):
        if self.settings.show_url:
            if self.settings.open_browser:
                panel_text = Text.from_markup(
                    "1. Your browser will now open to log in and authorize the application.\n"
                    "2. If it doesn't open automatically, please open the URL below manually."
                )
            else:
                panel_text = Text.from_markup(
                    "Please open the URL below in a browser to authorize the application."
                )
            console.print(Panel(panel_text, title="OAuth Authorization", style="bold blue"))
            escaped_url = rich_escape(auth_url)
            console.print(f"[bold]URL:[/bold] [link={auth_url}]{escaped_url}[/link]\n")

        if not self.settings.open_browser:
            lib_logger.info("Browser launch disabled; waiting for manual navigation")
            return

        try:
            opened = self._open_browser(auth_url)
        except Exception as e:
            lib_logger.warning(f"Failed to open browser: {e}")
            raise BrowserError(f"Failed to open browser: {e}", auth_url) from e
        if opened is False:
            lib_logger.warning("No browser could be launched for the OAuth flow")
            raise BrowserError("No browser could be launched", auth_url)
        lib_logger.info("Browser opened for OAuth flow")

    async def _wait(
        self,
        attempt: _LoopbackAttempt,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> Token:
        waiters = {attempt.future}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        status = (
            console.status(
                "[bold green]Waiting for authorization in the browser...[/bold green]",
                spinner="dots",
            )
            if self.settings.show_url
            else contextlib.nullcontext()
        )
        try:
            with status:
                done, _ = await asyncio.wait(
                    waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if attempt.future not in done:
            if cancel_task is not None and cancel_task in done:
                lib_logger.warning("OAuth authorization cancelled")
                raise CancelledError("Authorization was cancelled")
            lib_logger.warning(f"OAuth authorization timed out after {timeout}s")
            raise CancelledError(f"Authorization timed out after {timeout}s")

        token = attempt.future.result()
        if token is None:
            raise NoTokenError("no token")
        return token

    async def authorize(
        self,
        scopes: Optional[Iterable[str]] = None,
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Token:
        """
        Perform one loopback authorization and return the resulting token.

        Args:
            scopes: Scopes to request; defaults to config.scopes
            timeout: Seconds to wait for the callback; defaults to
                settings.auth_timeout; None or 0 waits indefinitely
            cancel_event: Setting this event abandons the attempt

        Raises:
            SetupError, BrowserError, ProviderError, AuthMismatchError,
            ExchangeError, CancelledError, NoTokenError
        """
        config = self.config.with_scopes(scopes) if scopes is not None else self.config
        if timeout is None:
            timeout = self.settings.auth_timeout
        elif timeout == 0:
            timeout = None

        sock = _bind_listener()
        runner: Optional[web.AppRunner] = None
        attempt: Optional[_LoopbackAttempt] = None
        try:
            host, port = sock.getsockname()[:2]
            redirect_uri = f"http://{host}:{port}"
            attempt = _LoopbackAttempt(redirect_uri, self._exchange_fn(config))

            app = web.Application()
            app.router.add_get("/", attempt.handle_callback)
            runner = web.AppRunner(
                app, access_log=None, shutdown_timeout=self.settings.shutdown_timeout
            )
            await runner.setup()
            await web.SockSite(runner, sock).start()
            lib_logger.debug(f"OAuth callback server listening on {redirect_uri}")

            auth_url = build_auth_url(
                config, redirect_uri, attempt.code_challenge, attempt.state
            )
            self._launch_browser(auth_url)

            return await self._wait(attempt, timeout, cancel_event)
        finally:
            if attempt is not None:
                attempt.abandon()
            if runner is not None:
                await runner.cleanup()
            sock.close()
            lib_logger.debug("OAuth callback server stopped")


async def authorize(
    config: OAuthConfig,
    scopes: Optional[Iterable[str]] = None,
    *,
    timeout: Optional[float] = None,
    cancel_event: Optional[asyncio.Event] = None,
    open_browser: Optional[BrowserOpener] = None,
    exchange: Optional[ExchangeFn] = None,
    settings: Optional[LoopbackSettings] = None,
) -> Token:
    """Convenience wrapper: LoopbackAuthorizer(config, ...).authorize(scopes, ...)."""
    authorizer = LoopbackAuthorizer(
        config, open_browser=open_browser, exchange=exchange, settings=settings
    )
    return await authorizer.authorize(scopes, timeout=timeout, cancel_event=cancel_event)
