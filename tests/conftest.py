import asyncio
import sys
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from oauther.config import OAuthConfig
from oauther.settings import LoopbackSettings


def query_params(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


class FakeBrowser:
    """
    Browser opener that, instead of opening anything, replays callback
    requests against the redirect_uri found in the authorization URL.

    Each callback is a function taking the auth URL's query params and
    returning the query to send, or a (path, query) tuple.
    """

    def __init__(self, *callbacks, concurrent: bool = False, result=True):
        self.callbacks = callbacks
        self.concurrent = concurrent
        self.result = result
        self.urls = []
        self.responses = []
        self.task = None

    @property
    def params(self) -> dict:
        return query_params(self.urls[-1])

    @property
    def port(self) -> int:
        return urlsplit(self.params["redirect_uri"]).port

    def __call__(self, url: str):
        self.urls.append(url)
        self.task = asyncio.ensure_future(self._deliver(url))
        return self.result

    async def _send(self, client: httpx.AsyncClient, params: dict, make_query):
        path_and_query = make_query(params)
        if isinstance(path_and_query, tuple):
            path, query = path_and_query
        else:
            path, query = "/", path_and_query
        return await client.get(params["redirect_uri"] + path, params=query)

    async def _deliver(self, url: str):
        params = query_params(url)
        async with httpx.AsyncClient(trust_env=False, timeout=5.0) as client:
            if self.concurrent:
                results = await asyncio.gather(
                    *(self._send(client, params, cb) for cb in self.callbacks),
                    return_exceptions=True,
                )
                self.responses.extend(r for r in results if isinstance(r, httpx.Response))
            else:
                for cb in self.callbacks:
                    self.responses.append(await self._send(client, params, cb))


class ExchangeStub:
    """Stand-in for the token endpoint exchange."""

    def __init__(self, token=None, error: Exception = None, delay: float = 0):
        self.token = token
        self.error = error
        self.delay = delay
        self.calls = []

    async def __call__(self, code: str, code_verifier: str, redirect_uri: str):
        self.calls.append((code, code_verifier, redirect_uri))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.token


async def assert_listener_released(port: int) -> None:
    async with httpx.AsyncClient(trust_env=False, timeout=2.0) as client:
        with pytest.raises(httpx.ConnectError):
            await client.get(f"http://127.0.0.1:{port}/")


@pytest.fixture
def oauth_config() -> OAuthConfig:
    return OAuthConfig(
        client_id="abc",
        auth_url="https://auth.example/o",
        token_url="https://auth.example/token",
        scopes=("read",),
    )


@pytest.fixture
def settings() -> LoopbackSettings:
    return LoopbackSettings(
        auth_timeout=5.0,
        shutdown_timeout=0.2,
        exchange_timeout=5.0,
        open_browser=True,
        show_url=False,
    )
