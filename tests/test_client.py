import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from oauther import clients as client_module
from oauther.clients import BearerAuth, client, get_token, http_client, http_client_from_source
from oauther.errors import ExchangeError
from oauther.sources import TokenSource, read_token_file, write_token_file
from oauther.token import Token

CREDS = {
    "installed": {
        "client_id": "abc",
        "auth_uri": "https://auth.example/o",
        "token_uri": "https://auth.example/token",
    }
}


def _past() -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=1)


def _future() -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=1)


def _echo_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"auth": request.headers.get("Authorization")})

    return httpx.MockTransport(handler)


@pytest.fixture
def refresh_calls(monkeypatch):
    calls = []

    async def fake_refresh(config, token, **kwargs):
        calls.append(token)
        return Token(
            access_token=f"refreshed-{len(calls)}",
            refresh_token=token.refresh_token,
            expiry=_future(),
        )

    monkeypatch.setattr(client_module, "refresh_token", fake_refresh)
    return calls


@pytest.fixture
def authorize_calls(monkeypatch):
    calls = []

    async def fake_authorize(config, scopes=None, **kwargs):
        calls.append(config)
        return Token(access_token="browser", refresh_token="r2", expiry=_future())

    monkeypatch.setattr(client_module, "authorize", fake_authorize)
    return calls


def test_bearer_auth_sync_client_sets_header() -> None:
    auth = BearerAuth(Token(access_token="tok1", token_type="bearer"))
    with httpx.Client(auth=auth, transport=_echo_transport()) as sync_client:
        response = sync_client.get("https://api.example/me")

    assert response.json() == {"auth": "Bearer tok1"}


@pytest.mark.asyncio
async def test_http_client_sets_header(oauth_config) -> None:
    async with http_client(
        oauth_config, Token(access_token="tok1"), transport=_echo_transport()
    ) as api:
        response = await api.get("https://api.example/me")

    assert response.json() == {"auth": "Bearer tok1"}


@pytest.mark.asyncio
async def test_http_client_refreshes_expired_token(refresh_calls, oauth_config) -> None:
    saved = []
    expired = Token(access_token="old", refresh_token="r1", expiry=_past())

    async with http_client(
        oauth_config, expired, on_refresh=saved.append, transport=_echo_transport()
    ) as api:
        first = await api.get("https://api.example/me")
        second = await api.get("https://api.example/me")

    assert first.json() == {"auth": "Bearer refreshed-1"}
    assert second.json() == {"auth": "Bearer refreshed-1"}
    assert len(refresh_calls) == 1
    assert [t.access_token for t in saved] == ["refreshed-1"]


@pytest.mark.asyncio
async def test_http_client_without_refresh_token_sends_expired(refresh_calls, oauth_config) -> None:
    expired = Token(access_token="old", expiry=_past())

    async with http_client(oauth_config, expired, transport=_echo_transport()) as api:
        response = await api.get("https://api.example/me")

    assert response.json() == {"auth": "Bearer old"}
    assert refresh_calls == []


@pytest.mark.asyncio
async def test_http_client_from_source_uses_source_token() -> None:
    class Source(TokenSource):
        async def get(self, config):
            assert config.scopes == ("read", "write")
            return Token(access_token="src")

    api = await http_client_from_source(
        json.dumps(CREDS), Source(), "read", "write", transport=_echo_transport()
    )
    async with api:
        response = await api.get("https://api.example/me")

    assert response.json() == {"auth": "Bearer src"}


@pytest.mark.asyncio
async def test_get_token_uses_valid_cached_token(
    tmp_path, refresh_calls, authorize_calls
) -> None:
    path = tmp_path / "token.json"
    write_token_file(path, Token(access_token="cached", expiry=_future()))

    token = await get_token(path, CREDS, "read")

    assert token.access_token == "cached"
    assert refresh_calls == []
    assert authorize_calls == []


@pytest.mark.asyncio
async def test_get_token_without_file_authorizes_and_saves(
    tmp_path, refresh_calls, authorize_calls
) -> None:
    path = tmp_path / "token.json"

    token = await get_token(path, CREDS, "read")

    assert token.access_token == "browser"
    assert authorize_calls[0].scopes == ("read",)
    assert read_token_file(path).access_token == "browser"


@pytest.mark.asyncio
async def test_get_token_refreshes_expired_token(
    tmp_path, refresh_calls, authorize_calls
) -> None:
    path = tmp_path / "token.json"
    write_token_file(path, Token(access_token="old", refresh_token="r1", expiry=_past()))

    token = await get_token(path, CREDS, "read")

    assert token.access_token == "refreshed-1"
    assert authorize_calls == []
    assert read_token_file(path).access_token == "refreshed-1"


@pytest.mark.asyncio
async def test_get_token_falls_back_when_refresh_fails(
    tmp_path, monkeypatch, authorize_calls
) -> None:
    async def failing_refresh(config, token, **kwargs):
        raise ExchangeError("invalid_grant", status_code=400)

    monkeypatch.setattr(client_module, "refresh_token", failing_refresh)
    path = tmp_path / "token.json"
    write_token_file(path, Token(access_token="old", refresh_token="r1", expiry=_past()))

    token = await get_token(path, CREDS, "read")

    assert token.access_token == "browser"
    assert len(authorize_calls) == 1
    assert read_token_file(path).refresh_token == "r2"


@pytest.mark.asyncio
async def test_client_saves_tokens_refreshed_later(
    tmp_path, refresh_calls, authorize_calls
) -> None:
    path = tmp_path / "token.json"
    write_token_file(path, Token(access_token="cached", refresh_token="r1", expiry=_future()))

    api = await client(path, CREDS, "read", transport=_echo_transport())
    api.auth.token.expiry = _past()
    async with api:
        response = await api.get("https://api.example/me")

    assert response.json() == {"auth": "Bearer refreshed-1"}
    assert read_token_file(path).access_token == "refreshed-1"
