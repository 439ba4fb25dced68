"""Tests for retry, backoff and re-authentication in the fetcher."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from nepse_collector.providers.auth import AuthHeaders
from nepse_collector.providers.base import AuthError, FetchRequest, FetchResponse
from nepse_collector.providers.fetcher import RetryingFetcher, classify_response

URL = "https://example.com/api/nots/nepse-index"


class _ScriptedTransport:
    """Replays one scripted outcome per call; the last one repeats."""

    def __init__(self, outcomes: list[Callable[[FetchRequest], Any]]) -> None:
        self.outcomes = outcomes
        self.requests: list[FetchRequest] = []

    async def send(self, request: FetchRequest) -> FetchResponse:
        self.requests.append(request)
        index = min(len(self.requests), len(self.outcomes)) - 1
        return self.outcomes[index](request)


def _respond(status_code: int, body: Any = None) -> Callable[[FetchRequest], FetchResponse]:
    return lambda _: FetchResponse(status_code=status_code, body=body)


def _fail(request: FetchRequest) -> FetchResponse:
    raise httpx.ConnectError("connection refused", request=httpx.Request("GET", request.url))


class _CountingProvider:
    def __init__(self, *, fail_refresh: bool = False) -> None:
        self.refreshes = 0
        self.fail_refresh = fail_refresh
        self._headers = AuthHeaders(token="token-0")

    @property
    def headers(self) -> AuthHeaders:
        return self._headers

    async def refresh(self) -> AuthHeaders:
        if self.fail_refresh:
            raise AuthError("prove endpoint rejected the session")
        self.refreshes += 1
        self._headers = AuthHeaders(token=f"token-{self.refreshes}")
        return self._headers


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []

    async def _fake_sleep(delay: float) -> None:
        recorded.append(delay)

    monkeypatch.setattr(asyncio, "sleep", _fake_sleep)
    return recorded


def test_unauthorized_forever_refreshes_twice_and_returns_none(
    sleeps: list[float], caplog: pytest.LogCaptureFixture
) -> None:
    async def _runner() -> None:
        transport = _ScriptedTransport([_respond(401, {"message": "Unauthorized"})])
        provider = _CountingProvider()
        fetcher = RetryingFetcher(transport, provider)

        with caplog.at_level(logging.WARNING):
            result = await fetcher.get(URL)

        assert result is None
        assert len(transport.requests) == 3
        assert provider.refreshes == 2
        assert [request.header("Authorization") for request in transport.requests] == [
            "Salter token-0",
            "Salter token-1",
            "Salter token-2",
        ]
        assert sleeps == [0.5, 1.0]
        assert "Error for GET" in caplog.text

    asyncio.run(_runner())


def test_error_body_with_success_status_is_retried(sleeps: list[float]) -> None:
    async def _runner() -> None:
        transport = _ScriptedTransport(
            [
                _respond(200, {"status": "ERROR", "message": "try later"}),
                _respond(200, {"error": "busy"}),
                _respond(200, {"index": 2100.5}),
            ]
        )
        fetcher = RetryingFetcher(transport, _CountingProvider())

        result = await fetcher.get(URL)

        assert result is not None
        assert result.body == {"index": 2100.5}
        assert len(transport.requests) == 3
        assert sleeps == [0.5, 1.0]

    asyncio.run(_runner())


def test_transport_error_then_success(sleeps: list[float]) -> None:
    async def _runner() -> None:
        transport = _ScriptedTransport([_fail, _respond(200, [1, 2, 3])])
        fetcher = RetryingFetcher(transport, _CountingProvider())

        result = await fetcher.get(URL)

        assert result is not None
        assert result.body == [1, 2, 3]
        assert sleeps == [0.5]

    asyncio.run(_runner())


def test_server_errors_exhaust_without_refresh(sleeps: list[float]) -> None:
    async def _runner() -> None:
        transport = _ScriptedTransport([_respond(502, "Bad Gateway")])
        provider = _CountingProvider()
        fetcher = RetryingFetcher(transport, provider, max_attempts=2, backoff_seconds=0.25)

        assert await fetcher.get(URL) is None
        assert len(transport.requests) == 2
        assert provider.refreshes == 0
        assert sleeps == [0.25]

    asyncio.run(_runner())


def test_refresh_failure_propagates(sleeps: list[float]) -> None:
    async def _runner() -> None:
        transport = _ScriptedTransport([_respond(403)])
        fetcher = RetryingFetcher(transport, _CountingProvider(fail_refresh=True))

        with pytest.raises(AuthError):
            await fetcher.get(URL)
        assert len(transport.requests) == 1

    asyncio.run(_runner())


def test_without_provider_no_auth_headers_are_sent(sleeps: list[float]) -> None:
    async def _runner() -> None:
        transport = _ScriptedTransport([_respond(200, {"data": []})])
        fetcher = RetryingFetcher(transport)

        result = await fetcher.get(URL, params={"draw": "1"}, headers={"X-Requested-With": "XMLHttpRequest"})

        assert result is not None
        sent = transport.requests[0]
        assert sent.header("Authorization") is None
        assert sent.header("x-requested-with") == "XMLHttpRequest"
        assert sent.params == {"draw": "1"}
        assert sleeps == []

    asyncio.run(_runner())


def test_request_headers_override_auth_headers(sleeps: list[float]) -> None:
    async def _runner() -> None:
        transport = _ScriptedTransport([_respond(200, {"id": 1})])
        fetcher = RetryingFetcher(transport, _CountingProvider())

        await fetcher.post_json(URL, {"id": 1}, headers={"accept": "text/plain"})

        sent = transport.requests[0]
        assert sent.method == "POST"
        assert sent.body == {"id": 1}
        assert sent.header("Accept") == "text/plain"
        assert sent.header("Authorization") == "Salter token-0"

    asyncio.run(_runner())


def test_non_json_success_body_is_returned_verbatim(sleeps: list[float]) -> None:
    async def _runner() -> None:
        transport = _ScriptedTransport([_respond(200, "plain text")])
        fetcher = RetryingFetcher(transport)

        result = await fetcher.get(URL)

        assert result is not None and result.body == "plain text"

    asyncio.run(_runner())


def test_classify_response() -> None:
    assert classify_response(FetchResponse(status_code=200, body={"ok": True})) is None
    assert classify_response(FetchResponse(status_code=401)).is_auth_failure
    failure = classify_response(FetchResponse(status_code=500, body={"message": "boom"}))
    assert failure is not None
    assert not failure.is_auth_failure
    assert "status=500" in str(failure)


def test_single_attempt_override_logs_at_requested_level(
    sleeps: list[float], caplog: pytest.LogCaptureFixture
) -> None:
    async def _runner() -> None:
        transport = _ScriptedTransport([_respond(404, {"message": "Not Found"})])
        provider = _CountingProvider()
        fetcher = RetryingFetcher(transport, provider)

        with caplog.at_level(logging.DEBUG, logger="nepse_collector.providers.fetcher"):
            result = await fetcher.get(URL, max_attempts=1, exhausted_level=logging.DEBUG)

        assert result is None
        assert len(transport.requests) == 1
        assert provider.refreshes == 0
        assert sleeps == []
        exhausted = [record for record in caplog.records if record.getMessage().startswith("Error for")]
        assert [record.levelno for record in exhausted] == [logging.DEBUG]

    asyncio.run(_runner())
