"""Tests for token descrambling, the WebAssembly index computer and the token provider."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import httpx
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from nepse_collector.providers.auth import (
    AuthHeaders,
    ProveResponse,
    SpliceIndices,
    TokenProvider,
    WasmIndexComputer,
    compute_splice_indices,
    descramble_token,
)
from nepse_collector.providers.base import AuthError, FetchRequest, FetchResponse

TOKEN = "abcdefghijklmnopqrstuvwxyz0123"

# Each routine returns one of its arguments so the argument order is observable.
INDEX_MODULE = """
(module
  (import "imports" "imported_func" (func $log (param i32)))
  (func (export "cdx") (param i32 i32 i32 i32 i32) (result i32) local.get 0)
  (func (export "rdx") (param i32 i32 i32 i32 i32) (result i32) local.get 1)
  (func (export "bdx") (param i32 i32 i32 i32 i32) (result i32) local.get 2)
  (func (export "ndx") (param i32 i32 i32 i32 i32) (result i32) local.get 3)
  (func (export "mdx") (param i32 i32 i32 i32 i32) (result i32) local.get 4)
)
"""


class _StaticComputer:
    def __init__(self, values: dict[str, int]) -> None:
        self.values = values
        self.calls: dict[str, tuple[int, ...]] = {}

    def _record(self, name: str, salts: tuple[int, ...]) -> int:
        self.calls[name] = salts
        return self.values[name]

    def cdx(self, *salts: int) -> int:
        return self._record("cdx", salts)

    def rdx(self, *salts: int) -> int:
        return self._record("rdx", salts)

    def bdx(self, *salts: int) -> int:
        return self._record("bdx", salts)

    def ndx(self, *salts: int) -> int:
        return self._record("ndx", salts)

    def mdx(self, *salts: int) -> int:
        return self._record("mdx", salts)


class _ProveTransport:
    def __init__(self, bodies: list[Any], status_code: int = 200) -> None:
        self.bodies = list(bodies)
        self.status_code = status_code
        self.requests: list[FetchRequest] = []

    async def send(self, request: FetchRequest) -> FetchResponse:
        self.requests.append(request)
        body = self.bodies.pop(0) if len(self.bodies) > 1 else self.bodies[0]
        return FetchResponse(status_code=self.status_code, body=body)


def _prove_body(token: str = TOKEN) -> dict[str, Any]:
    return {"accessToken": token, "salt1": 2, "salt2": 5, "salt3": 9, "salt4": 13, "salt5": 20}


def test_descramble_removes_exactly_five_characters() -> None:
    indices = SpliceIndices(first=2, second=5, third=9, fourth=13, fifth=20)

    result = descramble_token(TOKEN, indices)

    assert result == "abdeghiklmopqrstvwxyz0123"
    assert len(result) == len(TOKEN) - 5
    assert descramble_token(TOKEN, indices) == result


def test_descramble_sorts_offsets() -> None:
    ordered = SpliceIndices(first=2, second=5, third=9, fourth=13, fifth=20)
    shuffled = SpliceIndices(first=20, second=2, third=13, fourth=5, fifth=9)

    assert descramble_token(TOKEN, shuffled) == descramble_token(TOKEN, ordered)


@pytest.mark.parametrize(
    "indices",
    [
        SpliceIndices(first=2, second=2, third=9, fourth=13, fifth=20),
        SpliceIndices(first=-1, second=5, third=9, fourth=13, fifth=20),
        SpliceIndices(first=2, second=5, third=9, fourth=13, fifth=30),
    ],
)
def test_descramble_rejects_invalid_offsets(indices: SpliceIndices) -> None:
    with pytest.raises(AuthError):
        descramble_token(TOKEN, indices)


def test_splice_indices_use_routine_argument_orders() -> None:
    computer = _StaticComputer({"cdx": 1, "rdx": 2, "bdx": 3, "ndx": 4, "mdx": 5})
    salts = ProveResponse.model_validate(_prove_body())

    indices = compute_splice_indices(computer, salts)

    assert indices.ordered() == [1, 2, 3, 4, 5]
    assert computer.calls["cdx"] == (2, 5, 9, 13, 20)
    for name in ("rdx", "bdx", "ndx", "mdx"):
        assert computer.calls[name] == (2, 5, 13, 9, 20)


def test_wasm_index_computer_runs_module_exports() -> None:
    computer = WasmIndexComputer(INDEX_MODULE)
    salts = ProveResponse.model_validate(_prove_body())

    indices = compute_splice_indices(computer, salts)

    # rdx..mdx receive (s1, s2, s4, s3, s5).
    assert (indices.first, indices.second, indices.third, indices.fourth, indices.fifth) == (
        2,
        5,
        13,
        9,
        20,
    )


def test_wasm_index_computer_requires_every_export() -> None:
    module = '(module (func (export "cdx") (param i32 i32 i32 i32 i32) (result i32) i32.const 0))'

    with pytest.raises(AuthError):
        WasmIndexComputer(module)


def test_wasm_index_computer_rejects_invalid_module() -> None:
    with pytest.raises(AuthError):
        WasmIndexComputer(b"not a wasm module")


def test_wasm_index_computer_load_wraps_download_errors() -> None:
    class _FailingTransport:
        async def get_bytes(self, url: str) -> bytes:
            raise httpx.ConnectError("offline", request=httpx.Request("GET", url))

    async def _runner() -> None:
        with pytest.raises(AuthError):
            await WasmIndexComputer.load(_FailingTransport(), "https://example.com/css.wasm")

    asyncio.run(_runner())


def test_token_provider_acquires_and_caches_headers() -> None:
    async def _runner() -> None:
        transport = _ProveTransport([_prove_body()])
        provider = TokenProvider(
            transport,
            WasmIndexComputer(INDEX_MODULE),
            prove_url="https://example.com/api/authenticate/prove",
        )

        with pytest.raises(AuthError):
            _ = provider.headers

        headers = await provider.acquire()
        again = await provider.acquire()

        assert isinstance(headers, AuthHeaders)
        assert headers is again
        assert headers.as_dict()["Authorization"] == "Salter abdeghiklmopqrstvwxyz0123"
        assert provider.refresh_count == 1
        assert len(transport.requests) == 1
        assert transport.requests[0].url.endswith("/authenticate/prove")

    asyncio.run(_runner())


def test_token_provider_refresh_replaces_snapshot() -> None:
    async def _runner() -> None:
        second = "ZYXWVUTSRQPONMLKJIHGFEDCBA9876"
        transport = _ProveTransport([_prove_body(), _prove_body(second)])
        provider = TokenProvider(
            transport,
            WasmIndexComputer(INDEX_MODULE),
            prove_url="https://example.com/api/authenticate/prove",
        )

        first_headers = await provider.acquire()
        refreshed = await provider.refresh()

        assert refreshed is not first_headers
        assert provider.headers is refreshed
        assert refreshed.token != first_headers.token
        assert provider.refresh_count == 2
        assert len(transport.requests) == 2

    asyncio.run(_runner())


@pytest.mark.parametrize(
    "body",
    [
        {"message": "denied"},
        {"accessToken": "", "salt1": 1},
        "<html>blocked</html>",
        {"accessToken": TOKEN, "salt1": "x"},
    ],
)
def test_token_provider_raises_auth_error_for_bad_prove(body: Any) -> None:
    async def _runner() -> None:
        provider = TokenProvider(
            _ProveTransport([body], status_code=403),
            _StaticComputer({"cdx": 1, "rdx": 2, "bdx": 3, "ndx": 4, "mdx": 5}),
            prove_url="https://example.com/api/authenticate/prove",
        )
        with pytest.raises(AuthError):
            await provider.acquire()

    asyncio.run(_runner())
