"""Tests for draw/start/length pagination and the mutual fund source."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from nepse_collector.providers.base import ConfigurationError, DataShapeError, FetchRequest, FetchResponse
from nepse_collector.providers.fetcher import RetryingFetcher
from nepse_collector.providers.pagination import Paginator, page_params
from nepse_collector.providers.sharesansar import (
    MutualFundNavSource,
    resolve_fund_types,
)

URL = "https://example.com/mutual-fund-navs"


class _ListingTransport:
    """Serves ``rows`` in pages, honouring ``start``/``length`` query params."""

    def __init__(self, rows: list[Any], *, records_total: Any = None, cut_after: int | None = None) -> None:
        self.rows = rows
        self.records_total = len(rows) if records_total is None else records_total
        self.cut_after = cut_after
        self.requests: list[FetchRequest] = []

    async def send(self, request: FetchRequest) -> FetchResponse:
        self.requests.append(request)
        params = dict(request.params or {})
        start = int(params["start"])
        length = int(params["length"])
        available = self.rows if self.cut_after is None else self.rows[: self.cut_after]
        body: dict[str, Any] = {"draw": int(params["draw"]), "data": available[start : start + length]}
        if self.records_total != "omit":
            body["recordsTotal"] = self.records_total
        return FetchResponse(status_code=200, body=body)


def _paginator(transport: Any) -> Paginator:
    return Paginator(RetryingFetcher(transport, backoff_seconds=0), URL)


def test_exact_total_is_collected_in_order() -> None:
    async def _runner() -> None:
        rows = [{"n": index} for index in range(120)]
        transport = _ListingTransport(rows)

        result = await _paginator(transport).fetch_all(2, 50)

        assert result.total == 120
        assert result.rows == rows
        assert len(transport.requests) == 3
        draws = [request.params["draw"] for request in transport.requests]
        starts = [request.params["start"] for request in transport.requests]
        assert draws == ["1", "2", "3"]
        assert starts == ["0", "50", "100"]
        assert all(request.params["type"] == "2" for request in transport.requests)

    asyncio.run(_runner())


def test_early_empty_page_stops_pagination() -> None:
    async def _runner() -> None:
        rows = [{"n": index} for index in range(60)]
        transport = _ListingTransport(rows, records_total=500, cut_after=60)

        result = await _paginator(transport).fetch_all(-1, 50)

        assert result.total == 500
        assert len(result.rows) == 60
        assert len(transport.requests) == 3

    asyncio.run(_runner())


def test_missing_total_falls_back_to_first_page() -> None:
    async def _runner() -> None:
        rows = [{"n": index} for index in range(30)]
        transport = _ListingTransport(rows, records_total="omit")

        result = await _paginator(transport).fetch_all(2, 50)

        assert result.total == 30
        assert len(result.rows) == 30
        assert len(transport.requests) == 1

    asyncio.run(_runner())


def test_missing_data_raises_shape_error() -> None:
    class _BrokenTransport:
        async def send(self, request: FetchRequest) -> FetchResponse:
            return FetchResponse(status_code=200, body={"recordsTotal": 10})

    async def _runner() -> None:
        with pytest.raises(DataShapeError):
            await _paginator(_BrokenTransport()).fetch_all(2, 50)

    asyncio.run(_runner())


def test_non_positive_page_length_rejected() -> None:
    async def _runner() -> None:
        with pytest.raises(ValueError):
            await _paginator(_ListingTransport([])).fetch_all(2, 0)

    asyncio.run(_runner())


def test_page_params_shape() -> None:
    params = page_params(-1, 100, 50, 3)

    assert params["draw"] == "3"
    assert params["start"] == "100"
    assert params["length"] == "50"
    assert params["type"] == "-1"
    assert params["search[value]"] == ""


def test_resolve_fund_types() -> None:
    assert [fund.label for fund in resolve_fund_types("all")] == ["closed", "opened"]
    assert [fund.value for fund in resolve_fund_types("CLOSED")] == [-1]
    assert [fund.label for fund in resolve_fund_types("2")] == ["opened"]
    assert [fund.label for fund in resolve_fund_types(None)] == ["closed", "opened"]
    with pytest.raises(ConfigurationError):
        resolve_fund_types("interval")


def test_mutual_fund_source_fetches_each_type() -> None:
    async def _runner() -> None:
        transport = _ListingTransport([{"companyid": 1}, {"companyid": 2}])
        source = MutualFundNavSource(
            RetryingFetcher(transport, backoff_seconds=0), url=URL, page_length=1
        )

        results = await source.fetch_all(resolve_fund_types("all"))

        assert set(results) == {"closed", "opened"}
        assert results["opened"].as_payload() == {
            "total": 2,
            "data": [{"companyid": 1}, {"companyid": 2}],
        }
        assert transport.requests[0].header("X-Requested-With") == "XMLHttpRequest"

    asyncio.run(_runner())
