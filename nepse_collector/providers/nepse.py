"""Endpoint catalogue and typed accessors for the NEPSE public API."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .base import DataShapeError, FetchResponse
from .fetcher import RetryingFetcher

MARKET_ENDPOINTS: dict[str, str] = {
    "nepseIndex": "/nots/nepse-index",
    "subIndices": "/nots/index",
    "subIndicesData": "/nots",
    "marketSummary": "/nots/market-summary",
    "list": "/nots/company/list",
    "marketStatus": "/nots/nepse-data/market-open",
    "topGainers": "/nots/top-ten/top-gainer?all=true",
    "topLosers": "/nots/top-ten/top-loser?all=true",
    "topTurnover": "/nots/top-ten/turnover?all=true",
    "topVolume": "/nots/top-ten/trade?all=true",
    "topTransactions": "/nots/top-ten/transaction?all=true",
}

REPORT_PATH = "/nots/application/reports/{company_id}"
DIVIDEND_PATH = "/nots/application/dividend/{company_id}"
SECURITY_PATH = "/nots/security/{company_id}"


class CompanyRef(BaseModel):
    """A company row from the listing, raw (``symbol``) or normalized (``sym``)."""

    id: int
    symbol: str | None = None
    status: str | None = None

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _accept_short_keys(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            payload = dict(data)
            payload.setdefault("symbol", payload.get("sym"))
            payload.setdefault("status", payload.get("sts"))
            return payload
        return data

    @classmethod
    def from_record(cls, record: Any) -> "CompanyRef":
        try:
            return cls.model_validate(record)
        except ValidationError as exc:
            raise DataShapeError(f"Company record is missing an id: {str(record)[:120]}") from exc

    @property
    def label(self) -> str:
        return self.symbol or str(self.id)

    @property
    def safe_symbol(self) -> str:
        return self.label.replace("/", "-")


class NepseClient:
    """Builds NEPSE URLs and routes every call through a :class:`RetryingFetcher`."""

    def __init__(self, fetcher: RetryingFetcher, *, base_url: str) -> None:
        self._fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.api_base = f"{self.base_url}/api"

    def url_for(self, path: str) -> str:
        return f"{self.api_base}{path}"

    async def fetch_market_dataset(self, name: str) -> FetchResponse | None:
        try:
            path = MARKET_ENDPOINTS[name]
        except KeyError as exc:
            raise KeyError(f"Unknown market dataset {name!r}") from exc
        return await self._fetcher.get(self.url_for(path))

    async def fetch_report(self, company_id: int) -> FetchResponse | None:
        return await self._fetcher.get(self.url_for(REPORT_PATH.format(company_id=company_id)))

    async def fetch_dividend(self, company_id: int) -> FetchResponse | None:
        """Dividend history; ``None`` is a normal outcome for companies without one.

        Tried once and logged at debug level, so a missing history costs neither
        backoff nor a warning.
        """

        return await self._fetcher.get(
            self.url_for(DIVIDEND_PATH.format(company_id=company_id)),
            max_attempts=1,
            exhausted_level=logging.DEBUG,
        )

    async def fetch_security(self, company_id: int) -> FetchResponse | None:
        return await self._fetcher.post_json(
            self.url_for(SECURITY_PATH.format(company_id=company_id)),
            {"id": company_id},
            headers={
                "Origin": self.base_url,
                "Referer": f"{self.base_url}/company/detail/{company_id}",
            },
        )


def security_payload(response: FetchResponse) -> Any:
    """The security endpoint sometimes nests its record under ``d``."""

    body = response.body
    if isinstance(body, Mapping) and body.get("d") is not None:
        return body["d"]
    return body


def company_rows(market_list: Any) -> list[Any]:
    """Rows of a normalized ``{sts, d}`` company-list envelope."""

    try:
        return CompanyList.model_validate(market_list).rows
    except ValidationError as exc:
        raise DataShapeError("Company list payload has no 'd' rows") from exc


class CompanyList(BaseModel):
    """Normalized envelope of ``/nots/company/list``."""

    rows: list[Any] = Field(alias="d")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


__all__ = [
    "CompanyList",
    "CompanyRef",
    "DIVIDEND_PATH",
    "MARKET_ENDPOINTS",
    "NepseClient",
    "REPORT_PATH",
    "SECURITY_PATH",
    "company_rows",
    "security_payload",
]
