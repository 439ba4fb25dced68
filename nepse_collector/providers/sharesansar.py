"""ShareSansar mutual-fund NAV listing (paginated, unauthenticated)."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .base import ConfigurationError
from .fetcher import RetryingFetcher
from .pagination import PaginatedResult, Paginator

LOGGER = logging.getLogger(__name__)

FUND_TYPES: dict[str, int] = {
    "closed": -1,
    "opened": 2,
}

LISTING_HEADERS = {
    "X-Requested-With": "XMLHttpRequest",
    "Accept": "application/json, text/javascript, */*; q=0.01",
}


@dataclass(frozen=True, slots=True)
class FundType:
    label: str
    value: int


def resolve_fund_types(value: str | None) -> list[FundType]:
    """Translate ``all``/``closed``/``opened`` (or their numeric codes) into fund types."""

    token = (value or "all").strip().lower()
    if token == "all":
        return [FundType(label, code) for label, code in FUND_TYPES.items()]
    if token in FUND_TYPES:
        return [FundType(token, FUND_TYPES[token])]
    for label, code in FUND_TYPES.items():
        if token == str(code):
            return [FundType(label, code)]
    raise ConfigurationError(f"Unknown fund type: {value}")


class MutualFundNavSource:
    """Collect every NAV row for each requested fund type."""

    def __init__(self, fetcher: RetryingFetcher, *, url: str, page_length: int = 50) -> None:
        self._paginator = Paginator(fetcher, url, headers=LISTING_HEADERS)
        self.page_length = page_length

    async def fetch(self, fund_type: FundType) -> PaginatedResult:
        LOGGER.info("Fetching %s mutual fund NAVs", fund_type.label)
        return await self._paginator.fetch_all(fund_type.value, self.page_length)

    async def fetch_all(self, fund_types: list[FundType]) -> dict[str, PaginatedResult]:
        results: dict[str, PaginatedResult] = {}
        for fund_type in fund_types:
            results[fund_type.label] = await self.fetch(fund_type)
        return results


__all__ = [
    "FUND_TYPES",
    "FundType",
    "LISTING_HEADERS",
    "MutualFundNavSource",
    "resolve_fund_types",
]
