"""Compose token handling, fetching, pagination and normalization into collection runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from nepse_collector.core.config import CollectorConfig, build_config
from nepse_collector.core.normalizer import (
    ABSENT,
    MUTUAL_FUND_PROFILE,
    NEPSE_PROFILE,
)
from nepse_collector.core.pool import PoolSummary, run_bounded
from nepse_collector.providers.auth import IndexComputer, TokenProvider, WasmIndexComputer
from nepse_collector.providers.base import (
    CollectorError,
    DataShapeError,
    FetchResponse,
    HttpTransport,
)
from nepse_collector.providers.fetcher import RetryingFetcher
from nepse_collector.providers.nepse import (
    MARKET_ENDPOINTS,
    CompanyRef,
    NepseClient,
    company_rows,
    security_payload,
)
from nepse_collector.providers.sharesansar import (
    FundType,
    MutualFundNavSource,
    resolve_fund_types,
)

LOGGER = logging.getLogger(__name__)

# Output key for each market endpoint.
MARKET_OUTPUT_KEYS: dict[str, str] = {
    "nepseIndex": "npsIdx",
    "subIndices": "subIdx",
    "subIndicesData": "subIdxData",
    "marketSummary": "mktSum",
    "list": "comp",
    "marketStatus": "mktSts",
    "topGainers": "gainers",
    "topLosers": "losers",
    "topTurnover": "turnover",
    "topVolume": "volume",
    "topTransactions": "txns",
}
TOP_TEN_DATASETS = frozenset({"topGainers", "topLosers", "topTurnover", "topVolume"})
ACTIVE_STATUS = "A"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def envelope(response: FetchResponse) -> dict[str, Any]:
    """Status/data wrapper the published files are built from (``{sts, d}`` once normalized)."""

    return {"status": response.status_code, "data": response.body}


def limit_to_ten(payload: Any) -> Any:
    if isinstance(payload, list):
        return payload[:10]
    if isinstance(payload, Mapping) and isinstance(payload.get("d"), list):
        return {**payload, "d": payload["d"][:10]}
    return payload


def keep_active_companies(company_list: Any) -> Any:
    rows = company_rows(company_list)
    active = [row for row in rows if isinstance(row, Mapping) and row.get("sts") == ACTIVE_STATUS]
    return {**company_list, "d": active}


def fiscal_reports(report: Any) -> Any:
    """Reduce a normalized report envelope to its non-empty ``fiscal`` entries."""

    if isinstance(report, Mapping) and isinstance(report.get("d"), list):
        fiscal = [
            item["fiscal"]
            for item in report["d"]
            if isinstance(item, Mapping) and item.get("fiscal")
        ]
        return {**report, "d": fiscal}
    return report


@dataclass(slots=True)
class CollectionResult:
    """Aggregate of one run: dataset name to normalized payload, plus what was skipped."""

    datasets: dict[str, Any] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)


class NepseCollector:
    """Coordinate authentication, bounded fan-out and normalization for every dataset."""

    def __init__(
        self,
        config: CollectorConfig,
        *,
        transport: HttpTransport | None = None,
        index_computer: IndexComputer | None = None,
    ) -> None:
        self.config = config
        self.transport = transport or HttpTransport(
            timeout=config.timeout,
            verify=config.verify_ssl,
            user_agent=config.user_agent,
        )
        self._index_computer = index_computer
        self.token_provider: TokenProvider | None = None
        self._nepse: NepseClient | None = None
        self.failures: list[str] = []

        self.listing_fetcher = RetryingFetcher(
            self.transport,
            max_attempts=config.max_retries,
            backoff_seconds=config.backoff_seconds,
        )
        self.mutual_funds = MutualFundNavSource(
            self.listing_fetcher,
            url=config.mutual_fund_url,
            page_length=config.page_length,
        )

    @classmethod
    def from_environment(cls, **overrides: Any) -> "NepseCollector":
        config = build_config(**overrides)
        LOGGER.debug("Initialised configuration for %s", config.base_url)
        return cls(config)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def authenticate(self) -> TokenProvider:
        """Load the index module if needed and acquire the first session token."""

        if self.token_provider is None:
            if self._index_computer is None:
                self._index_computer = await WasmIndexComputer.load(
                    self.transport, str(self.config.wasm_url)
                )
            self.token_provider = TokenProvider(
                self.transport,
                self._index_computer,
                prove_url=self.config.prove_url,
            )
            fetcher = RetryingFetcher(
                self.transport,
                self.token_provider,
                max_attempts=self.config.max_retries,
                backoff_seconds=self.config.backoff_seconds,
            )
            self._nepse = NepseClient(fetcher, base_url=self.config.base_url)
        await self.token_provider.acquire()
        return self.token_provider

    @property
    def nepse(self) -> NepseClient:
        if self._nepse is None:
            raise CollectorError("NepseCollector.authenticate() must run before NEPSE requests.")
        return self._nepse

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "NepseCollector":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _record_failures(self, dataset: str, summary: PoolSummary[Any, Any], label: Any) -> None:
        for outcome in summary.failures:
            self.failures.append(f"{dataset}:{label(outcome.item)}: {outcome.error}")

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------
    async def collect_market(self) -> dict[str, Any]:
        """Snapshot of indices, summary, company list and top-ten tables."""

        await self.authenticate()

        async def _fetch(name: str) -> tuple[str, Any]:
            response = await self.nepse.fetch_market_dataset(name)
            if response is None:
                raise CollectorError(f"request failed for market dataset {name}")
            return name, NEPSE_PROFILE.apply(envelope(response))

        summary = await run_bounded(
            MARKET_ENDPOINTS,
            _fetch,
            limit=self.config.concurrency,
            describe=str,
        )
        self._record_failures("market", summary, str)
        fetched = dict(result for result in summary.results if result is not None)

        if fetched.get("list", ABSENT) is ABSENT:
            raise DataShapeError("Company list is unavailable; cannot build the market snapshot.")

        output: dict[str, Any] = {"updAt": utc_timestamp()}
        for name, key in MARKET_OUTPUT_KEYS.items():
            payload = fetched.get(name, ABSENT)
            if payload is ABSENT:
                continue
            if name == "list":
                payload = keep_active_companies(payload)
            elif name in TOP_TEN_DATASETS:
                payload = limit_to_ten(payload)
            output[key] = payload
        LOGGER.info(
            "Market snapshot assembled with %s active companies",
            len(output["comp"]["d"]),
        )
        return output

    async def collect_reports(self, companies: Sequence[CompanyRef]) -> dict[str, Any]:
        """Report and dividend history per company, keyed by file-safe symbol."""

        await self.authenticate()

        async def _collect(company: CompanyRef) -> tuple[str, dict[str, Any]]:
            report = await self.nepse.fetch_report(company.id)
            if report is None:
                raise CollectorError("report request failed")
            dividend = await self.nepse.fetch_dividend(company.id)

            output: dict[str, Any] = {"updAt": utc_timestamp(), "id": company.id}
            if company.symbol:
                output["sym"] = company.symbol
            rpt = fiscal_reports(NEPSE_PROFILE.apply(envelope(report)))
            output["rpt"] = rpt
            if dividend is not None:
                div = NEPSE_PROFILE.apply(envelope(dividend))
                if div is not ABSENT:
                    output["div"] = div
            return company.safe_symbol, output

        summary = await run_bounded(
            companies,
            _collect,
            limit=self.config.concurrency,
            describe=_company_label,
        )
        self._record_failures("reports", summary, _company_label)
        return dict(result for result in summary.results if result is not None)

    async def collect_securities(self, companies: Sequence[CompanyRef]) -> dict[str, Any]:
        """Security detail per company, keyed by file-safe symbol."""

        await self.authenticate()

        async def _collect(company: CompanyRef) -> tuple[str, Any]:
            response = await self.nepse.fetch_security(company.id)
            if response is None:
                raise CollectorError("security request failed")
            return company.safe_symbol, NEPSE_PROFILE.apply(security_payload(response))

        summary = await run_bounded(
            companies,
            _collect,
            limit=self.config.concurrency,
            describe=_company_label,
        )
        self._record_failures("securities", summary, _company_label)
        return {
            symbol: payload
            for symbol, payload in (result for result in summary.results if result is not None)
            if payload is not ABSENT
        }

    async def collect_mutual_funds(
        self, fund_type: str | Sequence[FundType] | None = "all"
    ) -> dict[str, Any]:
        """NAV listings for the requested fund types (a selector or resolved types)."""

        if fund_type is None or isinstance(fund_type, str):
            fund_types = resolve_fund_types(fund_type)
        else:
            fund_types = list(fund_type)
        results = await self.mutual_funds.fetch_all(fund_types)
        output = {
            "updatedAt": utc_timestamp(),
            "funds": {label: result.as_payload() for label, result in results.items()},
        }
        return MUTUAL_FUND_PROFILE.apply(output)

    async def collect_all(self, *, fund_type: str | None = "all") -> CollectionResult:
        """Market snapshot, then per-company reports and securities, then fund NAVs.

        The fund selector is resolved before any request is made. A failed NAV
        listing is recorded in ``failures`` and leaves ``mutualFunds`` out of the
        result instead of discarding the NEPSE datasets.
        """

        fund_types = resolve_fund_types(fund_type)
        self.failures = []
        market = await self.collect_market()
        companies = companies_from_market(market)
        LOGGER.info("Found %s companies to process", len(companies))

        result = CollectionResult()
        result.datasets["market"] = market
        result.datasets["reports"] = await self.collect_reports(companies)
        result.datasets["securities"] = await self.collect_securities(companies)
        try:
            result.datasets["mutualFunds"] = await self.collect_mutual_funds(fund_types)
        except DataShapeError as exc:
            LOGGER.warning("Mutual fund NAVs unavailable: %s", exc)
            self.failures.append(f"mutualFunds: {exc}")
        result.failures = list(self.failures)
        return result


def _company_label(company: CompanyRef) -> str:
    return company.label


def companies_from_market(market: Mapping[str, Any]) -> list[CompanyRef]:
    """Company references from a market snapshot (``comp.d`` rows)."""

    comp = market.get("comp")
    if comp is None:
        raise DataShapeError("Market snapshot has no company list ('comp').")
    return parse_companies(company_rows(comp))


def parse_companies(rows: Iterable[Any]) -> list[CompanyRef]:
    companies: list[CompanyRef] = []
    for row in rows:
        try:
            companies.append(CompanyRef.from_record(row))
        except DataShapeError as exc:
            LOGGER.warning("Skipping company row: %s", exc)
    return companies


__all__ = [
    "CollectionResult",
    "MARKET_OUTPUT_KEYS",
    "NepseCollector",
    "companies_from_market",
    "envelope",
    "fiscal_reports",
    "keep_active_companies",
    "limit_to_ten",
    "parse_companies",
    "utc_timestamp",
]
