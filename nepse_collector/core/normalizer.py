"""Recursive key renaming, key dropping and absence pruning for JSON payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from ..providers.base import ConfigurationError


class _Absent:
    """Marker for a value that normalization removed."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


def normalize(
    value: Any,
    rename: Mapping[str, str],
    drop: Iterable[str] = (),
    *,
    prune_empty_strings: bool = False,
) -> Any:
    """Return a canonical copy of ``value``.

    ``None`` leaves (and ``""`` when ``prune_empty_strings`` is set) are removed:
    omitted from their parent mapping, filtered from their parent sequence.
    Mapping keys listed in ``drop`` are removed, the rest are renamed through
    ``rename`` after their values are normalized. Scalars pass through. When
    ``value`` itself is absent the :data:`ABSENT` marker is returned.
    """

    drop_keys = drop if isinstance(drop, (set, frozenset)) else frozenset(drop)
    return _normalize(value, rename, drop_keys, prune_empty_strings)


def _normalize(
    value: Any,
    rename: Mapping[str, str],
    drop: Any,
    prune_empty_strings: bool,
) -> Any:
    if value is None or (prune_empty_strings and value == ""):
        return ABSENT

    if isinstance(value, Mapping):
        cleaned: dict[str, Any] = {}
        for key, item in value.items():
            if key in drop:
                continue
            normalized = _normalize(item, rename, drop, prune_empty_strings)
            if normalized is ABSENT:
                continue
            cleaned[rename.get(key, key)] = normalized
        return cleaned

    if isinstance(value, (list, tuple)):
        items = (_normalize(item, rename, drop, prune_empty_strings) for item in value)
        return [item for item in items if item is not ABSENT]

    return value


def validate_rename_table(rename: Mapping[str, str], drop: Iterable[str] = ()) -> None:
    """Reject tables for which normalizing twice would differ from normalizing once.

    Two sources sharing a target are rejected as well, since one value would
    silently overwrite the other in the same mapping.
    """

    drop_keys = set(drop)
    problems: list[str] = []
    sources_by_target: dict[str, list[str]] = {}
    for source, target in rename.items():
        sources_by_target.setdefault(target, []).append(source)
        chained = rename.get(target)
        if chained is not None and chained != target:
            problems.append(f"{source!r} -> {target!r} -> {chained!r}")
        if target in drop_keys:
            problems.append(f"{source!r} -> {target!r} which is dropped")
    for target, sources in sources_by_target.items():
        if len(sources) > 1:
            problems.append(f"{sorted(sources)!r} all -> {target!r}")
    if problems:
        raise ConfigurationError(
            "Rename table is not idempotent: " + "; ".join(sorted(problems))
        )


@dataclass(frozen=True)
class NormalizationProfile:
    """Rename and drop tables for one data source."""

    name: str
    rename: Mapping[str, str]
    drop: frozenset[str] = field(default_factory=frozenset)
    prune_empty_strings: bool = False

    def __post_init__(self) -> None:
        validate_rename_table(self.rename, self.drop)

    def apply(self, value: Any) -> Any:
        return normalize(
            value,
            self.rename,
            self.drop,
            prune_empty_strings=self.prune_empty_strings,
        )

    def key(self, name: str) -> str:
        return self.rename.get(name, name)


NEPSE_KEY_MAP: dict[str, str] = {
    "activeStatus": "actSts",
    "addedDate": "addDt",
    "agenda": "agnd",
    "agm": "agm",
    "agmDate": "agmDt",
    "agmNo": "agmNo",
    "agmNotice": "agmNtc",
    "agmType": "agmTyp",
    "application": "app",
    "applicationStatus": "appSts",
    "applicationType": "appTyp",
    "asOf": "asOf",
    "baseYearMarketCapitalization": "baseYrMktCap",
    "bonusShare": "bonus",
    "bookCloseDate": "bkClsDt",
    "bookCloseNotice": "bkClsNtc",
    "capitalGainBaseDate": "capGainDt",
    "capitalRangeMin": "capMin",
    "cashDividend": "divCash",
    "cdsStockRefId": "cdsRef",
    "change": "chg",
    "close": "cls",
    "closingPrice": "clsPrc",
    "code": "code",
    "companies": "comp",
    "companyContactPerson": "contact",
    "companyEmail": "email",
    "companyId": "compId",
    "companyName": "compNm",
    "companyNews": "news",
    "companyRegistrationNumber": "regNo",
    "companyShortName": "shortNm",
    "companyWebsite": "cmpWeb",
    "currentValue": "curVal",
    "data": "d",
    "description": "desc",
    "detail": "dtl",
    "divisor": "div",
    "documentType": "docTyp",
    "epsValue": "eps",
    "expiryDate": "expDt",
    "faceValue": "faceVal",
    "fiftyTwoWeekHigh": "w52Hi",
    "fiftyTwoWeekLow": "w52Lo",
    "filePath": "file",
    "financialYear": "fy",
    "fiscalReport": "fiscal",
    "fromYear": "fromYr",
    "fyName": "fyNm",
    "fyNameNepali": "fyNmNp",
    "high": "hi",
    "id": "id",
    "index": "idx",
    "indexCode": "idxCd",
    "indexName": "idxNm",
    "instrumentType": "instTyp",
    "isDefault": "isDef",
    "isOpen": "isOpen",
    "isPromoter": "isProm",
    "isin": "isin",
    "keyIndexFlag": "keyIdx",
    "lastTradedPrice": "ltp",
    "listingDate": "listDt",
    "low": "lo",
    "marketStatus": "mktSts",
    "marketSummary": "mktSum",
    "meInstanceNumber": "meInst",
    "modifiedDate": "modDt",
    "name": "nm",
    "nepseIndex": "npsIdx",
    "netWorthPerShare": "nwps",
    "networthBasePrice": "nwBase",
    "newsBody": "body",
    "newsHeadline": "headline",
    "newsSource": "src",
    "newsType": "newsTyp",
    "paidUpCapital": "paidUp",
    "peValue": "pe",
    "percentageChange": "pctChg",
    "perChange": "perChg",
    "permittedToTrade": "canTrade",
    "pointChange": "ptChg",
    "previousClose": "prevCls",
    "profitAmount": "profit",
    "publishToWebsite": "pubWeb",
    "quarterMaster": "qtr",
    "quarterName": "qtrNm",
    "recordType": "recTyp",
    "regulatoryBody": "regBody",
    "report": "rpt",
    "reportName": "rptNm",
    "reportTypeMaster": "rptTyp",
    "rightBookCloseDate": "rtBkClsDt",
    "rightShare": "rtShare",
    "sectorDescription": "secDesc",
    "sectorMaster": "sector",
    "sectorName": "sectNm",
    "security": "sec",
    "securityId": "secId",
    "securityName": "secNm",
    "securityTradeCycle": "tradeCyc",
    "shareGroupId": "shrGrp",
    "shareTraded": "shrTrd",
    "status": "sts",
    "subIndices": "subIdx",
    "subIndicesData": "subIdxData",
    "submittedDate": "subDt",
    "symbol": "sym",
    "tickSize": "tick",
    "toYear": "toYr",
    "topGainers": "gainers",
    "topLosers": "losers",
    "topTransactions": "txns",
    "topVolume": "volume",
    "totalTrades": "totTrd",
    "tradingStartDate": "trdStartDt",
    "turnover": "to",
    "updatedAt": "updAt",
    "value": "val",
    "venue": "venue",
    "versionId": "ver",
    "website": "web",
}

NEPSE_DROP_KEYS = frozenset(
    {
        "modifiedBy",
        "modifiedDate",
        "activeStatus",
        "reportTypeMaster",
        "versionId",
        "isDefault",
        "applicationDocumentDetailsList",
    }
)

MUTUAL_FUND_KEY_MAP: dict[str, str] = {
    "companyid": "id",
    "companyname": "name",
    "fund_size": "fundSize",
    "maturity_date": "maturityDate",
    "maturity_period": "maturityPeriod",
    "daily_nav_price": "dailyNav",
    "daily_date": "dailyNavDate",
    "weekly_nav_price": "weeklyNav",
    "weekly_date": "weeklyNavDate",
    "monthly_nav_price": "monthlyNav",
    "monthly_date": "monthlyNavDate",
    "close": "marketPrice",
    "published_date": "publishedDate",
    "prem_dis": "premiumDiscount",
    "refund_nav": "redemptionNav",
    "fetched_at": "updatedAt",
    "records_total": "total",
}

MUTUAL_FUND_DROP_KEYS = frozenset({"DT_Row_Index", "type", "modifiedBy"})

NEPSE_PROFILE = NormalizationProfile(
    name="nepse",
    rename=NEPSE_KEY_MAP,
    drop=NEPSE_DROP_KEYS,
    prune_empty_strings=True,
)

MUTUAL_FUND_PROFILE = NormalizationProfile(
    name="mutual_fund",
    rename=MUTUAL_FUND_KEY_MAP,
    drop=MUTUAL_FUND_DROP_KEYS,
)


__all__ = [
    "ABSENT",
    "MUTUAL_FUND_PROFILE",
    "NEPSE_PROFILE",
    "NormalizationProfile",
    "normalize",
    "validate_rename_table",
]
