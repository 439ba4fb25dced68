"""Cursor-style (``draw``/``start``/``length``) pagination over listing endpoints."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Mapping

from .base import DataShapeError
from .fetcher import RetryingFetcher

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PaginatedResult:
    """All rows of a paginated dataset together with the server-reported total."""

    total: int
    rows: list[Any] = field(default_factory=list)

    def as_payload(self) -> dict[str, Any]:
        return {"total": self.total, "data": list(self.rows)}


def page_params(type_selector: Any, start: int, length: int, draw: int) -> dict[str, str]:
    return {
        "draw": str(draw),
        "start": str(start),
        "length": str(length),
        "search[value]": "",
        "search[regex]": "false",
        "type": str(type_selector),
    }


def _records_total(payload: Mapping[str, Any]) -> float | None:
    value = payload.get("recordsTotal")
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


class Paginator:
    """Drive a listing endpoint page by page until it is exhausted."""

    def __init__(
        self,
        fetcher: RetryingFetcher,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._url = url
        self._headers = dict(headers or {})

    async def fetch_all(self, type_selector: Any, page_length: int) -> PaginatedResult:
        if page_length <= 0:
            raise ValueError("page_length must be a positive integer.")

        start = 0
        draw = 1
        records_total = math.inf
        rows: list[Any] = []

        while start < records_total:
            response = await self._fetcher.get(
                self._url,
                params=page_params(type_selector, start, page_length, draw),
                headers=self._headers,
            )
            if response is None:
                raise DataShapeError(
                    f"No usable response for page draw={draw} start={start} of {self._url}"
                )
            payload = response.body
            if not isinstance(payload, Mapping) or not isinstance(payload.get("data"), list):
                raise DataShapeError(
                    f"Unexpected page payload from {self._url} (draw={draw}): missing 'data' rows"
                )

            page_rows: list[Any] = payload["data"]
            reported = _records_total(payload)
            if reported is not None:
                records_total = reported
            elif records_total == math.inf:
                records_total = len(page_rows)

            rows.extend(page_rows)
            LOGGER.debug(
                "Page draw=%s start=%s returned %s rows (total=%s)",
                draw,
                start,
                len(page_rows),
                records_total,
            )

            if not page_rows:
                break

            start += page_length
            draw += 1

        total = int(records_total) if math.isfinite(records_total) else len(rows)
        LOGGER.info(
            "Pagination complete for type=%s: %s rows over %s pages", type_selector, len(rows), draw
        )
        return PaginatedResult(total=total, rows=rows)


__all__ = ["PaginatedResult", "Paginator", "page_params"]
