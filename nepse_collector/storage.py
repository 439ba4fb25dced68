"""JSON output files for collected datasets."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Mapping

from nepse_collector.pipeline import companies_from_market
from nepse_collector.providers.base import DataShapeError
from nepse_collector.providers.nepse import CompanyRef

LOGGER = logging.getLogger(__name__)


def safe_filename(symbol: str) -> str:
    return f"{symbol.replace('/', '-')}.json"


def write_json(path: Path, payload: Any) -> Path:
    """Write ``payload`` as indented JSON followed by a newline."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)
        handle.write("\n")
    return path


def write_per_symbol(directory: Path, payloads: Mapping[str, Any]) -> list[Path]:
    """One ``<SYM>.json`` file per entry of ``payloads``."""

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    written = [
        write_json(directory / safe_filename(symbol), payload)
        for symbol, payload in payloads.items()
    ]
    LOGGER.info("Saved %s files to %s", len(written), directory)
    return written


def load_companies(market_path: Path) -> list[CompanyRef]:
    """Read the company list back from a previously written market snapshot."""

    market_path = Path(market_path)
    try:
        with open(market_path, "r", encoding="utf-8") as handle:
            market = json.load(handle)
    except FileNotFoundError as exc:
        raise DataShapeError(f"Market snapshot not found at {market_path}") from exc
    except json.JSONDecodeError as exc:
        raise DataShapeError(f"Market snapshot at {market_path} is not valid JSON") from exc
    if not isinstance(market, Mapping):
        raise DataShapeError(f"Market snapshot at {market_path} is not a JSON object")
    return companies_from_market(market)


def is_fresh(path: Path, max_age_hours: float) -> bool:
    """Whether ``path`` exists and was modified less than ``max_age_hours`` ago."""

    path = Path(path)
    if max_age_hours <= 0 or not path.exists():
        return False
    age_seconds = time.time() - path.stat().st_mtime
    return age_seconds < max_age_hours * 3600


__all__ = [
    "is_fresh",
    "load_companies",
    "safe_filename",
    "write_json",
    "write_per_symbol",
]
