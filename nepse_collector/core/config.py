"""Configuration utilities for the NEPSE collector."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

# Relative to the working directory the collector is run from.
DEFAULT_OUTPUT_DIR = Path("public")

DEFAULT_BASE_URL = "https://nepalstock.com"
DEFAULT_MUTUAL_FUND_URL = "https://www.sharesansar.com/mutual-fund-navs"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_CONCURRENCY = 5
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_SECONDS = 0.5
DEFAULT_TIMEOUT = 30.0
DEFAULT_PAGE_LENGTH = 50
DEFAULT_FRESH_HOURS = 8.0


def _coerce_positive_int(value: Any, *, default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer.") from exc
    return max(1, parsed)


def _coerce_non_negative_float(value: Any, *, default: float, name: str) -> float:
    if value is None or value == "":
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number.") from exc
    return max(0.0, parsed)


def _coerce_bool(value: Optional[object], *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        token = value.strip().lower()
        if not token:
            return default
        return token in {"1", "true", "yes", "y", "on"}
    return bool(value)


@dataclass
class CollectorConfig:
    """Runtime configuration for the collection pipeline."""

    base_url: str = DEFAULT_BASE_URL
    wasm_url: Optional[str] = None
    mutual_fund_url: str = DEFAULT_MUTUAL_FUND_URL
    concurrency: int = DEFAULT_CONCURRENCY
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    timeout: float = DEFAULT_TIMEOUT
    verify_ssl: bool = False
    page_length: int = DEFAULT_PAGE_LENGTH
    output_dir: Path = field(default_factory=lambda: DEFAULT_OUTPUT_DIR)
    user_agent: str = DEFAULT_USER_AGENT
    fresh_hours: float = DEFAULT_FRESH_HOURS

    def __post_init__(self) -> None:
        self.base_url = str(self.base_url).rstrip("/")
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must start with http:// or https://, got {self.base_url!r}")
        if not self.wasm_url:
            self.wasm_url = f"{self.base_url}/assets/prod/css.wasm"
        self.concurrency = _coerce_positive_int(
            self.concurrency, default=DEFAULT_CONCURRENCY, name="concurrency"
        )
        self.max_retries = _coerce_positive_int(
            self.max_retries, default=DEFAULT_MAX_RETRIES, name="max_retries"
        )
        self.page_length = _coerce_positive_int(
            self.page_length, default=DEFAULT_PAGE_LENGTH, name="page_length"
        )
        self.backoff_seconds = _coerce_non_negative_float(
            self.backoff_seconds, default=DEFAULT_BACKOFF_SECONDS, name="backoff_seconds"
        )
        self.timeout = _coerce_non_negative_float(
            self.timeout, default=DEFAULT_TIMEOUT, name="timeout"
        )
        self.fresh_hours = _coerce_non_negative_float(
            self.fresh_hours, default=DEFAULT_FRESH_HOURS, name="fresh_hours"
        )
        self.verify_ssl = _coerce_bool(self.verify_ssl, default=False)
        self.output_dir = Path(self.output_dir).expanduser()

    @property
    def api_base(self) -> str:
        return f"{self.base_url}/api"

    @property
    def prove_url(self) -> str:
        return f"{self.api_base}/authenticate/prove"

    @property
    def market_path(self) -> Path:
        return self.output_dir / "nepse-market.json"

    @property
    def report_dir(self) -> Path:
        return self.output_dir / "report"

    @property
    def security_dir(self) -> Path:
        return self.output_dir / "security"

    @property
    def mutual_fund_path(self) -> Path:
        return self.output_dir / "mf.json"


def load_environment() -> None:
    """Load configuration from an optional ``.env`` file."""

    load_dotenv()


def build_config(
    *,
    base_url: Optional[str] = None,
    wasm_url: Optional[str] = None,
    mutual_fund_url: Optional[str] = None,
    concurrency: Optional[int] = None,
    max_retries: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    timeout: Optional[float] = None,
    verify_ssl: Optional[bool] = None,
    page_length: Optional[int] = None,
    output_dir: Optional[str | Path] = None,
    user_agent: Optional[str] = None,
    fresh_hours: Optional[float] = None,
) -> CollectorConfig:
    """Build a :class:`CollectorConfig` from explicit overrides and ``NEPSE_*`` variables."""

    load_environment()

    def _pick(value: Any, env_key: str) -> Any:
        if value is not None:
            return value
        return os.getenv(env_key)

    verify_value = verify_ssl if verify_ssl is not None else os.getenv("NEPSE_VERIFY_SSL")

    return CollectorConfig(
        base_url=_pick(base_url, "NEPSE_BASE_URL") or DEFAULT_BASE_URL,
        wasm_url=_pick(wasm_url, "NEPSE_WASM_URL"),
        mutual_fund_url=_pick(mutual_fund_url, "NEPSE_MUTUAL_FUND_URL")
        or DEFAULT_MUTUAL_FUND_URL,
        concurrency=_pick(concurrency, "NEPSE_CONCURRENCY"),
        max_retries=_pick(max_retries, "NEPSE_MAX_RETRIES"),
        backoff_seconds=_pick(backoff_seconds, "NEPSE_BACKOFF_SECONDS"),
        timeout=_pick(timeout, "NEPSE_TIMEOUT"),
        verify_ssl=_coerce_bool(verify_value, default=False),
        page_length=_pick(page_length, "NEPSE_PAGE_LENGTH"),
        output_dir=_pick(output_dir, "NEPSE_OUTPUT_DIR") or DEFAULT_OUTPUT_DIR,
        user_agent=_pick(user_agent, "NEPSE_USER_AGENT") or DEFAULT_USER_AGENT,
        fresh_hours=_pick(fresh_hours, "NEPSE_FRESH_HOURS"),
    )


__all__ = [
    "CollectorConfig",
    "DEFAULT_BASE_URL",
    "DEFAULT_MUTUAL_FUND_URL",
    "DEFAULT_OUTPUT_DIR",
    "build_config",
    "load_environment",
]
