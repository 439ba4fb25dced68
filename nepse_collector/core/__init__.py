"""Configuration, record normalization and bounded concurrency."""

from .config import CollectorConfig, build_config, load_environment
from .normalizer import (
    ABSENT,
    MUTUAL_FUND_PROFILE,
    NEPSE_PROFILE,
    NormalizationProfile,
    normalize,
)
from .pool import PoolSummary, WorkOutcome, run_bounded

__all__ = [
    "ABSENT",
    "CollectorConfig",
    "MUTUAL_FUND_PROFILE",
    "NEPSE_PROFILE",
    "NormalizationProfile",
    "PoolSummary",
    "WorkOutcome",
    "build_config",
    "load_environment",
    "normalize",
    "run_bounded",
]
