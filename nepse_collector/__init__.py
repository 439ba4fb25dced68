"""NEPSE market data collector."""

from nepse_collector.core.config import CollectorConfig, build_config
from nepse_collector.pipeline import CollectionResult, NepseCollector
from nepse_collector.providers.base import (
    AuthError,
    CollectorError,
    ConfigurationError,
    DataShapeError,
)

__all__ = [
    "AuthError",
    "CollectionResult",
    "CollectorConfig",
    "CollectorError",
    "ConfigurationError",
    "DataShapeError",
    "NepseCollector",
    "build_config",
]
