"""HTTP transport, authentication and upstream data sources."""

from __future__ import annotations

from .base import (
    AuthError,
    CollectorError,
    ConfigurationError,
    DataShapeError,
    FetchRequest,
    FetchResponse,
    HttpTransport,
    TransientRequestError,
)

__all__ = [
    "AuthError",
    "CollectorError",
    "ConfigurationError",
    "DataShapeError",
    "FetchRequest",
    "FetchResponse",
    "HttpTransport",
    "TransientRequestError",
]
