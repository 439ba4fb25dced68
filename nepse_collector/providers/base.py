"""Shared request/response records, error taxonomy and the HTTP transport."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import httpx
from pydantic import BaseModel, ConfigDict, Field

LOGGER = logging.getLogger(__name__)

DEFAULT_ACCEPT = "application/json, text/plain, */*"


class CollectorError(RuntimeError):
    """Base class for collection pipeline failures."""


class AuthError(CollectorError):
    """Raised when no usable session token can be obtained. Fatal for the run."""


class TransientRequestError(CollectorError):
    """Describes one retryable request outcome."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in (401, 403)


class DataShapeError(CollectorError):
    """Raised when a response does not match the structure its endpoint promises."""


class ConfigurationError(CollectorError):
    """Raised when the caller supplies an invalid table or option."""


class FetchRequest(BaseModel):
    """Immutable description of a single HTTP call."""

    method: str = "GET"
    url: str
    headers: Mapping[str, str] = Field(default_factory=dict)
    params: Mapping[str, Any] | None = None
    body: Any = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""

        return httpx.Headers(dict(self.headers)).get(name)

    def describe(self) -> str:
        return f"{self.method.upper()} {self.url}"


class FetchResponse(BaseModel):
    """Status code plus the parsed JSON body, or the raw text when it is not JSON."""

    status_code: int
    body: Any = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def reports_error(self) -> bool:
        """Whether a structured body signals a logical failure despite its status."""

        if not isinstance(self.body, Mapping):
            return False
        status = self.body.get("status")
        return status in ("error", "ERROR") or bool(self.body.get("error"))


def summarize_body(body: Any, limit: int = 200) -> str:
    if body is None:
        return "empty"
    if isinstance(body, str):
        return body[:limit]
    try:
        return json.dumps(body)[:limit]
    except (TypeError, ValueError):
        return "unserializable"


class HttpTransport:
    """Thin wrapper over :class:`httpx.AsyncClient` returning :class:`FetchResponse` values."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        verify: bool = True,
        user_agent: str | None = None,
    ) -> None:
        self._client = client
        self._client_owner = client is None
        self._timeout = timeout
        self._verify = verify
        self._user_agent = user_agent

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"User-Agent": self._user_agent} if self._user_agent else None
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                verify=self._verify,
                headers=headers,
                follow_redirects=True,
            )
        return self._client

    async def send(self, request: FetchRequest) -> FetchResponse:
        """Perform ``request``; transport failures propagate as :class:`httpx.HTTPError`."""

        kwargs: dict[str, Any] = {"headers": dict(request.headers)}
        if request.params:
            kwargs["params"] = dict(request.params)
        if request.body is not None:
            if isinstance(request.body, (str, bytes)):
                kwargs["content"] = request.body
            else:
                kwargs["json"] = request.body
        response = await self.client.request(request.method.upper(), request.url, **kwargs)
        LOGGER.debug("%s -> %s", request.describe(), response.status_code)
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        return FetchResponse(status_code=response.status_code, body=body)

    async def get_bytes(self, url: str) -> bytes:
        response = await self.client.get(url)
        response.raise_for_status()
        return response.content

    async def aclose(self) -> None:
        if self._client_owner and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


__all__ = [
    "AuthError",
    "CollectorError",
    "ConfigurationError",
    "DEFAULT_ACCEPT",
    "DataShapeError",
    "FetchRequest",
    "FetchResponse",
    "HttpTransport",
    "TransientRequestError",
    "summarize_body",
]
