"""Bounded retries, linear backoff and re-authentication over single HTTP calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import httpx

from .auth import TokenProvider
from .base import (
    FetchRequest,
    FetchResponse,
    HttpTransport,
    TransientRequestError,
    summarize_body,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 0.5


def classify_response(response: FetchResponse) -> TransientRequestError | None:
    """Return the retryable condition ``response`` represents, if any."""

    if response.status_code in (401, 403):
        return TransientRequestError(
            f"auth_failed status={response.status_code}",
            status_code=response.status_code,
        )
    if response.status_code >= 400 or response.reports_error:
        detail = summarize_body(response.body)
        return TransientRequestError(
            f"request_failed status={response.status_code} body={detail}",
            status_code=response.status_code,
            detail=detail,
        )
    return None


class RetryingFetcher:
    """Wrap a transport with bounded retries.

    :meth:`fetch` returns the first successful :class:`FetchResponse`, or ``None``
    once every attempt failed. Authorization failures refresh the shared token
    before the next attempt. Only an :class:`~.base.AuthError` from that refresh
    escapes, since no later request could succeed without a token.
    """

    def __init__(
        self,
        transport: HttpTransport,
        token_provider: TokenProvider | None = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self._transport = transport
        self._token_provider = token_provider
        self._max_attempts = max(1, int(max_attempts))
        self._backoff_seconds = max(0.0, float(backoff_seconds))

    def _prepare(self, request: FetchRequest) -> FetchRequest:
        if self._token_provider is None:
            return request
        headers = httpx.Headers(self._token_provider.headers.as_dict())
        headers.update(dict(request.headers))
        return request.model_copy(update={"headers": dict(headers.items())})

    async def fetch(
        self,
        request: FetchRequest,
        *,
        max_attempts: int | None = None,
        exhausted_level: int = logging.WARNING,
    ) -> FetchResponse | None:
        """Send ``request`` until it succeeds or the attempts run out.

        ``max_attempts`` overrides the configured bound for this call and
        ``exhausted_level`` is the level the final failure is logged at, which lets
        optional endpoints give up quietly.
        """

        attempts = self._max_attempts if max_attempts is None else max(1, int(max_attempts))
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            prepared = self._prepare(request)
            try:
                response = await self._transport.send(prepared)
            except httpx.HTTPError as exc:
                last_error = exc
            except Exception as exc:  # pragma: no cover - defensive
                last_error = exc
            else:
                failure = classify_response(response)
                if failure is None:
                    return response
                last_error = failure

            if attempt >= attempts:
                break

            if (
                isinstance(last_error, TransientRequestError)
                and last_error.is_auth_failure
                and self._token_provider is not None
            ):
                await self._token_provider.refresh()

            wait = self._backoff_seconds * attempt
            LOGGER.debug(
                "Retrying %s (%s/%s) in %.2fs because %s",
                request.describe(),
                attempt,
                attempts,
                wait,
                _format_error(last_error),
            )
            if wait > 0:
                await asyncio.sleep(wait)

        LOGGER.log(
            exhausted_level, "Error for %s: %s", request.describe(), _format_error(last_error)
        )
        return None

    async def get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        max_attempts: int | None = None,
        exhausted_level: int = logging.WARNING,
    ) -> FetchResponse | None:
        return await self.fetch(
            FetchRequest(method="GET", url=url, params=params, headers=dict(headers or {})),
            max_attempts=max_attempts,
            exhausted_level=exhausted_level,
        )

    async def post_json(
        self,
        url: str,
        body: Any,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> FetchResponse | None:
        return await self.fetch(
            FetchRequest(method="POST", url=url, body=body, headers=dict(headers or {}))
        )


def _format_error(error: Exception | None) -> str:
    if error is None:
        return "unknown error"
    cause = error.__cause__
    if cause is not None:
        return f"{error} cause={cause}"
    return str(error) or type(error).__name__


__all__ = [
    "DEFAULT_BACKOFF_SECONDS",
    "DEFAULT_MAX_ATTEMPTS",
    "RetryingFetcher",
    "classify_response",
]
