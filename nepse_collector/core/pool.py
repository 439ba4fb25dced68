"""Bounded fan-out over independent work items with per-item fault isolation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Iterable, List, TypeVar

from ..providers.base import AuthError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class WorkOutcome(Generic[T, R]):
    """Result of processing the item at ``index`` of the submitted sequence."""

    index: int
    item: T
    result: R | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class PoolSummary(Generic[T, R]):
    """Every outcome of a pool run, ordered by input position."""

    outcomes: List[WorkOutcome[T, R]] = field(default_factory=list)

    @property
    def results(self) -> list[R | None]:
        return [outcome.result for outcome in self.outcomes if outcome.ok]

    @property
    def failures(self) -> list[WorkOutcome[T, R]]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    def __len__(self) -> int:
        return len(self.outcomes)


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    limit: int = 5,
    describe: Callable[[T], str] | None = None,
) -> PoolSummary[T, R]:
    """Invoke ``worker`` once per item with at most ``limit`` calls in flight.

    A failing item is logged and recorded without disturbing the others. An
    :class:`AuthError` cancels the remaining work and propagates.
    """

    entries = list(items)
    limit = max(1, int(limit))
    outcomes: list[WorkOutcome[T, R] | None] = [None] * len(entries)

    def _label(index: int, item: T) -> str:
        if describe is None:
            return f"item #{index}"
        try:
            return f"item #{index} ({describe(item)})"
        except Exception:  # pragma: no cover - labelling must never fail the item
            return f"item #{index}"

    async def _guarded(index: int, item: T) -> None:
        try:
            result = await worker(item)
        except AuthError:
            raise
        except Exception as exc:
            LOGGER.warning("Failed to process %s: %s", _label(index, item), exc)
            error = str(exc) or type(exc).__name__
            outcomes[index] = WorkOutcome(index=index, item=item, error=error)
            return
        outcomes[index] = WorkOutcome(index=index, item=item, result=result)

    if limit == 1 or len(entries) <= 1:
        for index, item in enumerate(entries):
            await _guarded(index, item)
    else:
        semaphore = asyncio.Semaphore(limit)

        async def _gated(index: int, item: T) -> None:
            async with semaphore:
                await _guarded(index, item)

        tasks = [asyncio.ensure_future(_gated(index, item)) for index, item in enumerate(entries)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    summary: PoolSummary[T, R] = PoolSummary(
        outcomes=[outcome for outcome in outcomes if outcome is not None]
    )
    if summary.failures:
        LOGGER.info(
            "Processed %s items: %s succeeded, %s failed",
            len(entries),
            len(entries) - len(summary.failures),
            len(summary.failures),
        )
    return summary


__all__ = ["PoolSummary", "WorkOutcome", "run_bounded"]
