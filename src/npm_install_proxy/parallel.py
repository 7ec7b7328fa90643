"""Bounded concurrency helpers."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

T = TypeVar("T")


@dataclass
class TaskResult:
    """Result of one item of a bounded fan-out."""
    name: str
    success: bool
    duration: float
    result: Any = None
    error: Optional[str] = None
    exception: Optional[BaseException] = None


async def run_bounded(
    items: Iterable[T],
    func: Callable[[T], Awaitable[Any]],
    max_concurrent: int = 4,
    name: Callable[[T], str] = str,
) -> list[TaskResult]:
    """
    Run ``func(item)`` for every item with at most *max_concurrent* in flight.

    Failures are captured in the matching ``TaskResult`` instead of being
    raised, so one bad item never aborts the rest.

    Returns:
        Results in the same order as *items*.
    """
    if max_concurrent < 1:
        raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")

    semaphore = asyncio.Semaphore(max_concurrent)

    async def run_one(item: T) -> TaskResult:
        async with semaphore:
            start = time.monotonic()
            try:
                result = await func(item)
                return TaskResult(
                    name=name(item),
                    success=True,
                    duration=time.monotonic() - start,
                    result=result,
                )
            except Exception as e:
                return TaskResult(
                    name=name(item),
                    success=False,
                    duration=time.monotonic() - start,
                    error=str(e),
                    exception=e,
                )

    return list(await asyncio.gather(*(run_one(item) for item in items)))


def format_results(results: list[TaskResult]) -> str:
    """Format fan-out results for display."""
    lines = []
    successful = [r for r in results if r.success]
    failed = [r for r in results if not r.success]

    lines.append(f"Completed: {len(successful)}/{len(results)} tasks")

    if failed:
        lines.append("\nFailed:")
        for r in failed:
            lines.append(f"  ✗ {r.name}: {r.error}")

    return "\n".join(lines)
