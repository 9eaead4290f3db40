"""Concurrent fan-out with an explicit join."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from threadloom.core.exceptions import ThreadloomError

logger = logging.getLogger("threadloom")


@dataclass
class TaskOutcome:
    """Settled result of one fanned-out call."""

    item: Any
    value: Any = None
    error: Optional[ThreadloomError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def fan_out(func: Callable[[Any], Any], items: Iterable[Any], max_workers: int = 8) -> list[TaskOutcome]:
    """Call func(item) for every item concurrently and wait for all of them.

    All calls are submitted before any is awaited. A ThreadloomError in one
    call is captured in its outcome and does not cancel the others; any other
    exception propagates after the join.

    Returns:
        One TaskOutcome per item, in input order.
    """
    items = list(items)
    if not items:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items)))) as pool:
        futures = [pool.submit(func, item) for item in items]
        # Leaving the block joins every future

    outcomes = []
    for item, future in zip(items, futures):
        try:
            outcomes.append(TaskOutcome(item=item, value=future.result()))
        except ThreadloomError as e:
            outcomes.append(TaskOutcome(item=item, error=e))
    failed = sum(1 for outcome in outcomes if not outcome.ok)
    if failed:
        logger.debug(f"Fan-out finished: {len(outcomes) - failed} ok, {failed} failed")
    return outcomes
