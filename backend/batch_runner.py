"""
Bounded-concurrency, cancellable slice scheduler.

Items are processed in fixed-size slices. Every operation in a slice is
started at once and the whole slice is awaited before the next one is
scheduled. The cancellation token is checked before each slice; once it is
set no further slices start, while a slice already dispatched runs to
completion and reports normally.

Results and progress callbacks follow completion order within a slice.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cooperative cancellation signal passed explicitly through batch calls.

    Child tokens observe their parent's cancellation, so cancelling an outer
    run also stops any nested batch started with a child token, while
    cancelling a child leaves the parent untouched.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._parent = parent
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._parent is not None and self._parent.cancelled

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)


@dataclass
class BatchOutcome:
    """Results collected by one BatchRunner.run() call."""
    total: int
    results: list = field(default_factory=list)
    cancelled: bool = False

    @property
    def completed(self) -> int:
        return len(self.results)


ProgressCallback = Callable[[Any, int, int], Any]


class BatchRunner:
    def __init__(self, concurrency: int, name: str = "batch"):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.name = name

    async def run(
        self,
        items: Iterable[Any],
        operation: Callable[[Any], Awaitable[Any]],
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> BatchOutcome:
        """
        Apply operation to every item, one slice at a time.

        Args:
            items: Inputs to process
            operation: Coroutine function called once per item
            on_progress: Called as on_progress(result, index, total) for each
                completed item, index being the 1-based cumulative count. May be
                a plain function or a coroutine function.
            token: Cancellation token checked before every slice

        Returns:
            BatchOutcome with results in completion order

        Raises:
            Whatever operation raises; the remaining tasks of that slice are
            cancelled first. Operations meant to be used here should report
            failures as values instead.
        """
        pending = list(items)
        outcome = BatchOutcome(total=len(pending))

        for start in range(0, len(pending), self.concurrency):
            if token is not None and token.cancelled:
                outcome.cancelled = True
                logger.info(
                    "[BATCH] %s cancelled after %s/%s item(s)",
                    self.name, outcome.completed, outcome.total,
                )
                break

            chunk = pending[start:start + self.concurrency]
            tasks = [asyncio.ensure_future(operation(item)) for item in chunk]
            try:
                for next_done in asyncio.as_completed(tasks):
                    result = await next_done
                    outcome.results.append(result)
                    if on_progress is not None:
                        reported = on_progress(result, outcome.completed, outcome.total)
                        if inspect.isawaitable(reported):
                            await reported
            except BaseException:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                raise

            logger.debug("[BATCH] %s progress %s/%s", self.name, outcome.completed, outcome.total)

        return outcome
