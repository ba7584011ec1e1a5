"""Single-consumer progress channel.

Concurrent executor tasks publish into a bounded queue; one consumer task
drains it and calls the caller's callback, so the callback never runs
concurrently with itself and percentages never go backwards.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Union

from ..models.research import ResearchFinding, ResearchProgress
from ..types import ResearchStage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ResearchProgress], Union[None, Awaitable[None]]]

QUEUE_SIZE = 64


class ProgressChannel:
    """Async context manager owning the queue and its consumer task.

    Usage::

        async with ProgressChannel(callback) as progress:
            await progress.publish("planning", "Decomposing query", 10)
    """

    def __init__(self, callback: ProgressCallback | None, *, maxsize: int = QUEUE_SIZE) -> None:
        self._callback = callback
        self._queue: asyncio.Queue[ResearchProgress | None] = asyncio.Queue(maxsize=maxsize)
        self._consumer: asyncio.Task[None] | None = None
        self._last_percent = 0.0

    @property
    def last_percent(self) -> float:
        return self._last_percent

    async def __aenter__(self) -> ProgressChannel:
        if self._callback is not None:
            self._consumer = asyncio.create_task(self._drain())
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        if self._consumer is None:
            return
        await self._queue.put(None)
        await self._consumer
        self._consumer = None

    async def publish(
        self,
        stage: ResearchStage,
        message: str,
        percent: float,
        *,
        current_question: str | None = None,
        findings: list[ResearchFinding] | None = None,
    ) -> None:
        if self._consumer is None:
            return
        await self._queue.put(ResearchProgress(
            stage=stage,
            message=message,
            progress_percent=max(0.0, min(percent, 100.0)),
            current_question=current_question,
            findings=findings,
        ))

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            # clamp so callers only ever observe non-decreasing percentages
            if event.progress_percent < self._last_percent:
                event = event.model_copy(update={"progress_percent": self._last_percent})
            self._last_percent = event.progress_percent
            try:
                result = self._callback(event)  # type: ignore[misc]
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Progress callback failed for stage %s", event.stage, exc_info=True)
