"""Live progress transport for one sync invocation.

ProgressChannel is a per-invocation queue used as the pipeline's progress
sink; ExamSyncStream runs the pipeline in a task and relays its events to a
consumer (e.g. a server-sent-events response). A consumer that stops reading
cancels the pipeline, which still closes its browser session.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import suppress
from typing import Any

from src.portal_sync.logging import get_logger
from src.portal_sync.models import Credential, ProgressEvent, ScrapeResult, SessionState
from src.portal_sync.pipeline import run_exam_sync

log = get_logger(__name__)


class ProgressChannel:
    """Append-only stream of ProgressEvents that ends at the terminal event.

    Instances are callable so they can be passed directly as ``on_progress``.
    ``history`` keeps every event delivered, for returning alongside the result.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self.history: list[ProgressEvent] = []
        self.closed = False

    def __call__(self, event: ProgressEvent) -> None:
        if self.closed:
            log.debug("progress_dropped", step=event.step.value, status=event.status.value)
            return
        self.history.append(event)
        self._queue.put_nowait(event)

    def close(self) -> None:
        self.closed = True

    def finish(self) -> None:
        """Unblock readers once the producer has stopped, terminal event or not."""
        self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
            if event.is_terminal:
                return


def format_sse(event: ProgressEvent, event_id: int | None = None) -> str:
    """Frame one event as a server-sent-events message."""
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append("event: progress")
    lines.append(f"data: {event.model_dump_json()}")
    return "\n".join(lines) + "\n\n"


class ExamSyncStream:
    """Runs one exam sync and streams its progress.

    Usage::

        stream = ExamSyncStream(url, Credential(username=..., password=...))
        async for event in stream.events():
            ...
        result = await stream.result()
    """

    def __init__(
        self,
        base_url: str,
        credentials: Credential,
        cached_session: SessionState | None = None,
        **options: Any,
    ) -> None:
        self.base_url = base_url
        self.credentials = credentials
        self.cached_session = cached_session
        self.options = options
        self.channel = ProgressChannel()
        self._task: asyncio.Task[ScrapeResult] | None = None

    def start(self) -> "asyncio.Task[ScrapeResult]":
        if self._task is None:
            self._task = asyncio.create_task(
                run_exam_sync(
                    self.base_url,
                    self.credentials,
                    self.cached_session,
                    self.channel,
                    **self.options,
                )
            )
            self._task.add_done_callback(lambda _: self.channel.finish())
        return self._task

    async def events(self) -> AsyncIterator[ProgressEvent]:
        task = self.start()
        finished = False
        try:
            async for event in self.channel:
                finished = event.is_terminal
                yield event
        finally:
            self.channel.close()
            if not finished and not task.done():
                log.info("exam_sync_abandoned")
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    async def sse(self) -> AsyncIterator[str]:
        """Events framed for a text/event-stream response."""
        event_id = 0
        async for event in self.events():
            event_id += 1
            yield format_sse(event, event_id)

    async def result(self) -> ScrapeResult:
        """Wait for the pipeline; raises the same error the terminal event reported."""
        return await self.start()
