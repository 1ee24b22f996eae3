# ==============================================================================
# Tests for the Progress Channel / Streaming Transport
# ==============================================================================
"""
Unit tests for ProgressChannel, ExamSyncStream and SSE framing.

Tests cover:
- Consumers see every event in order, ending at the terminal event
- result() returns the ScrapeResult or raises the reported error
- History kept for returning alongside the result
- Abandoning the stream cancels the sync and still closes the browser
- Concurrent streams never see each other's events
- Server-sent-events framing
"""

import asyncio
import json

import pytest

from src.portal_sync.channel import ExamSyncStream, ProgressChannel, format_sse
from src.portal_sync.errors import AuthenticationError
from src.portal_sync.models import ProgressEvent, ProgressStatus, ProgressStep

from .conftest import CALENDAR_URL, FakePortal, FakePortalDriver


def _stream(driver, credentials, config, no_delays):
    return ExamSyncStream(
        CALENDAR_URL, credentials, config=config, driver=driver, delays=no_delays
    )


# ==============================================================================
# ProgressChannel
# ==============================================================================


class TestProgressChannel:
    """Queue semantics."""

    async def test_stops_at_terminal_event(self):
        channel = ProgressChannel()
        channel(ProgressEvent(step=ProgressStep.INIT, status=ProgressStatus.STARTED, message="a"))
        channel(ProgressEvent(step=ProgressStep.INIT, status=ProgressStatus.ERROR, message="b"))
        channel(ProgressEvent(step=ProgressStep.AUTH, status=ProgressStatus.STARTED, message="c"))

        received = [event.message async for event in channel]
        assert received == ["a", "b"]

    async def test_finish_unblocks_reader(self):
        channel = ProgressChannel()
        channel.finish()
        assert [event async for event in channel] == []

    def test_closed_channel_drops_events(self):
        channel = ProgressChannel()
        channel.close()
        channel(ProgressEvent(step=ProgressStep.INIT, status=ProgressStatus.STARTED, message="a"))
        assert channel.history == []


# ==============================================================================
# ExamSyncStream
# ==============================================================================


class TestExamSyncStream:
    """Running a sync while relaying its narrative."""

    async def test_streams_full_run(self, driver, credentials, config, no_delays):
        stream = _stream(driver, credentials, config, no_delays)

        events = [event async for event in stream.events()]
        result = await stream.result()

        assert events[0].step is ProgressStep.INIT
        assert events[-1].step is ProgressStep.COMPLETE
        assert events == stream.channel.history
        assert len(result.exams) == 3
        assert driver.closed == 1

    async def test_error_on_both_channels(self, driver, wrong_credentials, config, no_delays):
        stream = _stream(driver, wrong_credentials, config, no_delays)

        events = [event async for event in stream.events()]
        with pytest.raises(AuthenticationError):
            await stream.result()

        assert events[-1].status is ProgressStatus.ERROR
        assert events[-1].step is ProgressStep.AUTH
        assert driver.closed == 1

    async def test_abandoned_stream_cancels_sync(self, credentials, config, no_delays):
        driver = FakePortalDriver(FakePortal(), block_navigation=True)
        stream = _stream(driver, credentials, config, no_delays)

        events = stream.events()
        first = await events.__anext__()
        await events.aclose()

        assert first.step is ProgressStep.INIT
        assert driver.closed == 1
        assert stream.start().cancelled()

    async def test_concurrent_streams_isolated(self, credentials, wrong_credentials, config, no_delays):
        ok = _stream(FakePortalDriver(FakePortal()), credentials, config, no_delays)
        bad = _stream(FakePortalDriver(FakePortal()), wrong_credentials, config, no_delays)

        async def collect(stream):
            return [event async for event in stream.events()]

        ok_events, bad_events = await asyncio.gather(collect(ok), collect(bad))

        assert ok_events[-1].step is ProgressStep.COMPLETE
        assert bad_events[-1].status is ProgressStatus.ERROR
        assert not any(e.status is ProgressStatus.ERROR for e in ok_events)
        with pytest.raises(AuthenticationError):
            await bad.result()

    async def test_sse_frames(self, driver, credentials, config, no_delays):
        stream = _stream(driver, credentials, config, no_delays)

        frames = [frame async for frame in stream.sse()]

        assert frames[0].startswith("id: 1\nevent: progress\ndata: ")
        assert all(frame.endswith("\n\n") for frame in frames)
        last = json.loads(frames[-1].split("data: ", 1)[1])
        assert last["step"] == "complete"
        await stream.result()


# ==============================================================================
# SSE framing
# ==============================================================================


class TestFormatSse:
    """text/event-stream message layout."""

    def test_without_id(self):
        event = ProgressEvent(step=ProgressStep.AUTH, status=ProgressStatus.STARTED, message="Kirjaudutaan")
        frame = format_sse(event)

        assert frame.startswith("event: progress\ndata: ")
        payload = json.loads(frame.removeprefix("event: progress\ndata: "))
        assert payload["step"] == "auth"
        assert payload["status"] == "started"
        assert payload["message"] == "Kirjaudutaan"
        assert "timestamp" in payload

    def test_single_data_line(self):
        event = ProgressEvent(step=ProgressStep.FIND_EXAMS, status=ProgressStatus.ERROR, message="a\nb")
        frame = format_sse(event, 7)
        assert frame.count("data: ") == 1
        assert frame.splitlines()[0] == "id: 7"
