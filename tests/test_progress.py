"""Tests for the single-consumer progress channel."""

from __future__ import annotations

import asyncio

from research_relay.research.progress import ProgressChannel


class TestProgressChannel:
    """Serialized, monotonic delivery to the caller's callback."""

    async def test_sync_callback_receives_events_in_order(self):
        seen = []
        async with ProgressChannel(seen.append) as channel:
            await channel.publish("planning", "start", 5)
            await channel.publish("executing", "working", 50, current_question="Q?")
        assert [(e.stage, e.progress_percent) for e in seen] == [("planning", 5.0), ("executing", 50.0)]
        assert seen[1].current_question == "Q?"

    async def test_async_callback_is_awaited(self):
        seen = []

        async def callback(event):
            await asyncio.sleep(0)
            seen.append(event.message)

        async with ProgressChannel(callback) as channel:
            await channel.publish("planning", "one", 10)
            await channel.publish("planning", "two", 20)
        assert seen == ["one", "two"]

    async def test_percent_never_decreases(self):
        seen = []
        async with ProgressChannel(seen.append) as channel:
            await channel.publish("executing", "a", 60)
            await channel.publish("executing", "b", 40)
            await channel.publish("executing", "c", 70)
        assert [e.progress_percent for e in seen] == [60.0, 60.0, 70.0]
        assert channel.last_percent == 70.0

    async def test_percent_clamped_to_range(self):
        seen = []
        async with ProgressChannel(seen.append) as channel:
            await channel.publish("complete", "done", 150)
        assert seen[0].progress_percent == 100.0

    async def test_callback_never_runs_concurrently(self):
        active = 0
        peak = 0

        async def callback(event):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1

        async with ProgressChannel(callback) as channel:
            await asyncio.gather(*(channel.publish("executing", str(i), i) for i in range(20)))
        assert peak == 1

    async def test_failing_callback_is_logged_not_raised(self, caplog):
        calls = []

        def callback(event):
            calls.append(event)
            raise RuntimeError("observer broke")

        async with ProgressChannel(callback) as channel:
            await channel.publish("planning", "a", 5)
            await channel.publish("planning", "b", 10)
        assert len(calls) == 2
        assert "Progress callback failed" in caplog.text

    async def test_no_callback_is_a_no_op(self):
        async with ProgressChannel(None) as channel:
            await channel.publish("planning", "ignored", 5)
        assert channel.last_percent == 0.0
