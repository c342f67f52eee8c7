"""Tests for live fanout and SSE frame encoding."""

from __future__ import annotations

import asyncio

from tooltrace.sse.broadcaster import Broadcaster, encode_comment, encode_frame


class TestFrames:
    def test_event_and_data_lines(self):
        frame = encode_frame({"tool": "exec"}, event="line").decode()
        assert frame == 'event: line\ndata: {"tool":"exec"}\n\n'

    def test_multiline_payload_split_across_data_lines(self):
        frame = encode_frame("first\nsecond").decode()
        assert frame == "data: first\ndata: second\n\n"

    def test_comment(self):
        assert encode_comment("connected").decode() == ": connected\n\n"


class TestBroadcaster:
    def test_publish_reaches_every_observer(self):
        b = Broadcaster()
        a, c = b.subscribe(), b.subscribe()
        b.publish({"n": 1})
        b.publish({"n": 2})
        for sub in (a, c):
            assert sub.queue.get_nowait() == {"n": 1}
            assert sub.queue.get_nowait() == {"n": 2}

    def test_unsubscribed_observer_gets_nothing(self):
        b = Broadcaster()
        sub = b.subscribe()
        b.unsubscribe(sub)
        b.publish({"n": 1})
        assert sub.queue.empty()
        assert len(b) == 0

    def test_unsubscribe_twice_is_harmless(self):
        b = Broadcaster()
        sub = b.subscribe()
        b.unsubscribe(sub)
        b.unsubscribe(sub)
        assert len(b) == 0

    def test_stalled_observer_is_dropped_silently(self):
        b = Broadcaster(queue_size=2)
        slow, healthy = b.subscribe(), b.subscribe()
        b.publish({"n": 1})
        b.publish({"n": 2})
        healthy.queue.get_nowait()
        healthy.queue.get_nowait()

        b.publish({"n": 3})

        assert len(b) == 1
        assert slow.closed
        assert slow.queue.get_nowait() is None
        assert healthy.queue.get_nowait() == {"n": 3}

    def test_close_all_ends_streams(self):
        b = Broadcaster()
        sub = b.subscribe()

        async def reader():
            return await sub.get()

        async def scenario():
            task = asyncio.create_task(reader())
            await asyncio.sleep(0)
            b.close_all()
            return await asyncio.wait_for(task, 1)

        assert asyncio.run(scenario()) is None
        assert len(b) == 0
