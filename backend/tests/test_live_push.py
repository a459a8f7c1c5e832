import asyncio
import json

import pytest

from conftest import pending_events
from services.live_push import (
    ChannelClosedError,
    ChannelState,
    LiveChannel,
    LiveConnectionRegistry,
    format_sse,
)


async def test_subscribe_registers_channel_and_acknowledges(live):
    channel = live.subscribe("usr_a")

    assert live.connection_count("usr_a") == 1
    assert pending_events(channel) == [("connected", "SSE connection established")]


async def test_push_without_connections_is_a_noop(live):
    assert live.push("usr_nobody", "notification", {"title": "Hi"}) == 0
    assert not live.is_registered("usr_nobody")


async def test_push_reaches_every_open_channel(live):
    first = live.subscribe("usr_a")
    second = live.subscribe("usr_a")
    other = live.subscribe("usr_b")
    for channel in (first, second, other):
        pending_events(channel)

    assert live.push("usr_a", "notification", {"title": "Hi"}) == 2

    for channel in (first, second):
        [(event, data)] = pending_events(channel)
        assert event == "notification"
        assert json.loads(data) == {"title": "Hi"}
    assert pending_events(other) == []


async def test_unsubscribe_last_channel_removes_user_entry(live):
    first = live.subscribe("usr_a")
    second = live.subscribe("usr_a")

    live.unsubscribe("usr_a", first)
    assert live.connection_count("usr_a") == 1

    live.unsubscribe("usr_a", second)
    assert not live.is_registered("usr_a")
    # Retrait en double sans effet
    live.unsubscribe("usr_a", second)


async def test_saturated_channel_is_removed_after_push(live):
    channel = live.subscribe("usr_a")  # l'accusé "connected" occupe une place
    capacity = channel._queue.maxsize

    results = [live.push("usr_a", "notification", {"n": i}) for i in range(capacity)]

    assert results[:-1] == [1] * (capacity - 1)
    assert results[-1] == 0
    assert channel.state == ChannelState.CLOSED_BY_ERROR
    assert not live.is_registered("usr_a")


async def test_close_is_terminal_and_removes_once():
    removed = []
    channel = LiveChannel("usr_a", removed.append, timeout_seconds=60)

    assert channel.close(ChannelState.CLOSED_BY_TIMEOUT) is True
    assert channel.close(ChannelState.CLOSED_BY_ERROR) is False

    assert removed == [channel]
    assert channel.state == ChannelState.CLOSED_BY_TIMEOUT
    with pytest.raises(ChannelClosedError):
        channel.send("notification", "{}")


async def test_stream_renders_frames_and_closes_on_disconnect(live):
    channel = live.subscribe("usr_a")
    live.push("usr_a", "notification", {"title": "Hi"})
    frames = channel.stream()

    assert await frames.__anext__() == "event: connected\ndata: SSE connection established\n\n"
    assert await frames.__anext__() == 'event: notification\ndata: {"title": "Hi"}\n\n'

    await frames.aclose()

    assert channel.state == ChannelState.CLOSED_BY_CLIENT
    assert not live.is_registered("usr_a")


async def test_idle_channel_times_out():
    live = LiveConnectionRegistry(timeout_minutes=0.001)
    channel = live.subscribe("usr_a")
    frames = channel.stream()
    await frames.__anext__()  # connected

    with pytest.raises(StopAsyncIteration):
        await frames.__anext__()

    assert channel.state == ChannelState.CLOSED_BY_TIMEOUT
    assert not live.is_registered("usr_a")


async def test_close_all_empties_registry(live):
    live.subscribe("usr_a")
    live.subscribe("usr_b")

    live.close_all()

    assert live.connection_count() == 0


def test_format_sse_splits_multiline_data():
    assert format_sse("notification", "a\nb") == "event: notification\ndata: a\ndata: b\n\n"


async def test_channel_never_read_is_reaped_after_idle_timeout():
    live = LiveConnectionRegistry(timeout_minutes=0.001)
    channel = live.subscribe("usr_a")

    await asyncio.sleep(0.2)

    assert channel.state == ChannelState.CLOSED_BY_TIMEOUT
    assert live.connection_count() == 0


async def test_delivered_frames_keep_channel_alive():
    live = LiveConnectionRegistry(timeout_minutes=0.005)  # 300 ms
    channel = live.subscribe("usr_a")
    frames = channel.stream()

    for i in range(3):
        await asyncio.sleep(0.15)
        live.push("usr_a", "notification", {"n": i})
        await frames.__anext__()

    assert channel.is_open
    await frames.aclose()
