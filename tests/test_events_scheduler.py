"""
Unit tests for event channels and periodic tickers
Run with: pytest tests/
"""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from events import EventChannel
from scheduler import Ticker


# ── EventChannel ─────────────────────────────────────────────────────────────
def test_late_subscriber_gets_last_value():
    channel = EventChannel("grade")
    channel.publish("B")
    channel.publish("A")

    seen = []
    channel.subscribe(seen.append)
    assert seen == ["A"]


def test_no_replay_before_first_publish():
    channel = EventChannel("grade")
    seen = []
    channel.subscribe(seen.append)
    assert seen == []
    assert channel.has_value is False
    assert channel.value is None


def test_equal_values_are_not_republished():
    channel = EventChannel("grade", initial="A")
    seen = []
    channel.subscribe(seen.append)

    assert channel.publish("A") is False
    assert channel.publish("C") is True
    assert seen == ["A", "C"]


def test_unsubscribe():
    channel = EventChannel("grade")
    seen = []
    unsubscribe = channel.subscribe(seen.append)
    unsubscribe()
    unsubscribe()

    channel.publish("A")
    assert seen == []
    assert len(channel) == 0


def test_broken_subscriber_does_not_block_others():
    channel = EventChannel("grade")
    seen = []

    def broken(value):
        raise RuntimeError("nope")

    channel.subscribe(broken)
    channel.subscribe(seen.append)
    channel.publish("A")
    assert seen == ["A"]


# ── Ticker ───────────────────────────────────────────────────────────────────
def test_ticker_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        Ticker("bad", 0, lambda: None)


@pytest.mark.asyncio
async def test_ticker_runs_until_stopped():
    calls = []
    ticker = Ticker("count", 0.01, lambda: calls.append(1))

    ticker.start()
    assert ticker.running
    await asyncio.sleep(0.055)
    await ticker.stop()

    count = len(calls)
    assert count >= 3
    assert not ticker.running
    await asyncio.sleep(0.03)
    assert len(calls) == count


@pytest.mark.asyncio
async def test_ticker_awaits_async_callbacks_and_survives_errors():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    ticker = Ticker("flaky", 0.01, flaky, run_immediately=True)
    ticker.start()
    await asyncio.sleep(0.035)
    await ticker.stop()

    assert len(calls) >= 2
    assert ticker.ticks == len(calls)


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    ticker = Ticker("idle", 1, lambda: None)
    await ticker.stop()
    assert not ticker.running
