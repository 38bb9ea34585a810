"""Tests for cancellable sleeping, pacing and the event channel."""
from __future__ import annotations

import random

import pytest

from jobpilot.errors import WorkflowCancelled
from jobpilot.events import EventChannel, EventType
from jobpilot.timing import HumanPacer, Sleeper


def test_sleep_is_sliced_by_poll_interval():
    slept = []
    Sleeper(sleep_fn=slept.append, poll_interval=1.0).sleep(2.5)
    assert slept == [1.0, 1.0, 0.5]


def test_zero_sleep_only_checks():
    slept = []
    Sleeper(sleep_fn=slept.append).sleep(0)
    assert slept == []


def test_cancellation_observed_mid_wait():
    slept = []
    checks = iter([False, False, True])
    sleeper = Sleeper(lambda: next(checks), poll_interval=1.0, sleep_fn=slept.append)
    with pytest.raises(WorkflowCancelled):
        sleeper.sleep(60)
    assert slept == [1.0, 1.0]


def test_cancelled_before_waiting():
    slept = []
    with pytest.raises(WorkflowCancelled):
        Sleeper(lambda: True, sleep_fn=slept.append).sleep(5)
    assert slept == []


def test_poll_interval_must_be_positive():
    with pytest.raises(ValueError):
        Sleeper(poll_interval=0)


def test_pacer_stays_within_bounds():
    slept = []
    pacer = HumanPacer(1.5, 3.0, Sleeper(sleep_fn=slept.append, poll_interval=10), random.Random(7))
    delays = [pacer.pause() for _ in range(20)]
    assert all(1.5 <= d <= 3.0 for d in delays)
    assert slept == delays


@pytest.mark.parametrize("bounds", [(-1, 2), (3, 1)])
def test_pacer_rejects_bad_bounds(bounds):
    with pytest.raises(ValueError):
        HumanPacer(*bounds)


class TestEventChannel:
    def test_sequence_and_filtering(self):
        channel = EventChannel("s1")
        channel.emit(EventType.DISCOVERED, job_id="a")
        channel.emit(EventType.MATCHED, job_id="a", score=90.0)
        channel.emit(EventType.PROGRESS, processed=1, total=1)

        events = channel.events()
        assert [e.seq for e in events] == [1, 2, 3]
        assert [e.type for e in events] == [EventType.DISCOVERED, EventType.MATCHED, EventType.PROGRESS]
        assert channel.events(EventType.MATCHED)[0].payload == {"job_id": "a", "score": 90.0}
        assert all(e.session_id == "s1" for e in events)

    def test_failing_listener_does_not_block_others(self):
        channel = EventChannel("s1")
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        channel.subscribe(broken)
        channel.subscribe(seen.append)
        channel.emit(EventType.ERROR, message="x")
        assert [e.type for e in seen] == [EventType.ERROR]

    def test_drain(self):
        channel = EventChannel()
        channel.emit(EventType.PROGRESS)
        assert len(channel.drain()) == 1
        assert channel.events() == []
