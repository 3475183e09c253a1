"""Tests for imagebuilder.poller module."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, call, patch

import pytest

from imagebuilder.exceptions import CommandError, PollCancelled, PollTimeout
from imagebuilder.models import PollSettings
from imagebuilder.poller import _wait, wait_for_state


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    fake = FakeClock()
    with patch("imagebuilder.poller.time.monotonic", side_effect=fake.monotonic), patch(
        "imagebuilder.poller._wait", side_effect=lambda seconds, cancel: fake.sleep(seconds)
    ):
        yield fake


def _inventory(*states):
    inventory = MagicMock()
    inventory.state.side_effect = list(states)
    return inventory


class TestWaitForState:
    def test_stops_once_target_state_seen(self, clock):
        inventory = _inventory("running", "running", "stopped")
        settings = PollSettings(interval=1.0, max_interval=1.0, timeout=60.0, settle=10.0)

        polls = wait_for_state(inventory, "vm-1", settings)

        assert polls == 3
        inventory.state.assert_has_calls([call("vm-1")] * 3)
        assert clock.sleeps == [1.0, 1.0, 10.0]

    def test_already_stopped_only_settles(self, clock):
        inventory = _inventory("stopped")
        settings = PollSettings(timeout=60.0, settle=10.0)
        assert wait_for_state(inventory, "vm-1", settings) == 1
        assert clock.sleeps == [10.0]

    def test_no_settle_when_zero(self, clock):
        inventory = _inventory("stopped")
        wait_for_state(inventory, "vm-1", PollSettings(settle=0.0))
        assert clock.sleeps == []

    def test_times_out_when_never_stopped(self, clock):
        inventory = MagicMock()
        inventory.state.return_value = "running"
        settings = PollSettings(interval=1.0, max_interval=1.0, timeout=10.0, settle=10.0)

        with pytest.raises(PollTimeout, match="within 10s"):
            wait_for_state(inventory, "vm-1", settings)

        assert inventory.state.call_count == 11
        assert clock.sleeps == [1.0] * 10

    def test_unbounded_wait_continues_until_cancelled(self, clock):
        inventory = MagicMock()
        inventory.state.return_value = "running"
        cancel = threading.Event()
        settings = PollSettings(interval=1.0, max_interval=1.0, timeout=0.0, settle=10.0)

        def _sleep(seconds, cancel_event):
            clock.sleep(seconds)
            if len(clock.sleeps) == 500:
                cancel_event.set()

        with patch("imagebuilder.poller._wait", side_effect=_sleep):
            with pytest.raises(PollCancelled, match="last state: running"):
                wait_for_state(inventory, "vm-1", settings, cancel=cancel)

        assert inventory.state.call_count == 500
        assert clock.now == 500.0

    def test_cancel_before_first_query(self, clock):
        inventory = MagicMock()
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(PollCancelled):
            wait_for_state(inventory, "vm-1", PollSettings(), cancel=cancel)
        inventory.state.assert_not_called()

    def test_backoff_is_capped(self, clock):
        inventory = _inventory("running", "running", "running", "running", "running", "stopped")
        settings = PollSettings(interval=1.0, max_interval=5.0, backoff=2.0, timeout=0.0, settle=0.0)
        wait_for_state(inventory, "vm-1", settings)
        assert clock.sleeps == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_query_failure_propagates(self, clock):
        inventory = MagicMock()
        inventory.state.side_effect = CommandError(["vmadm", "get", "vm-1"], 1, "vmadm: error")
        with pytest.raises(CommandError):
            wait_for_state(inventory, "vm-1", PollSettings())
        assert clock.sleeps == []

    def test_custom_target_state(self, clock):
        inventory = _inventory("stopped", "running")
        settings = PollSettings(target_state="running", settle=0.0)
        assert wait_for_state(inventory, "vm-1", settings) == 2


class TestWait:
    def test_sleeps_without_cancel_event(self):
        with patch("imagebuilder.poller.time.sleep") as mock_sleep:
            _wait(2.5, None)
        mock_sleep.assert_called_once_with(2.5)

    def test_returns_at_once_when_cancelled(self):
        cancel = threading.Event()
        cancel.set()
        with patch("imagebuilder.poller.time.sleep") as mock_sleep:
            _wait(3600.0, cancel)
        mock_sleep.assert_not_called()

    def test_waits_on_cancel_event(self):
        cancel = MagicMock()
        _wait(5.0, cancel)
        cancel.wait.assert_called_once_with(5.0)
