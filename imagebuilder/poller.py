"""Wait for the installer VM to reach a lifecycle state."""

from __future__ import annotations

import threading
import time
from typing import Optional

from imagebuilder.exceptions import PollCancelled, PollTimeout
from imagebuilder.models import PollSettings
from imagebuilder.utils import log


def wait_for_state(
    inventory,
    uuid: str,
    settings: PollSettings,
    cancel: Optional[threading.Event] = None,
) -> int:
    """Block until ``uuid`` reports ``settings.target_state``; returns the number of queries.

    Query failures propagate to the caller. A ``timeout`` of 0 never gives up;
    in that case only ``cancel`` ends the wait early.
    """
    target = settings.target_state
    deadline = time.monotonic() + settings.timeout if settings.timeout > 0 else None
    interval = settings.interval
    polls = 0
    last_state: Optional[str] = None

    log("INFO", f"Waiting for VM {uuid} to reach '{target}'")
    while True:
        if cancel is not None and cancel.is_set():
            raise PollCancelled(f"Stopped waiting for VM {uuid} (last state: {last_state or 'unknown'})")
        state = inventory.state(uuid)
        polls += 1
        if state != last_state:
            log("DEBUG", f"VM {uuid} state: {state}")
            last_state = state
        if state == target:
            break
        if deadline is not None and time.monotonic() >= deadline:
            raise PollTimeout(
                f"VM {uuid} did not reach '{target}' within {int(settings.timeout)}s (last state: {state})"
            )
        _wait(interval, cancel)
        interval = min(interval * settings.backoff, settings.max_interval)

    log("SUCCESS", f"VM {uuid} is {target} after {polls} checks")
    if settings.settle > 0:
        log("INFO", f"Letting storage settle for {settings.settle:g}s")
        _wait(settings.settle, cancel)
    return polls


def _wait(seconds: float, cancel: Optional[threading.Event]) -> None:
    """Sleep for ``seconds``, waking early once ``cancel`` is set."""
    if cancel is None:
        time.sleep(seconds)
    else:
        cancel.wait(seconds)
