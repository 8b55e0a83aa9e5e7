"""Block until a resource reaches a target state.

Every iteration fetches a fresh snapshot, compares its state with the target
and, if necessary, sleeps with capped exponential backoff (3s, 6s, 12s, 24s,
30s, 30s, ...) until the time budget is exhausted.
"""
import logging
import time
from datetime import timedelta
from typing import Callable, TypeVar

import tenacity as tc

from ocean.errors import ResourceNotFoundError, WaitTimeoutError

# Backoff between two polls (seconds).
BASE_DELAY = 3
MAX_DELAY = 30

# Log progress at most once every this many seconds.
PROGRESS_FREQUENCY = 2

# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("ocean")

T = TypeVar("T")


def _mysleep(delay: float):
    """This trivial function exists to mock out the `sleep` call during tests."""
    time.sleep(delay)


def backoff() -> tc.wait_exponential:
    return tc.wait_exponential(multiplier=BASE_DELAY, min=BASE_DELAY, max=MAX_DELAY)


def seconds(timeout: float | timedelta) -> float:
    if isinstance(timeout, timedelta):
        return timeout.total_seconds()
    return float(timeout)


class _Progress:
    """Log the current state at most once every `PROGRESS_FREQUENCY` seconds."""

    def __init__(self, what: str, describe: Callable):
        self.what = what
        self.describe = describe
        self.last_log = time.monotonic()
        self.logged = False

    def on_backoff(self, retry_state: tc.RetryCallState):
        now = time.monotonic()
        if now - self.last_log < PROGRESS_FREQUENCY and self.logged:
            return
        self.last_log, self.logged = now, True

        assert retry_state.outcome is not None
        state = self.describe(retry_state.outcome.result())
        delay = retry_state.next_action.sleep if retry_state.next_action else None
        logit.info(
            f"Waiting for {self.what}: currently <{state}>",
            {"attempt": retry_state.attempt_number, "next_poll": delay},
        )


def poll(
    fetch: Callable[[], T],
    reached: Callable[[T], bool],
    timeout: float | timedelta,
    what: str,
    describe: Callable[[T], str] = str,
) -> T:
    """Return the first result of `fetch` that satisfies `reached`.

    Raise `WaitTimeoutError` if that does not happen within `timeout`.
    Exceptions raised by `fetch` propagate immediately.

    Inputs:
        fetch: Callable
            Returns a fresh snapshot on every call.
        reached: Callable
            Returns `True` if the snapshot is in the desired state.
        timeout: float | timedelta
            Time budget in seconds.
        what: str
            Human readable description for log messages, eg `droplet 1 ACTIVE`.
        describe: Callable
            Returns the human readable state of a snapshot.

    """
    budget = seconds(timeout)
    progress = _Progress(what, describe)

    retryer = tc.Retrying(
        stop=tc.stop_after_delay(budget),
        wait=backoff(),
        retry=tc.retry_if_result(lambda snapshot: not reached(snapshot)),
        before_sleep=progress.on_backoff,
        reraise=True,
        sleep=_mysleep,
    )
    try:
        ret = retryer(fetch)
    except tc.RetryError:
        logit.error(f"Giving up on {what}", {"timeout": budget})
        raise WaitTimeoutError(what, budget) from None

    if progress.logged:
        logit.info(f"Done waiting for {what}: <{describe(ret)}>")
    return ret


def wait_for(adapter, snapshot, state, timeout: float | timedelta):
    """Return a fresh snapshot once the resource has reached `state`.

    Raise `ResourceNotFoundError` if the resource disappears meanwhile.
    """
    what = f"{adapter.label} {snapshot.id} to become {state.name}"
    return poll(
        lambda: adapter.get(snapshot.id),
        lambda live: adapter.state_of(live) == state,
        timeout,
        what,
        lambda live: adapter.state_of(live).name,
    )


def wait_for_destroy(adapter, snapshot, timeout: float | timedelta) -> None:
    """Return once the server no longer knows the resource.

    Resource kinds with an explicit terminal state (eg `DELETED`) also count
    as destroyed once they reach it.
    """
    terminal = adapter.destroyed_state
    what = f"{adapter.label} {snapshot.id} to disappear"
    try:
        poll(
            lambda: adapter.get(snapshot.id),
            lambda live: terminal is not None and adapter.state_of(live) == terminal,
            timeout,
            what,
            lambda live: adapter.state_of(live).name,
        )
    except ResourceNotFoundError:
        pass
