"""Exactly-once cleanup and the interrupt listener that triggers it."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from types import FrameType
from typing import Callable, Iterable

logger = logging.getLogger(__name__)


class ResourceGuard:
    """Runs a release callback at most once, whoever asks first.

    The normal exit path calls :meth:`release`; the signal handler calls
    :meth:`try_release`, which never blocks. Handlers run on the main
    thread, so waiting there for a lock held by the interrupted code would
    never return.
    """

    def __init__(self, release_fn: Callable[[], None]) -> None:
        self._release_fn = release_fn
        self._lock = threading.Lock()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Run the callback if nobody has yet. Returns True for the caller that ran it."""
        with self._lock:
            if self._released:
                return False
            self._released = True
        self._release_fn()
        return True

    def try_release(self) -> bool:
        """Like :meth:`release`, but returns False at once if a release is in progress."""
        if not self._lock.acquire(blocking=False):
            return False
        try:
            if self._released:
                return False
            self._released = True
        finally:
            self._lock.release()
        self._release_fn()
        return True


def signal_exit_code(signum: int) -> int:
    """Conventional shell exit status for death by *signum*."""
    return 128 + int(signum)


def default_signals() -> tuple[signal.Signals, ...]:
    sigs = [signal.SIGINT, signal.SIGTERM]
    if hasattr(signal, "SIGHUP"):
        sigs.append(signal.SIGHUP)
    return tuple(sigs)


class SignalListener:
    """Releases a :class:`ResourceGuard` when an interrupt or terminate arrives.

    Parameters
    ----------
    guard:
        The guard to release on signal.
    signals:
        Signals to listen for. Defaults to SIGINT, SIGTERM (and SIGHUP where
        available).
    exit_fn:
        Called with ``128 + signum`` after cleanup. Defaults to ``sys.exit``.
        Not called when the signal lands while the guard is already being
        released: that release is left to finish and the caller reads
        :attr:`received`.

    Python delivers signals to the main thread only, so handlers can only be
    installed from there. Elsewhere :meth:`start` logs and does nothing; the
    guard is still released by the normal exit path.
    """

    def __init__(
        self,
        guard: ResourceGuard,
        signals: Iterable[int] | None = None,
        exit_fn: Callable[[int], object] = sys.exit,
    ) -> None:
        self._guard = guard
        self._signals = tuple(signals) if signals is not None else default_signals()
        self._exit_fn = exit_fn
        self._previous: dict[int, object] = {}
        self.received: int | None = None

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        self.received = signum
        logger.debug("Received signal %d; cleaning up credential handoff", signum)
        if not self._guard.try_release():
            logger.debug("Cleanup already under way; letting it finish")
            return
        self._exit_fn(signal_exit_code(signum))

    def start(self) -> "SignalListener":
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread; signal cleanup not installed")
            return self
        for sig in self._signals:
            self._previous[sig] = signal.signal(sig, self._handle)
        return self

    def stop(self) -> None:
        for sig, previous in self._previous.items():
            # None means the old handler was not installed from Python
            signal.signal(sig, signal.SIG_DFL if previous is None else previous)  # type: ignore[arg-type]
        self._previous.clear()

    def __enter__(self) -> "SignalListener":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
