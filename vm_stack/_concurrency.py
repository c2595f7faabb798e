"""Cancellation tokens and per-stack mutual exclusion.

The Pulumi engine does not define behaviour for concurrent mutation of one
stack, so lifecycle runs that resolve to the same stack name hold a shared
lock for their whole duration. Runs on different stacks never contend.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from vm_stack._vm_stack_errors import Cancelled

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


class CancelToken:
    """Caller-owned cancellation signal with an optional deadline.

    Parameters
    ----------
    deadline
        ``time.monotonic()`` value after which the token counts as cancelled.

    Examples
    --------
    >>> token = CancelToken()
    >>> token.cancelled
    False
    >>> token.cancel()
    >>> token.cancelled
    True
    """

    def __init__(self, deadline: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = deadline

    @classmethod
    def after(cls, seconds: float) -> CancelToken:
        """Return a token that expires ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds until the deadline, or ``None`` without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; return whether the token fired."""
        remaining = self.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)
        self._event.wait(timeout)
        return self.cancelled

    def raise_if_cancelled(self, action: str) -> None:
        if self.cancelled:
            msg = f"cancelled before {action}"
            raise Cancelled(msg)


@contextmanager
def watch_cancellation(token: CancelToken, on_cancel: Callable[[], object]) -> Iterator[None]:
    """Call ``on_cancel`` once if ``token`` fires while the block runs.

    Examples
    --------
    >>> with watch_cancellation(token, stack.cancel):
    ...     stack.up()
    """
    done = threading.Event()

    def _watch() -> None:
        while not done.is_set():
            if token.wait(POLL_INTERVAL):
                if not done.is_set():
                    try:
                        on_cancel()
                    except Exception:
                        logger.exception("Cancelling the in-flight engine call failed")
                return

    watcher = threading.Thread(target=_watch, name="vm-stack-cancel-watch", daemon=True)
    watcher.start()
    try:
        yield
    finally:
        done.set()
        watcher.join()


class _StackLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class StackLocks:
    """Registry of one lock per stack name.

    An entry lives only while a run holds or waits for it, so the registry
    does not grow as daily stack names roll over.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _StackLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, stack_name: str) -> _StackLock:
        with self._guard:
            entry = self._locks.setdefault(stack_name, _StackLock())
            entry.users += 1
            return entry

    def _checkin(self, stack_name: str, entry: _StackLock) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[stack_name]

    @contextmanager
    def hold(self, stack_name: str, token: CancelToken | None = None) -> Iterator[None]:
        """Hold the lock for ``stack_name``, giving up if ``token`` fires.

        Raises
        ------
        Cancelled
            If ``token`` fires while waiting for another run to finish.
        """
        entry = self._checkout(stack_name)
        try:
            while not entry.lock.acquire(timeout=POLL_INTERVAL):
                if token is not None and token.cancelled:
                    msg = f"cancelled while waiting for stack {stack_name!r}"
                    raise Cancelled(msg)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(stack_name, entry)
