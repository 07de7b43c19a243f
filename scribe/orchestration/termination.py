"""Cancellation tokens and the termination combinator.

A single orchestrated call may be cancelled from two independent sources:
the caller (an external token) and a wall-clock timeout. compose_termination()
merges both into one unified token that every model call observes, and
returns a release function that tears down the timer and the external
subscription exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from scribe.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

CancelCallback = Callable[[str], None]


class CancellationToken:
    """One-shot cancellation flag with a reason and subscriber callbacks."""

    def __init__(self) -> None:
        self._reason: str | None = None
        self._callbacks: list[CancelCallback] = []
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "Cancelled") -> None:
        """Fire the token. Later calls are ignored; the first reason wins."""
        if self._reason is not None:
            return
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Cancellation callback %r failed", callback)

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """Subscribe to cancellation. Returns a function that unsubscribes.

        If the token has already fired the callback runs immediately.
        """
        if self._reason is not None:
            callback(self._reason)
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return remove

    async def wait(self) -> str:
        await self._event.wait()
        return self._reason or "Cancelled"

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise OperationCancelled(self._reason)


def _noop() -> None:
    return None


@dataclass
class TerminationContext:
    """Unified token plus its idempotent release.

    Usable as a context manager so the release runs on every exit path.
    """

    token: CancellationToken | None = None
    _teardown: Callable[[], None] = field(default=_noop, repr=False)
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._teardown()

    def __enter__(self) -> TerminationContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def compose_termination(
    external: CancellationToken | None = None,
    timeout_ms: float | None = None,
) -> TerminationContext:
    """Merge an external token and an optional timeout into one token.

    Must be called from a running event loop when timeout_ms is set.
    """
    if external is None and not timeout_ms:
        return TerminationContext()

    unified = CancellationToken()
    remove_listener: Callable[[], None] | None = None
    timer: asyncio.TimerHandle | None = None

    if external is not None:
        if external.cancelled:
            unified.cancel(external.reason or "Aborted")
        else:
            remove_listener = external.add_callback(unified.cancel)

    if timeout_ms and not unified.cancelled:
        loop = asyncio.get_running_loop()
        timer = loop.call_later(
            timeout_ms / 1000,
            unified.cancel,
            f"Request timed out after {timeout_ms:g}ms",
        )

    def teardown() -> None:
        if timer is not None:
            timer.cancel()
        if remove_listener is not None:
            remove_listener()

    return TerminationContext(token=unified, _teardown=teardown)


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Await *awaitable*, aborting it as soon as *token* fires.

    The in-flight task is cancelled (closing any open HTTP stream) and
    OperationCancelled is raised with the token's reason.
    """
    if token is None:
        return await awaitable

    if token.cancelled:
        # Never started: close a bare coroutine so it does not warn
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelled(token.reason or "Cancelled")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task.done():
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.debug("Cancelled call raised while unwinding", exc_info=True)
    raise OperationCancelled(token.reason or "Cancelled")
