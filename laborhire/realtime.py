"""
Realtime change handling.

``ChangeBus`` owns the realtime channels a feature opens and dispatches each
change to its handler. ``Refresher`` coalesces "something changed, refetch"
signals: any number of ``mark_dirty`` calls made while a refetch is waiting
or running collapse into one more fetch.
"""

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Set

from laborhire.logging_config import log_realtime_event
from laborhire.platform.base import Backend, Binding, ChangeEvent, Subscription

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], Any]


class ChangeBus:
    """Opens realtime channels and routes their changes to handlers.

    Handlers may be plain functions or coroutine functions. A handler that
    raises is logged; the failure never reaches the realtime feed.
    """

    def __init__(self, backend: Backend):
        self.backend = backend
        self._subscriptions: Dict[str, Subscription] = {}
        self._tasks: Set[asyncio.Future] = set()

    @property
    def channels(self) -> Sequence[str]:
        return list(self._subscriptions)

    async def listen(self, channel: str, bindings: Sequence[Binding], handler: ChangeHandler) -> Subscription:
        """Open ``channel`` with ``bindings``; an existing channel of that name is replaced."""
        if channel in self._subscriptions:
            await self.close(channel)

        def dispatch(event: ChangeEvent) -> None:
            log_realtime_event(channel, event.table, event.event_type, id=event.record.get("id"))
            try:
                result = handler(event)
            except Exception:
                logger.exception(f"Realtime handler failed | channel={channel} | table={event.table}")
                return
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(lambda t: self._finish(channel, t))

        subscription = await self.backend.subscribe(channel, bindings, dispatch)
        self._subscriptions[channel] = subscription
        return subscription

    def _finish(self, channel: str, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Realtime handler failed | channel={channel} | error={error!r}")

    async def drain(self) -> None:
        """Wait for async handlers already dispatched to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self, channel: str) -> None:
        subscription = self._subscriptions.pop(channel, None)
        if subscription is not None:
            await self.backend.unsubscribe(subscription)

    async def close_all(self) -> None:
        for channel in list(self._subscriptions):
            await self.close(channel)
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()


class Refresher:
    """Coalescing refetch driven by a dirty counter.

    Each ``mark_dirty`` bumps a version. One drain coroutine at a time waits
    ``delay`` seconds, notes the version, and calls ``fetch``. If the version
    moved while it was fetching, it goes round again; otherwise it exits.
    Fetch errors are logged and not retried.
    """

    def __init__(self, fetch: Callable[[], Awaitable[Any]], delay: float, name: str = "refresh"):
        self.fetch = fetch
        self.delay = delay
        self.name = name
        self.version = 0
        self.fetched_version = 0
        self.fetch_count = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def dirty(self) -> bool:
        return self.version != self.fetched_version

    def mark_dirty(self) -> None:
        self.version += 1
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while True:
            await asyncio.sleep(self.delay)
            target = self.version
            try:
                await self.fetch()
            except Exception:
                logger.exception(f"Refetch failed | refresher={self.name}")
            self.fetch_count += 1
            self.fetched_version = target
            if self.version == target:
                return

    async def settle(self) -> None:
        """Wait until no refetch is pending."""
        while self._task is not None and not self._task.done():
            await self._task

    async def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
