# src/devtaskr/store/change_feed.py

from __future__ import annotations

"""
Change feed plumbing shared by the store backends.

- ChangeFeedHub: in-process fan-out of row-level events to subscriptions.
- PollingChangeFeed: turns periodic (id -> updated_at) snapshots of a remote
  table into insert/update/delete events, for backends without push.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from ..core.ports import ChangeCallback, ChangeEvent, ChangeType, Subscription

logger = logging.getLogger(__name__)

Snapshot = dict[str, str]
# row id -> updated_at (as stored)


class ChangeFeedHub:
    def __init__(self) -> None:
        self._subs: list[Subscription] = []

    def add(self, table: str, events: frozenset[ChangeType], callback: ChangeCallback) -> Subscription:
        sub = Subscription(table=table, events=frozenset(events), callback=callback)
        self._subs.append(sub)
        logger.debug("Change feed subscription added table=%s total=%d", table, len(self._subs))
        return sub

    def remove(self, sub: Subscription) -> None:
        sub.active = False
        with contextlib.suppress(ValueError):
            self._subs.remove(sub)
        logger.debug("Change feed subscription removed table=%s total=%d", sub.table, len(self._subs))

    def count(self, table: str | None = None) -> int:
        return sum(1 for s in self._subs if table is None or s.table == table)

    def publish(self, event: ChangeEvent) -> None:
        for sub in list(self._subs):
            if not sub.active or sub.table != event.table or event.type not in sub.events:
                continue
            try:
                sub.callback(event)
            except Exception:
                # One broken subscriber must not starve the others.
                logger.exception("Change feed callback failed table=%s", event.table)


def diff_snapshots(table: str, before: Snapshot, after: Snapshot) -> list[ChangeEvent]:
    events: list[ChangeEvent] = []
    for row_id, stamp in after.items():
        if row_id not in before:
            events.append(ChangeEvent(table=table, type=ChangeType.INSERT, row_id=row_id))
        elif before[row_id] != stamp:
            events.append(ChangeEvent(table=table, type=ChangeType.UPDATE, row_id=row_id))
    for row_id in before:
        if row_id not in after:
            events.append(ChangeEvent(table=table, type=ChangeType.DELETE, row_id=row_id))
    return events


class PollingChangeFeed:
    """
    Poll `snapshot()` every `interval_seconds` and publish the differences.

    The first snapshot is a baseline and produces no events. A failed poll is
    logged and skipped; the baseline is kept so nothing is lost.
    """

    def __init__(
            self,
            table: str,
            snapshot: Callable[[], Awaitable[Snapshot]],
            publish: Callable[[ChangeEvent], None],
            *,
            interval_seconds: float = 5.0,
    ) -> None:
        self.table = table
        self._snapshot = snapshot
        self._publish = publish
        self._interval = max(0.05, float(interval_seconds))
        self._last: Snapshot | None = None
        self._runner: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def start(self) -> None:
        if self.running:
            return
        try:
            self._last = await self._snapshot()
        except Exception:
            logger.warning("Change feed baseline failed table=%s; starting empty", self.table, exc_info=True)
            self._last = None
        self._runner = asyncio.get_running_loop().create_task(self._run())
        logger.info("Polling change feed started table=%s every %.1fs", self.table, self._interval)

    async def stop(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is None:
            return
        runner.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await runner
        logger.info("Polling change feed stopped table=%s", self.table)

    async def poll_once(self) -> list[ChangeEvent]:
        current = await self._snapshot()
        if self._last is None:
            self._last = current
            return []
        events = diff_snapshots(self.table, self._last, current)
        self._last = current
        for event in events:
            self._publish(event)
        return events

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.poll_once()
            except Exception:
                logger.warning("Change feed poll failed table=%s", self.table, exc_info=True)
