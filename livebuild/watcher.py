"""
Polling file watcher for a build group.

Every heartbeat the group's glob patterns are resolved again and compared
with the last known snapshot. A difference in length or in any per-position
modification time sends one restart signal to the group's runner. Empty
snapshots are never compared, so a directory that briefly disappears does
not cause a restart.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable

from .models import BuildGroup
from .snapshot import FileStat, resolve
from .sync import CancelToken, RestartChannel

logger = logging.getLogger(__name__)


def snapshot_changed(previous: list[FileStat], fresh: list[FileStat]) -> bool:
    """True when the snapshots differ in length or in any paired mtime."""
    if len(previous) != len(fresh):
        return True
    return any(old.mtime_ns != new.mtime_ns for old, new in zip(previous, fresh))


class Watcher:
    """Detects file changes for one build group and notifies its runner."""

    def __init__(
        self,
        group: BuildGroup,
        channel: RestartChannel,
        token: CancelToken,
        resolver: Callable[[Iterable[str]], list[FileStat]] = resolve,
    ):
        self.group = group
        self.channel = channel
        self.token = token
        self.resolver = resolver
        self.memo: list[FileStat] = []
        self.signals_sent = 0

    def detect(self, fresh: list[FileStat]) -> bool:
        """
        Compare a fresh snapshot with the memo.

        Returns True when a restart should be signalled; the memo then holds
        the fresh snapshot. An empty fresh snapshot is ignored and leaves the
        memo alone. An empty memo adopts the fresh snapshot without signalling.
        """
        if not fresh:
            return False
        if not self.memo:
            self.memo = fresh
            return False
        if not snapshot_changed(self.memo, fresh):
            return False
        self.memo = fresh
        return True

    async def tick(self) -> bool:
        """Resolve once and signal the runner on change. Returns True if a signal was delivered."""
        start = time.monotonic()
        fresh = await asyncio.to_thread(self.resolver, self.group.match)
        if not self.detect(fresh):
            return False

        logger.info(
            f"[{self.group.name}] Change detected in {len(fresh)} watched file(s) "
            f"({time.monotonic() - start:.3f}s)"
        )
        delivered = await self.channel.send(self.token)
        if delivered:
            self.signals_sent += 1
        return delivered

    async def run(self):
        """Poll every heartbeat until the group is cancelled."""
        self.memo = await asyncio.to_thread(self.resolver, self.group.match)
        logger.info(
            f"[{self.group.name}] Watching {len(self.memo)} file(s) "
            f"every {self.group.heartbeat:g}s"
        )

        while await self.token.sleep(self.group.heartbeat):
            await self.tick()

        logger.info(f"[{self.group.name}] Watcher stopped")
