"""
Supervisor wiring for build groups.

Creates one watcher and one runner per selected build group, connected by a
private restart channel and parented to a single root cancel token. Stopping
the supervisor cancels the root token; every group then unwinds on its own
and the supervisor returns once all of them have finished.
"""

import asyncio
import logging
import signal
from typing import Optional

from .config import Settings
from .models import BuildGroup, ProjectConfig
from .process import CommandExecutor
from .runner import Runner
from .sync import CancelToken, RestartChannel
from .watcher import Watcher

logger = logging.getLogger(__name__)


class GroupUnit:
    """The watcher/runner pair of one build group."""

    def __init__(self, group: BuildGroup, root: CancelToken, executor: CommandExecutor):
        self.group = group
        self.token = root.child(group.name)
        self.channel = RestartChannel()
        self.watcher = Watcher(group, self.channel, self.token)
        self.runner = Runner(group, self.channel, self.token, executor)

    async def _guarded(self, role: str, coro):
        try:
            await coro
        except Exception:
            logger.exception(f"[{self.group.name}] {role} crashed")
            # The pair is useless without its partner
            self.token.cancel()

    def tasks(self) -> list[asyncio.Task]:
        return [
            asyncio.create_task(self._guarded("Watcher", self.watcher.run()), name=f"{self.group.name}-watch"),
            asyncio.create_task(self._guarded("Runner", self.runner.run()), name=f"{self.group.name}-run"),
        ]


class Supervisor:
    """Runs every selected build group until stopped."""

    def __init__(
        self,
        project: ProjectConfig,
        settings: Optional[Settings] = None,
        names: Optional[list[str]] = None,
        executor: Optional[CommandExecutor] = None,
    ):
        self.settings = settings or Settings()
        self.groups = project.select_groups(names)
        self.token = CancelToken()
        self.executor = executor or CommandExecutor(stop_timeout=self.settings.stop_timeout)
        self.units: list[GroupUnit] = []

    def stop(self):
        """Cancel the root token. Safe to call more than once."""
        if not self.token.cancelled:
            logger.info("Shutting down build groups...")
        self.token.cancel()

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Stop on SIGINT/SIGTERM."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no signal handler support
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self.stop))

    async def run(self):
        """Start all groups and wait until each has terminated."""
        self.units = [GroupUnit(group, self.token, self.executor) for group in self.groups]
        tasks = [task for unit in self.units for task in unit.tasks()]
        logger.info(f"Supervising {len(self.units)} build group(s): {', '.join(g.name for g in self.groups)}")

        try:
            await asyncio.gather(*tasks)
        finally:
            self.stop()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("All build groups stopped")
