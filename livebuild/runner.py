"""
Build/run loop for a build group.

The runner builds the group, starts the artifact under its own cancel token
and then waits for either a restart signal from the watcher or shutdown.
A failed build leaves the artifact stopped until the watcher reports the
next change. A run that exits on its own is logged and stays down; only a
restart signal or shutdown moves the runner on.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Optional

from .models import BuildGroup
from .process import CommandExecutor
from .sync import CancelToken, RestartChannel

logger = logging.getLogger(__name__)


class RunnerState(Enum):
    IDLE = "idle"
    BUILDING = "building"
    BUILD_FAILED = "build_failed"
    RUNNING = "running"
    RESTARTING = "restarting"
    STOPPED = "stopped"


class Runner:
    """Owns the build, run and restart cycle of one build group."""

    def __init__(
        self,
        group: BuildGroup,
        channel: RestartChannel,
        token: CancelToken,
        executor: Optional[CommandExecutor] = None,
    ):
        self.group = group
        self.channel = channel
        self.token = token
        self.executor = executor or CommandExecutor()
        self.state = RunnerState.IDLE
        self.builds = 0
        self.runs = 0

    async def build(self) -> bool:
        """Run the build command. Returns True on a zero exit code."""
        spec = self.group.build
        logger.info(f"[{self.group.name}] Building: {spec.describe()} (dir={spec.dir or '.'})")
        start = time.monotonic()

        try:
            code = await self.executor.execute(spec, self.token)
        except OSError as e:
            logger.error(f"[{self.group.name}] Build could not start: {e}")
            return False

        duration = time.monotonic() - start
        if code is None:
            logger.warning(f"[{self.group.name}] Build interrupted after {duration:.2f}s")
            return False
        if code != 0:
            logger.error(f"[{self.group.name}] Build failed with exit code {code} after {duration:.2f}s")
            return False

        logger.info(f"[{self.group.name}] Build succeeded in {duration:.2f}s")
        return True

    async def run_artifact(self, token: CancelToken):
        """Run the artifact until it exits or token is cancelled."""
        spec = self.group.run
        logger.info(f"[{self.group.name}] Starting: {spec.describe()} (dir={spec.dir or '.'})")

        try:
            code = await self.executor.execute(spec, token)
        except OSError as e:
            logger.error(f"[{self.group.name}] Run could not start: {e}")
            return

        if code is None:
            logger.info(f"[{self.group.name}] Run stopped")
        elif code != 0:
            logger.error(f"[{self.group.name}] Run exited with code {code}")
        else:
            logger.info(f"[{self.group.name}] Run completed")

    async def run(self):
        """Build, run and restart until the group is cancelled."""
        logger.info(f"[{self.group.name}] Runner started")

        while not self.token.cancelled:
            self.state = RunnerState.BUILDING
            self.builds += 1

            if not await self.build():
                if self.token.cancelled:
                    break
                self.state = RunnerState.BUILD_FAILED
                logger.warning(f"[{self.group.name}] Waiting for a change before rebuilding")
                if not await self.channel.receive(self.token):
                    break
                continue

            self.state = RunnerState.RUNNING
            self.runs += 1
            run_token = self.token.child(f"{self.group.name}/run-{self.runs}")
            run_task = asyncio.create_task(
                self.run_artifact(run_token), name=f"{self.group.name}-run-{self.runs}"
            )

            try:
                restart = await self.channel.receive(self.token)
            finally:
                run_token.cancel()
                await run_task
                run_token.detach()

            if not restart or self.token.cancelled:
                break

            self.state = RunnerState.RESTARTING
            logger.warning(f"[{self.group.name}] Restarting after change")

        self.state = RunnerState.STOPPED
        logger.info(f"[{self.group.name}] Runner stopped")
