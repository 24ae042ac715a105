"""
Command execution for build and run steps.

Both steps share one shape: a command, its arguments, a working directory
and environment overrides, with the child inheriting our stdout/stderr.
Long-running commands are tied to a CancelToken; cancelling the token stops
the child and everything it spawned.
"""

import asyncio
import logging
import os
from typing import Optional

import psutil

from .models import CommandSpec
from .sync import CancelToken

logger = logging.getLogger(__name__)


def _process_tree(pid: int) -> list[psutil.Process]:
    """The process and all of its descendants, parent first."""
    try:
        parent = psutil.Process(pid)
        return [parent] + parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return []


def _signal_all(procs: list[psutil.Process], method: str):
    for proc in procs:
        try:
            getattr(proc, method)()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass


class CommandExecutor:
    """Runs CommandSpecs as child processes."""

    def __init__(self, stop_timeout: float = 5.0):
        self.stop_timeout = stop_timeout

    async def start(self, spec: CommandSpec) -> asyncio.subprocess.Process:
        """Spawn the command. Raises OSError if it cannot be started."""
        env = os.environ.copy()
        env.update(spec.env_overrides())

        process = await asyncio.create_subprocess_exec(
            spec.command,
            *spec.args,
            cwd=spec.dir or None,
            env=env,
            start_new_session=True,  # Own process group, shielded from our terminal's Ctrl-C
        )
        logger.debug(f"Started {spec.describe()} with PID {process.pid}")
        return process

    async def execute(self, spec: CommandSpec, token: Optional[CancelToken] = None) -> Optional[int]:
        """
        Run the command to completion and return its exit code.

        When token is cancelled before the command exits, the process tree is
        terminated and None is returned.
        """
        process = await self.start(spec)

        if token is None:
            return await process.wait()

        try:
            finished = await token.guard(process.wait())
        except asyncio.CancelledError:
            await self.terminate(process)
            raise

        if finished:
            return process.returncode

        await self.terminate(process)
        return None

    async def terminate(self, process: asyncio.subprocess.Process):
        """Stop a process and its descendants, gracefully first (SIGTERM)."""
        if process.returncode is not None:
            return

        procs = _process_tree(process.pid)
        _signal_all(procs, "terminate")

        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"PID {process.pid} did not stop gracefully, forcing kill")
            _signal_all(procs, "kill")
            await process.wait()

        # Descendants that outlived the parent
        descendants = [proc for proc in procs[1:] if proc.is_running()]
        if descendants:
            _, alive = await asyncio.to_thread(psutil.wait_procs, descendants, timeout=self.stop_timeout)
            _signal_all(alive, "kill")

        logger.debug(f"PID {process.pid} stopped with exit code {process.returncode}")
