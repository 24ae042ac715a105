"""
Shared fixtures for the livebuild test suite.

Provides build group factories and a scripted executor that stands in for
real child processes so runner and supervisor behaviour can be driven
deterministically.
"""

import asyncio
from typing import Optional

import pytest

from livebuild.models import BuildGroup, CommandSpec
from livebuild.sync import CancelToken


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll predicate until it is true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


def make_group(name: str = "app", match: Optional[list[str]] = None, heartbeat: float = 0.01) -> BuildGroup:
    return BuildGroup(
        name=name,
        match=match or [],
        heartbeat=heartbeat,
        build=CommandSpec(command="build-cmd", args=[name]),
        run=CommandSpec(command="run-cmd", args=[name]),
    )


class FakeExecutor:
    """
    Scripted CommandExecutor.

    Builds return the next code from build_codes (0 once exhausted) and can
    be held on build_gate. Runs either exit at once with run_code or block
    until their token is cancelled.
    """

    def __init__(self, build_codes=None, run_code: Optional[int] = None):
        self.build_codes = list(build_codes or [])
        self.run_code = run_code
        self.build_gate: Optional[asyncio.Event] = None
        self.events: list[tuple[str, str]] = []
        self.active_runs = 0

    def count(self, kind: str, group: Optional[str] = None) -> int:
        return sum(1 for k, g in self.events if k == kind and (group is None or g == group))

    async def execute(self, spec: CommandSpec, token: Optional[CancelToken] = None):
        group = spec.args[0]
        if spec.command == "build-cmd":
            self.events.append(("build", group))
            if self.build_gate is not None:
                await self.build_gate.wait()
            return self.build_codes.pop(0) if self.build_codes else 0

        self.events.append(("run", group))
        if self.run_code is not None:
            self.events.append(("exit", group))
            return self.run_code

        self.active_runs += 1
        try:
            await token.wait()
        finally:
            self.active_runs -= 1
        self.events.append(("stopped", group))
        return None


@pytest.fixture
def group():
    return make_group()


@pytest.fixture
def executor():
    return FakeExecutor()
