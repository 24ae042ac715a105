"""
Cancellation and signalling primitives shared by watchers and runners.

CancelToken forms a tree: cancelling a token cancels every token derived
from it. The supervisor owns the root, each build group gets a child, and
each run attempt gets a grandchild that stops the child process.

RestartChannel is a rendezvous with no buffer. A send completes only when a
receiver takes the signal, so a second send waits for the runner instead of
queueing another restart.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Optional

logger = logging.getLogger(__name__)


class CancelToken:
    """A cancellation signal that propagates from parent to children."""

    def __init__(self, parent: Optional["CancelToken"] = None, name: str = "root"):
        self.name = name
        self._parent = parent
        self._children: list["CancelToken"] = []
        self._event = asyncio.Event()
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self._event.set()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "live"
        return f"<CancelToken {self.name} {state}>"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def child(self, name: Optional[str] = None) -> "CancelToken":
        """Derive a token that is cancelled whenever this one is."""
        return CancelToken(self, name or f"{self.name}/{len(self._children)}")

    def cancel(self):
        """Cancel this token and all tokens derived from it. Safe to call twice."""
        if self._event.is_set():
            return
        self._event.set()
        for child in list(self._children):
            child.cancel()

    def detach(self):
        """Forget this token in its parent once it is no longer needed."""
        if self._parent is not None:
            try:
                self._parent._children.remove(self)
            except ValueError:
                pass
            self._parent = None

    async def wait(self):
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """Sleep for delay seconds. Returns False if cancelled first."""
        if self.cancelled:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def guard(self, aw: Awaitable) -> bool:
        """
        Wait for aw unless this token is cancelled first.

        Returns True when aw finished (its exception, if any, is raised).
        Returns False when the token won; aw is cancelled in that case.
        """
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            elif isinstance(aw, asyncio.Future):
                aw.cancel()
            return False

        fut = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({fut, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not fut.done():
                fut.cancel()

        if fut in done:
            fut.result()
            return True
        return False


class RestartChannel:
    """Zero-capacity handshake carrying restart signals from a watcher to a runner."""

    def __init__(self):
        self._receivers: deque[asyncio.Future] = deque()
        self._arrived = asyncio.Event()

    async def send(self, token: CancelToken) -> bool:
        """Block until a receiver takes the signal. Returns False if cancelled first."""
        while not token.cancelled:
            while self._receivers:
                waiter = self._receivers.popleft()
                if not waiter.done():
                    waiter.set_result(None)
                    return True
            self._arrived.clear()
            if not await token.guard(self._arrived.wait()):
                return False
        return False

    async def receive(self, token: CancelToken) -> bool:
        """Block until a sender delivers a signal. Returns False if cancelled first."""
        if token.cancelled:
            return False

        waiter = asyncio.get_running_loop().create_future()
        self._receivers.append(waiter)
        self._arrived.set()
        try:
            return await token.guard(waiter)
        finally:
            if not waiter.done():
                waiter.cancel()
            try:
                self._receivers.remove(waiter)
            except ValueError:
                pass
