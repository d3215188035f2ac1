import asyncio
from enum import Enum
from typing import Any, Callable, List, Optional, TypeVar

import structlog

from devsim.lib.context import SimulatorContext

log = structlog.get_logger()

T = TypeVar("T")


class LoopState(Enum):
    IDLE = "IDLE"
    SENDING = "SENDING"
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    TIMEOUT = "TIMEOUT"
    SLEEPING = "SLEEPING"
    STOPPED = "STOPPED"


class ProtocolLoop:
    """
    One protocol task: Idle -> Sending -> Awaiting-Response/Timeout -> Sleeping -> Idle.

    Subclasses implement run_once(), which performs a single iteration and returns
    how long to sleep before the next one. Iterations never overlap. The stop event
    is observed at the sleep boundary; blocking I/O is left to finish (it is always
    bounded by a timeout).
    """

    name = "protocol"

    def __init__(self, ctx: SimulatorContext, interval: float) -> None:
        self.ctx = ctx
        self.interval = interval
        self.state = LoopState.IDLE
        self.history: List[LoopState] = [LoopState.IDLE]
        self.iterations = 0
        self.timeouts = 0
        self.failures = 0
        self.log = log.bind(protocol=self.name)

    def set_state(self, state: LoopState) -> None:
        if state is self.state:
            return
        self.state = state
        self.history.append(state)

    def state_callback(self, state: LoopState) -> Callable[[], None]:
        """For executor code: a callable that moves this loop to `state` on the event loop thread."""
        loop = asyncio.get_running_loop()
        return lambda: loop.call_soon_threadsafe(self.set_state, state)

    async def setup(self) -> None:
        """Runs once before the first iteration. Raising here ends the task."""

    async def run_once(self) -> float:
        raise NotImplementedError

    async def teardown(self) -> None:
        """Runs once when the loop ends, however it ends."""

    async def in_executor(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def sleep(self, stop: asyncio.Event, delay: float) -> bool:
        """Sleep for delay seconds. Returns True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    async def run(self, stop: asyncio.Event, max_iterations: Optional[int] = None) -> None:
        try:
            while not stop.is_set():
                delay = await self.run_once()
                self.iterations += 1
                if max_iterations is not None and self.iterations >= max_iterations:
                    break

                self.set_state(LoopState.SLEEPING)
                if await self.sleep(stop, delay):
                    break
                self.set_state(LoopState.IDLE)
        finally:
            self.set_state(LoopState.STOPPED)
            await self.teardown()
