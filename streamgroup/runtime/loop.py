import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from streamgroup.exceptions import ErrorHandlerFailed
from streamgroup.connectors.base import StreamGroupBackend
from streamgroup.options import ConsumerOptions
from streamgroup.processor import BatchProcessor
from streamgroup.utils.logging import get_logger
from streamgroup.utils.metrics import MetricsCollector


class LoopState:
    """
    Busy cell for one loop. Set for the duration of a tick, observed by the
    loop itself and by the Consumer while draining.
    """
    def __init__(self, name: str):
        self.name = name
        self.ticks = 0
        self.last_error: Optional[BaseException] = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def busy(self) -> bool:
        return not self._idle.is_set()

    @asynccontextmanager
    async def running(self) -> AsyncIterator[None]:
        self._idle.clear()
        try:
            yield
        finally:
            self.ticks += 1
            self._idle.set()

    async def wait_idle(self) -> None:
        await self._idle.wait()


async def sleep_unless_stopped(stop: asyncio.Event, delay_ms: int) -> None:
    """Sleep for ``delay_ms`` or until ``stop`` is set, whichever comes first."""
    if stop.is_set():
        return
    if delay_ms <= 0:
        await asyncio.sleep(0)
        return
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay_ms / 1000)
    except asyncio.TimeoutError:
        pass


class BaseLoop:
    """Shared wiring for the intake and reclaim loops."""
    name = "loop"

    def __init__(self,
                 backend: StreamGroupBackend,
                 processor: BatchProcessor,
                 options: ConsumerOptions,
                 stop: asyncio.Event,
                 metrics: MetricsCollector):
        self.backend = backend
        self.processor = processor
        self.options = options
        self.stop = stop
        self.metrics = metrics
        self.state = LoopState(self.name)
        self.logger = get_logger(f"{self.name.capitalize()}Loop")

    async def run(self) -> None:
        raise NotImplementedError

    def _record_failure(self, error: BaseException, kind: str) -> None:
        """
        Account for an error caught at loop level. Error handler failures are
        fatal for the tick and kept for external observers, anything else is
        treated as transient.
        """
        self.metrics.loop_errors.labels(
            stream=self.options.stream_name, group=self.options.group_name,
            loop=self.name, kind=kind,
        ).inc()
        if isinstance(error, ErrorHandlerFailed):
            self.state.last_error = error
            self.logger.critical(f"Error handler raised, aborting {self.name} tick: {error}", exc_info=error)
        else:
            self.logger.warning(f"{kind} failed in {self.name} loop: {error!r}")
