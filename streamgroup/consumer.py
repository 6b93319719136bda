import asyncio
from typing import Any, Dict, List, Optional

from streamgroup.connectors.base import StreamGroupBackend
from streamgroup.options import ConsumerOptions
from streamgroup.processor import BatchProcessor
from streamgroup.runtime.intake import IntakeLoop
from streamgroup.runtime.reclaim import ReclaimLoop
from streamgroup.utils.logging import get_logger
from streamgroup.utils.metrics import MetricsCollector

logger = get_logger("Consumer")


class Consumer:
    """
    Runs the intake and reclaim loops for one consumer of a group and drains
    them on shutdown.

    ``stop()`` never interrupts a handler: a tick already in flight always
    runs to completion, so a handler that hangs will hang shutdown too.

    Example:
        options = ConsumerOptions(
            consumer_name="worker-1", group_name="billing", stream_name="orders",
            batch_size=50, record_handler=handle_order,
        )
        async with Consumer(options, backend) as consumer:
            await stop_requested.wait()

    Args:
        options: Engine configuration.
        backend: Stream primitive adapter.
        close_backend: Close the backend once stop() has drained both loops.
        metrics: Counter collector, a private one is created when omitted.
    """
    def __init__(self,
                 options: ConsumerOptions,
                 backend: StreamGroupBackend,
                 close_backend: bool = False,
                 metrics: Optional[MetricsCollector] = None):
        self.options = options
        self.backend = backend
        self.close_backend = close_backend
        self.metrics = metrics or MetricsCollector()
        self.processor = BatchProcessor(backend, options, self.metrics)

        self._stop = asyncio.Event()
        self.intake = IntakeLoop(backend, self.processor, options, self._stop, self.metrics)
        self.reclaim = ReclaimLoop(backend, self.processor, options, self._stop, self.metrics)
        self._tasks: List[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def start(self) -> None:
        """Launch the intake loop and, unless disabled, the reclaim loop."""
        self._running = True
        self._tasks.append(asyncio.create_task(self.intake.run(), name=f"{self.options.consumer_name}-intake"))
        if not self.options.disable_abandoned_check:
            self._tasks.append(asyncio.create_task(self.reclaim.run(), name=f"{self.options.consumer_name}-reclaim"))
        logger.info(
            f"Consumer {self.options.consumer_name} started on {self.options.stream_name} "
            f"(group {self.options.group_name}, reclaim {'off' if self.options.disable_abandoned_check else 'on'})"
        )

    async def stop(self) -> None:
        """
        Gracefully stop consuming.

        No pull or claim is issued once this is called. Returns after every
        batch already pulled has been processed and acknowledged.
        """
        logger.info("Stop requested. Draining in-flight batches...")
        self._stop.set()
        await asyncio.gather(self.intake.state.wait_idle(), self.reclaim.state.wait_idle())
        # Loops observe the stop flag right after their tick and exit
        await asyncio.gather(*self._tasks)
        self._tasks.clear()
        self._running = False

        if self.close_backend:
            await self.backend.close()
        logger.info("Consumer stopped gracefully.")

    def status(self) -> Dict[str, Any]:
        loops = [self.intake] if self.options.disable_abandoned_check else [self.intake, self.reclaim]
        return {
            "consumer": self.options.consumer_name,
            "group": self.options.group_name,
            "stream": self.options.stream_name,
            "running": self._running,
            "stopping": self.stopping,
            "loops": {
                loop.name: {
                    "busy": loop.state.busy,
                    "ticks": loop.state.ticks,
                    "last_error": str(loop.state.last_error) if loop.state.last_error else None,
                }
                for loop in loops
            },
        }

    async def __aenter__(self) -> "Consumer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
