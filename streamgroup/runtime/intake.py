import asyncio

from streamgroup.exceptions import ErrorHandlerFailed
from streamgroup.runtime.loop import BaseLoop, sleep_unless_stopped


class IntakeLoop(BaseLoop):
    """
    Pulls unseen records for this consumer and feeds them to the processor,
    tick after tick, with no delay between successful ticks.

    A failed pull is not fatal: the tick ends, the busy cell is released and
    the next tick follows at once, or after ``pull_error_backoff_ms`` when
    one is configured.
    """
    name = "intake"

    async def run(self) -> None:
        self.logger.info(
            f"Consuming {self.options.stream_name} as {self.options.consumer_name} "
            f"(group {self.options.group_name})"
        )
        while not self.stop.is_set():
            pulled = await self.tick()
            if self.stop.is_set():
                break
            if pulled:
                # Yield to the event loop so a non-blocking pull can't starve it
                await asyncio.sleep(0)
            else:
                await sleep_unless_stopped(self.stop, self.options.pull_error_backoff_ms)
        self.logger.info("Intake loop stopped")

    async def tick(self) -> bool:
        """Run one pull/process cycle. Returns False when the pull itself failed."""
        async with self.state.running():
            try:
                batch = await self.backend.pull(
                    self.options.group_name,
                    self.options.consumer_name,
                    self.options.batch_size,
                    self.options.block_interval_ms,
                )
            except Exception as e:
                self._record_failure(e, "pull")
                return False

            if not batch:
                return True

            try:
                await self.processor.process(batch, reclaimed=False)
            except ErrorHandlerFailed as e:
                self._record_failure(e, "error_handler")
            except Exception as e:
                self._record_failure(e, "acknowledge")
            return True
