import asyncio
from typing import Dict, List, Sequence

from streamgroup.exceptions import ErrorHandlerFailed
from streamgroup.models import PendingEntry
from streamgroup.runtime.loop import BaseLoop, sleep_unless_stopped


def partition_overdue(entries: Sequence[PendingEntry], threshold_ms: int) -> Dict[str, List[PendingEntry]]:
    """
    Group pending entries by owning consumer, keeping only those idle for
    strictly longer than ``threshold_ms``.
    """
    overdue: Dict[str, List[PendingEntry]] = {}
    for entry in entries:
        if entry.idle_ms > threshold_ms:
            overdue.setdefault(entry.consumer, []).append(entry)
    return overdue


class ReclaimLoop(BaseLoop):
    """
    Periodically claims records left pending by idle consumers and runs them
    through the same processing path, flagged as reclaimed.

    Each owner's overdue ids are claimed with a single XCLAIM guarded by the
    idle threshold; owners are handled concurrently and independently.
    """
    name = "reclaim"

    async def run(self) -> None:
        self.logger.info(f"Checking for abandoned records every {self.options.check_abandoned_ms}ms")
        while not self.stop.is_set():
            await self.tick()
            await sleep_unless_stopped(self.stop, self.options.check_abandoned_ms)
        self.logger.info("Reclaim loop stopped")

    async def tick(self) -> None:
        async with self.state.running():
            try:
                pending = await self.backend.list_pending(self.options.group_name, self.options.batch_size)
            except Exception as e:
                self._record_failure(e, "list_pending")
                return

            overdue = partition_overdue(pending, self.options.check_abandoned_ms)
            # No claims once stopping, the listed entries stay pending
            if not overdue or self.stop.is_set():
                return

            await asyncio.gather(*(self._reclaim_from(owner, entries) for owner, entries in overdue.items()))

    async def _reclaim_from(self, owner: str, entries: List[PendingEntry]) -> None:
        try:
            claimed = await self.backend.reassign(
                self.options.group_name,
                self.options.consumer_name,
                self.options.check_abandoned_ms,
                [entry.id for entry in entries],
            )
        except Exception as e:
            self._record_failure(e, "reassign")
            return
        if not claimed:
            return

        # The claim itself counts as one more delivery
        delivered = {entry.id: entry.delivery_count for entry in entries}
        for record in claimed:
            record.delivery_count = delivered.get(record.id, 0) + 1

        self.metrics.records_reclaimed.labels(
            stream=self.options.stream_name, group=self.options.group_name,
        ).inc(len(claimed))
        self.logger.info(f"Reclaimed {len(claimed)} records from {owner}")
        try:
            await self.processor.process(claimed, reclaimed=True)
        except ErrorHandlerFailed as e:
            self._record_failure(e, "error_handler")
        except Exception as e:
            self._record_failure(e, "acknowledge")
