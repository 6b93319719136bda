import inspect
from typing import Any, Callable, List, Optional
from opentelemetry import trace

from streamgroup.connectors.base import StreamGroupBackend
from streamgroup.exceptions import ErrorHandlerFailed
from streamgroup.models import StreamRecord
from streamgroup.options import ConsumerOptions
from streamgroup.utils.logging import get_logger
from streamgroup.utils.metrics import MetricsCollector

logger = get_logger("BatchProcessor")


async def _call(handler: Callable[..., Any], *args: Any) -> None:
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class BatchProcessor:
    """
    Drives one batch through the configured handlers and acknowledges the
    records that completed.

    Contract:
    - the batch handler (if any) sees the whole batch first;
    - the record handler (if any) is awaited record by record in pull order;
    - the first record failure acknowledges the processed prefix, calls the
      error handler and abandons the rest of the batch (left pending);
    - at most one acknowledge call per batch, none for an empty id list.

    Handler failures never escape ``process``. The only exception that does
    is ErrorHandlerFailed, raised when the error handler itself blows up.
    """
    def __init__(self, backend: StreamGroupBackend, options: ConsumerOptions, metrics: Optional[MetricsCollector] = None):
        self.backend = backend
        self.options = options
        self.metrics = metrics or MetricsCollector()
        self.tracer = trace.get_tracer("streamgroup")

    async def process(self, batch: List[StreamRecord], reclaimed: bool = False) -> None:
        if not batch:
            return

        for record in batch:
            record.reclaimed = reclaimed

        if self.options.batch_handler is not None:
            try:
                await _call(self.options.batch_handler, batch)
            except Exception as e:
                # The batch handler owns acknowledgment, so there is no prefix to commit
                logger.error(
                    f"Batch handler failed on {len(batch)} records "
                    f"({batch[0].id}..{batch[-1].id}): {e!r}. Leaving them pending."
                )
                self._count(reclaimed, "batch_error", len(batch))
                return

        if self.options.record_handler is None:
            return

        completed: List[str] = []
        for record in batch:
            try:
                await self._handle_record(record)
            except Exception as e:
                self._count(reclaimed, "error")
                logger.warning(
                    f"Record handler failed on {record.id}: {e!r}. Acknowledging "
                    f"{len(completed)} processed records, abandoning the rest of the batch."
                )
                await self._acknowledge(completed)
                await self._handle_error(record, e)
                return

            self._count(reclaimed, "success")
            completed.append(record.id)

        await self._acknowledge(completed)

    async def _handle_record(self, record: StreamRecord) -> None:
        with self.tracer.start_as_current_span(
            "process_record",
            attributes={
                "messaging.message_id": record.id,
                "messaging.destination": self.options.stream_name,
                "messaging.consumer_group": self.options.group_name,
                "streamgroup.reclaimed": record.reclaimed,
            },
        ):
            # The span records the exception and marks itself as errored on the way out
            await _call(self.options.record_handler, record)

    async def _handle_error(self, record: StreamRecord, error: Exception) -> None:
        if self.options.error_handler is None:
            return
        try:
            await _call(self.options.error_handler, record, error)
        except Exception as e:
            raise ErrorHandlerFailed(record, error, e) from e

    async def _acknowledge(self, ids: List[str]) -> None:
        if not ids:
            return
        await self.backend.acknowledge(self.options.group_name, ids)
        self.metrics.ack_calls.labels(stream=self.options.stream_name, group=self.options.group_name).inc()
        self.metrics.records_acked.labels(stream=self.options.stream_name, group=self.options.group_name).inc(len(ids))

    def _count(self, reclaimed: bool, status: str, amount: int = 1) -> None:
        self.metrics.records_processed.labels(
            stream=self.options.stream_name, group=self.options.group_name,
            source="reclaim" if reclaimed else "intake", status=status,
        ).inc(amount)
