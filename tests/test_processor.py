import unittest
from unittest.mock import AsyncMock, MagicMock

from streamgroup.exceptions import ErrorHandlerFailed
from streamgroup.models import StreamRecord
from streamgroup.options import ConsumerOptions
from streamgroup.processor import BatchProcessor


def make_batch(n: int):
    return [StreamRecord(id=f"1-{i}", fields={"n": str(i)}) for i in range(n)]


class TestBatchProcessor(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.backend = AsyncMock()
        self.calls = []

    def processor(self, **handlers) -> BatchProcessor:
        options = ConsumerOptions(
            consumer_name="c1", group_name="g1", stream_name="s1", batch_size=10, **handlers
        )
        return BatchProcessor(self.backend, options)

    async def test_full_success_acks_once(self):
        async def handler(record):
            self.calls.append(record.id)

        await self.processor(record_handler=handler).process(make_batch(3))

        self.assertEqual(self.calls, ["1-0", "1-1", "1-2"])
        self.backend.acknowledge.assert_awaited_once_with("g1", ["1-0", "1-1", "1-2"])

    async def test_failure_acks_prefix_and_stops(self):
        """Pull of 3, success on the first, failure on the second."""
        error_handler = AsyncMock()

        async def handler(record):
            self.calls.append(record.id)
            if record.id == "1-1":
                raise ValueError("boom")

        batch = make_batch(3)
        await self.processor(record_handler=handler, error_handler=error_handler).process(batch)

        self.assertEqual(self.calls, ["1-0", "1-1"])
        self.backend.acknowledge.assert_awaited_once_with("g1", ["1-0"])
        error_handler.assert_awaited_once()
        record, error = error_handler.call_args[0]
        self.assertIs(record, batch[1])
        self.assertIsInstance(error, ValueError)

    async def test_error_handler_runs_after_partial_ack(self):
        order = []
        self.backend.acknowledge.side_effect = lambda group, ids: order.append(("ack", list(ids)))

        async def handler(record):
            if record.id == "1-2":
                raise RuntimeError("nope")

        async def on_error(record, error):
            order.append(("error", record.id))

        await self.processor(record_handler=handler, error_handler=on_error).process(make_batch(4))
        self.assertEqual(order, [("ack", ["1-0", "1-1"]), ("error", "1-2")])

    async def test_failure_on_first_record_skips_ack(self):
        handler = AsyncMock(side_effect=ValueError("first"))
        error_handler = AsyncMock()

        await self.processor(record_handler=handler, error_handler=error_handler).process(make_batch(2))

        handler.assert_awaited_once()
        self.backend.acknowledge.assert_not_awaited()
        error_handler.assert_awaited_once()

    async def test_failure_without_error_handler_is_contained(self):
        handler = AsyncMock(side_effect=[None, KeyError("x"), None])
        await self.processor(record_handler=handler).process(make_batch(3))
        self.assertEqual(handler.await_count, 2)
        self.backend.acknowledge.assert_awaited_once_with("g1", ["1-0"])

    async def test_reclaimed_flag_is_stamped(self):
        seen = []
        handler = AsyncMock(side_effect=lambda record: seen.append(record.reclaimed))
        processor = self.processor(record_handler=handler)

        await processor.process(make_batch(2), reclaimed=True)
        await processor.process(make_batch(2), reclaimed=False)
        self.assertEqual(seen, [True, True, False, False])

    async def test_batch_handler_runs_first_with_whole_batch(self):
        order = []

        async def on_batch(records):
            order.append(("batch", [r.id for r in records]))

        async def on_record(record):
            order.append(("record", record.id))

        await self.processor(batch_handler=on_batch, record_handler=on_record).process(make_batch(2))
        self.assertEqual(order, [("batch", ["1-0", "1-1"]), ("record", "1-0"), ("record", "1-1")])
        self.backend.acknowledge.assert_awaited_once_with("g1", ["1-0", "1-1"])

    async def test_batch_handler_alone_owns_ack(self):
        on_batch = AsyncMock()
        await self.processor(batch_handler=on_batch).process(make_batch(3))
        on_batch.assert_awaited_once()
        self.backend.acknowledge.assert_not_awaited()

    async def test_batch_handler_failure_leaves_batch_pending(self):
        on_batch = AsyncMock(side_effect=RuntimeError("batch down"))
        on_record = AsyncMock()
        await self.processor(batch_handler=on_batch, record_handler=on_record).process(make_batch(3))
        on_record.assert_not_awaited()
        self.backend.acknowledge.assert_not_awaited()

    async def test_empty_batch_is_noop(self):
        handler = AsyncMock()
        await self.processor(record_handler=handler).process([])
        handler.assert_not_awaited()
        self.backend.acknowledge.assert_not_awaited()

    async def test_sync_handlers_are_supported(self):
        handler = MagicMock(return_value=None)
        await self.processor(record_handler=handler).process(make_batch(2))
        self.assertEqual(handler.call_count, 2)
        self.backend.acknowledge.assert_awaited_once_with("g1", ["1-0", "1-1"])

    async def test_error_handler_failure_propagates(self):
        handler = AsyncMock(side_effect=[None, ValueError("bad record")])
        on_error = AsyncMock(side_effect=RuntimeError("error handler broke"))

        with self.assertRaises(ErrorHandlerFailed) as ctx:
            await self.processor(record_handler=handler, error_handler=on_error).process(make_batch(3))

        self.assertEqual(ctx.exception.record.id, "1-1")
        self.assertIsInstance(ctx.exception.original, ValueError)
        self.assertIsInstance(ctx.exception.cause, RuntimeError)
        # The prefix was committed before the error handler ran
        self.backend.acknowledge.assert_awaited_once_with("g1", ["1-0"])

    async def test_metrics_count_outcomes(self):
        handler = AsyncMock(side_effect=[None, None, ValueError("x")])
        processor = self.processor(record_handler=handler)
        await processor.process(make_batch(3))

        registry = processor.metrics.registry
        labels = {"stream": "s1", "group": "g1", "source": "intake"}
        self.assertEqual(
            registry.get_sample_value("streamgroup_records_processed_total", {**labels, "status": "success"}), 2.0
        )
        self.assertEqual(
            registry.get_sample_value("streamgroup_records_processed_total", {**labels, "status": "error"}), 1.0
        )
        self.assertEqual(
            registry.get_sample_value("streamgroup_ack_calls_total", {"stream": "s1", "group": "g1"}), 1.0
        )
        self.assertEqual(
            registry.get_sample_value("streamgroup_records_acked_total", {"stream": "s1", "group": "g1"}), 2.0
        )


if __name__ == '__main__':
    unittest.main()
