import asyncio
import os
import unittest
import uuid

from valkey.exceptions import ConnectionError as ValkeyConnectionError

from streamgroup.connectors.valkey import ValkeyConnector, ValkeyStreamBackend
from streamgroup.consumer import Consumer
from streamgroup.options import ConsumerOptions


class TestEndToEnd(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.host = os.getenv("VALKEY_HOST", "localhost")
        self.port = int(os.getenv("VALKEY_PORT", 6379))
        self.password = os.getenv("VALKEY_PASSWORD", None)

        self.connector = ValkeyConnector(host=self.host, port=self.port, password=self.password)
        try:
            await self.connector.connect()
        except (OSError, ValkeyConnectionError):
            self.skipTest(f"Valkey not available at {self.host}:{self.port}")

        self.stream_key = f"e2e-stream-{uuid.uuid4()}"
        self.group_name = "e2e-group"
        self.backend = ValkeyStreamBackend(self.connector, self.stream_key)
        await self.backend.ensure_group_exists(self.group_name)

    async def asyncTearDown(self):
        client = self.connector.get_client()
        await client.delete(self.stream_key)
        await self.connector.close()

    def options(self, consumer_name: str, handler, **overrides) -> ConsumerOptions:
        params = dict(
            consumer_name=consumer_name, group_name=self.group_name, stream_name=self.stream_key,
            batch_size=10, block_interval_ms=100, check_abandoned_ms=200, record_handler=handler,
        )
        params.update(overrides)
        return ConsumerOptions(**params)

    async def wait_for(self, predicate, timeout: float = 5.0):
        async def _poll():
            while not predicate():
                await asyncio.sleep(0.05)
        await asyncio.wait_for(_poll(), timeout=timeout)

    async def test_consume_and_ack(self):
        handled = []

        async def handler(record):
            handled.append(record)

        for i in range(5):
            await self.backend.add_event({"n": i})

        async with Consumer(self.options("worker-1", handler, disable_abandoned_check=True), self.backend):
            await self.wait_for(lambda: len(handled) == 5)

        self.assertEqual([r.fields["n"] for r in handled], ["0", "1", "2", "3", "4"])
        self.assertEqual(await self.backend.list_pending(self.group_name, 10), [])

    async def test_reclaim_from_crashed_consumer(self):
        for i in range(3):
            await self.backend.add_event({"n": i})

        # Crashed worker: pulls but never acknowledges
        abandoned = await self.backend.pull(self.group_name, "crashed-worker", 10)
        self.assertEqual(len(abandoned), 3)
        await asyncio.sleep(0.3)

        handled = []

        async def handler(record):
            handled.append(record)

        async with Consumer(self.options("worker-2", handler), self.backend):
            await self.wait_for(lambda: len(handled) == 3)

        self.assertTrue(all(r.reclaimed for r in handled))
        self.assertEqual(await self.backend.list_pending(self.group_name, 10), [])


if __name__ == '__main__':
    unittest.main()
