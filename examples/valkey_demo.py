import asyncio
import logging
import random

from streamgroup import Consumer, ConsumerOptions, StreamRecord
from streamgroup.connectors.valkey import ValkeyConnector, ValkeyStreamBackend
from streamgroup.settings import settings
from streamgroup.utils.logging import setup_logging, get_logger

logger = get_logger("ValkeyDemo")

# 1. Define logic
async def process_signup(record: StreamRecord):
    if random.random() < 0.1:
        raise ValueError(f"flaky downstream for {record.fields.get('user_id')}")
    tag = "reclaimed" if record.reclaimed else "fresh"
    logger.info(f"[{record.id}] ({tag}) signup for {record.fields['user_id']} <{record.fields['email']}>")
    await asyncio.sleep(0.01)

async def on_error(record: StreamRecord, error: BaseException):
    # Left pending; another tick of the reclaim loop will retry it
    logger.warning(f"[{record.id}] failed: {error}")

# 2. Run Consumer
async def main():
    setup_logging(logging.INFO)

    stream_name = "events:user_signups"
    group_name = "processor-group-1"

    connector = ValkeyConnector(
        host=settings.VALKEY_HOST,
        port=settings.VALKEY_PORT,
        password=settings.VALKEY_PASSWORD,
    )
    backend = ValkeyStreamBackend(connector, stream_name)
    await backend.connect()
    await backend.ensure_group_exists(group_name)

    # Produce some test data (In a real app, this would be in a separate producer)
    for i in range(20):
        msg_id = await backend.add_event({"user_id": f"user_{i}", "email": f"user{i}@example.com"})
        logger.info(f"Produced event {msg_id}")

    options = ConsumerOptions(
        consumer_name="worker-1",
        group_name=group_name,
        stream_name=stream_name,
        batch_size=5,
        block_interval_ms=500,
        check_abandoned_ms=2000,
        record_handler=process_signup,
        error_handler=on_error,
    )

    async with Consumer(options, backend, close_backend=True):
        # Long enough for failed records to be reclaimed at least once
        await asyncio.sleep(6)

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
