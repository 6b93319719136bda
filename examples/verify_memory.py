import asyncio
import logging

from streamgroup import Consumer, ConsumerOptions, MemoryBackend
from streamgroup.utils.logging import setup_logging, get_logger

logger = get_logger("VerifyMemory")

STREAM = "inventory"
GROUP = "stock-keepers"

async def main():
    """
    Two consumers share a group on the in-memory backend. The first one
    "crashes" mid batch; the second reclaims what it left pending.
    """
    setup_logging(logging.INFO)
    backend = MemoryBackend(STREAM)
    await backend.connect()
    await backend.ensure_group_exists(GROUP)

    for i in range(10):
        await backend.add_event({"sku": f"sku-{i}", "qty": str(i)})

    # Consumer A pulls a batch and dies without acknowledging
    lost = await backend.pull(GROUP, "consumer-a", 4)
    logger.info(f"consumer-a pulled {len(lost)} records and crashed")

    seen = []

    async def handle(record):
        seen.append(record)

    options = ConsumerOptions(
        consumer_name="consumer-b",
        group_name=GROUP,
        stream_name=STREAM,
        batch_size=10,
        check_abandoned_ms=200,
        record_handler=handle,
    )
    async with Consumer(options, backend):
        while len(seen) < 10:
            await asyncio.sleep(0.05)

    reclaimed = [r.fields["sku"] for r in seen if r.reclaimed]
    logger.info(f"Processed {len(seen)} records, reclaimed: {reclaimed}")
    assert sorted(reclaimed) == sorted(r.fields["sku"] for r in lost)
    assert await backend.list_pending(GROUP, 10) == []
    logger.info("Verification passed: nothing left pending")

if __name__ == "__main__":
    asyncio.run(main())
