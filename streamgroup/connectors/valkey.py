import json
from typing import Any, Dict, List, Optional, Sequence

import valkey.asyncio as valkey
from valkey.exceptions import ResponseError

from streamgroup.connectors.base import StreamGroupBackend
from streamgroup.models import PendingEntry, StreamRecord
from streamgroup.utils.logging import get_logger

logger = get_logger("ValkeyBackend")


class ValkeyConnector:
    """
    Owns the Valkey client used by a backend.
    """
    def __init__(self, host: str = "localhost", port: int = 6379, password: Optional[str] = None, db: int = 0):
        self.host = host
        self.port = port
        self.password = password
        self.db = db
        self._client: Optional[valkey.Valkey] = None

    async def connect(self) -> None:
        if self._client is None:
            client = valkey.Valkey(
                host=self.host,
                port=self.port,
                password=self.password,
                db=self.db,
                decode_responses=True,
            )
            await client.ping()
            self._client = client
            logger.info(f"Connected to Valkey at {self.host}:{self.port}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Closed Valkey connection")

    def get_client(self) -> valkey.Valkey:
        if self._client is None:
            raise ConnectionError("ValkeyConnector is not connected")
        return self._client


class ValkeyStreamBackend(StreamGroupBackend):
    """
    Valkey Streams implementation of StreamGroupBackend.

    pull        -> XREADGROUP GROUP g c COUNT n [BLOCK ms] STREAMS key >
    list_pending-> XPENDING key g - + n
    reassign    -> XCLAIM key g c min-idle id...
    acknowledge -> XACK key g id...
    """
    def __init__(self, connector: ValkeyConnector, stream_key: str):
        self.connector = connector
        self._stream_key = stream_key

    @property
    def stream_key(self) -> str:
        return self._stream_key

    async def connect(self) -> None:
        await self.connector.connect()

    async def close(self) -> None:
        await self.connector.close()

    async def ping(self) -> bool:
        return bool(await self.connector.get_client().ping())

    async def ensure_group_exists(self, group: str, start_id: str = "0") -> None:
        client = self.connector.get_client()
        try:
            await client.xgroup_create(self.stream_key, group, id=start_id, mkstream=True)
            logger.info(f"Created consumer group {group} on {self.stream_key}")
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def add_event(self, fields: Dict[str, Any], max_len: Optional[int] = None) -> str:
        payload = {}
        for key, value in fields.items():
            if isinstance(value, (str, bytes, int, float)):
                payload[key] = value
            else:
                payload[key] = json.dumps(value)
        client = self.connector.get_client()
        return await client.xadd(self.stream_key, payload, maxlen=max_len, approximate=max_len is not None)

    async def pull(self, group: str, consumer: str, limit: int, block_ms: int = 0) -> List[StreamRecord]:
        client = self.connector.get_client()
        # BLOCK 0 waits forever on the server, so non-blocking means omitting it
        response = await client.xreadgroup(
            group,
            consumer,
            {self.stream_key: ">"},
            count=limit,
            block=block_ms if block_ms > 0 else None,
        )
        if not response:
            return []

        # RESP2 returns [[stream, entries]], RESP3 returns {stream: [entries]}
        if isinstance(response, dict):
            entries = [entry for chunk in response.get(self.stream_key, []) for entry in chunk]
        else:
            entries = [entry for _stream, stream_entries in response for entry in stream_entries]

        return [StreamRecord.from_entry(entry_id, raw) for entry_id, raw in entries]

    async def list_pending(self, group: str, limit: int) -> List[PendingEntry]:
        client = self.connector.get_client()
        rows = await client.xpending_range(self.stream_key, group, min="-", max="+", count=limit)
        return [
            PendingEntry(
                id=row["message_id"],
                consumer=row["consumer"],
                idle_ms=row["time_since_delivered"],
                delivery_count=row["times_delivered"],
            )
            for row in rows
        ]

    async def reassign(self, group: str, consumer: str, min_idle_ms: int, ids: Sequence[str]) -> List[StreamRecord]:
        if not ids:
            return []
        client = self.connector.get_client()
        claimed = await client.xclaim(self.stream_key, group, consumer, min_idle_ms, list(ids))
        records = []
        for entry in claimed or []:
            entry_id, raw = entry
            # Entries trimmed from the stream come back without a payload
            if entry_id is None or raw is None:
                continue
            records.append(StreamRecord.from_entry(entry_id, raw, reclaimed=True))
        return records

    async def acknowledge(self, group: str, ids: Sequence[str]) -> None:
        if not ids:
            return
        client = self.connector.get_client()
        await client.xack(self.stream_key, group, *ids)
