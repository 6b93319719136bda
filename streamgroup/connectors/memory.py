import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from streamgroup.connectors.base import StreamGroupBackend
from streamgroup.models import PendingEntry, StreamRecord
from streamgroup.utils.logging import get_logger

logger = get_logger("MemoryBackend")


def _parse_id(entry_id: str) -> Tuple[int, int]:
    ms, _, seq = entry_id.partition("-")
    return int(ms), int(seq or 0)


@dataclass
class _PendingState:
    consumer: str
    delivered_at: int
    delivery_count: int = 1


@dataclass
class _GroupState:
    last_delivered_id: str = "0-0"
    pending: Dict[str, _PendingState] = field(default_factory=dict)


class MemoryBackend(StreamGroupBackend):
    """
    In-memory backend for testing/local verification.
    Mirrors stream consumer-group semantics: a group cursor, a pending
    entries list with owner, idle time and delivery count, a min-idle guard
    on claims and idempotent acknowledgment. Not persistent across restarts.

    ``clock`` returns milliseconds and can be swapped for a fake in tests.
    """
    def __init__(self, stream_key: str = "default-stream", clock: Optional[Callable[[], int]] = None):
        self._stream_key = stream_key
        self._clock = clock or (lambda: int(time.monotonic() * 1000))
        self._last_ts = 0
        self._last_seq = 0

        # Ordered entries: (id, fields)
        self._entries: List[Tuple[str, Dict[str, Any]]] = []
        self._groups: Dict[str, _GroupState] = {}
        self._new_entries = asyncio.Condition()
        self._connected = False

    @property
    def stream_key(self) -> str:
        return self._stream_key

    async def connect(self) -> None:
        self._connected = True
        logger.info("Connected to MemoryBackend")

    async def close(self) -> None:
        self._connected = False
        logger.info("Closed MemoryBackend")

    async def ping(self) -> bool:
        if not self._connected:
            raise ConnectionError("Not connected")
        return True

    async def ensure_group_exists(self, group: str, start_id: str = "0") -> None:
        if group not in self._groups:
            if start_id == "$":
                start_id = self._entries[-1][0] if self._entries else "0-0"
            self._groups[group] = _GroupState(last_delivered_id=start_id)

    def _group(self, group: str) -> _GroupState:
        try:
            return self._groups[group]
        except KeyError:
            raise LookupError(f"NOGROUP No such consumer group '{group}' for key '{self.stream_key}'") from None

    def _next_id(self) -> str:
        ts = int(time.time() * 1000)
        if ts <= self._last_ts:
            # Same (or earlier) ms, keep ids strictly increasing
            ts = self._last_ts
            self._last_seq += 1
        else:
            self._last_ts = ts
            self._last_seq = 0
        return f"{ts}-{self._last_seq}"

    async def add_event(self, fields: Dict[str, Any], max_len: Optional[int] = None) -> str:
        async with self._new_entries:
            entry_id = self._next_id()
            self._entries.append((entry_id, dict(fields)))
            if max_len is not None and len(self._entries) > max_len:
                del self._entries[: len(self._entries) - max_len]
            self._new_entries.notify_all()
        return entry_id

    def _undelivered(self, group: str) -> List[Tuple[str, Dict[str, Any]]]:
        cursor = _parse_id(self._group(group).last_delivered_id)
        return [entry for entry in self._entries if _parse_id(entry[0]) > cursor]

    async def pull(self, group: str, consumer: str, limit: int, block_ms: int = 0) -> List[StreamRecord]:
        state = self._group(group)
        if block_ms > 0 and not self._undelivered(group):
            async with self._new_entries:
                try:
                    await asyncio.wait_for(
                        self._new_entries.wait_for(lambda: bool(self._undelivered(group))),
                        timeout=block_ms / 1000,
                    )
                except asyncio.TimeoutError:
                    return []

        batch = self._undelivered(group)[:limit]
        now = self._clock()
        for entry_id, _fields in batch:
            state.pending[entry_id] = _PendingState(consumer=consumer, delivered_at=now)
        if batch:
            state.last_delivered_id = batch[-1][0]
        return [StreamRecord.from_entry(entry_id, fields) for entry_id, fields in batch]

    async def list_pending(self, group: str, limit: int) -> List[PendingEntry]:
        state = self._group(group)
        now = self._clock()
        ids = sorted(state.pending, key=_parse_id)[:limit]
        return [
            PendingEntry(
                id=entry_id,
                consumer=state.pending[entry_id].consumer,
                idle_ms=now - state.pending[entry_id].delivered_at,
                delivery_count=state.pending[entry_id].delivery_count,
            )
            for entry_id in ids
        ]

    async def reassign(self, group: str, consumer: str, min_idle_ms: int, ids: Sequence[str]) -> List[StreamRecord]:
        state = self._group(group)
        now = self._clock()
        payloads = dict(self._entries)
        claimed = []
        for entry_id in ids:
            pending = state.pending.get(entry_id)
            if pending is None or now - pending.delivered_at < min_idle_ms:
                continue
            if entry_id not in payloads:
                # Trimmed from the stream; drop it like the server does
                del state.pending[entry_id]
                continue
            pending.consumer = consumer
            pending.delivered_at = now
            pending.delivery_count += 1
            claimed.append(StreamRecord.from_entry(entry_id, payloads[entry_id], reclaimed=True))
        return claimed

    async def acknowledge(self, group: str, ids: Sequence[str]) -> None:
        state = self._group(group)
        for entry_id in ids:
            state.pending.pop(entry_id, None)
