from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
from streamgroup.models import PendingEntry, StreamRecord


class StreamGroupBackend(ABC):
    """
    Thin adapter over a stream primitive with consumer-group support.

    The engine only relies on pull, list_pending, reassign and acknowledge.
    No retries or backoff happen here; failures propagate to the caller.
    """

    @property
    @abstractmethod
    def stream_key(self) -> str:
        pass

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass

    @abstractmethod
    async def ensure_group_exists(self, group: str, start_id: str = "0") -> None:
        """Create the consumer group (and the stream) if missing."""
        pass

    @abstractmethod
    async def add_event(self, fields: Dict[str, Any], max_len: Optional[int] = None) -> str:
        """Append an entry to the stream and return its id."""
        pass

    @abstractmethod
    async def pull(self, group: str, consumer: str, limit: int, block_ms: int = 0) -> List[StreamRecord]:
        """
        Read records never delivered to any consumer of the group.

        Returns an empty list when nothing arrives before ``block_ms``
        elapses. ``block_ms == 0`` returns immediately.
        """
        pass

    @abstractmethod
    async def list_pending(self, group: str, limit: int) -> List[PendingEntry]:
        """Pending entries across the whole group, ordered by id."""
        pass

    @abstractmethod
    async def reassign(self, group: str, consumer: str, min_idle_ms: int, ids: Sequence[str]) -> List[StreamRecord]:
        """
        Transfer ownership of ``ids`` to ``consumer``, but only for entries
        idle for at least ``min_idle_ms``. Returns the claimed records.
        """
        pass

    @abstractmethod
    async def acknowledge(self, group: str, ids: Sequence[str]) -> None:
        """Remove ``ids`` from the group's pending list. Empty ``ids`` is a no-op."""
        pass
