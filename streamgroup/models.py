from typing import Any, Dict, Mapping, Optional, Sequence, Union
from pydantic import BaseModel, Field

RawFields = Union[Mapping[str, Any], Sequence[Any]]


def flatten_fields(raw: Optional[RawFields]) -> Dict[str, Any]:
    """
    Build a field mapping out of the primitive's payload.

    Stream entries arrive either as an alternating ``[k1, v1, k2, v2]`` list
    or already paired into a mapping, depending on the client.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    items = list(raw)
    if len(items) % 2:
        raise ValueError(f"Odd number of field items in stream entry: {items!r}")
    return {items[i]: items[i + 1] for i in range(0, len(items), 2)}


class StreamRecord(BaseModel):
    """
    A single entry pulled from the stream for this consumer.

    ``reclaimed`` and ``delivery_count`` are set by the engine and live
    outside ``fields`` so user payloads can never collide with them.
    """
    id: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    reclaimed: bool = False
    delivery_count: Optional[int] = None

    @classmethod
    def from_entry(cls, entry_id: str, raw: Optional[RawFields], reclaimed: bool = False) -> "StreamRecord":
        return cls(id=entry_id, fields=flatten_fields(raw), reclaimed=reclaimed)

    def to_dict(self) -> Dict[str, Any]:
        """Flat view of the record. Engine values win over same-named fields."""
        flat = dict(self.fields)
        flat["id"] = self.id
        flat["reclaimed"] = self.reclaimed
        return flat


class PendingEntry(BaseModel):
    """One row of the group-wide pending entries list."""
    id: str
    consumer: str
    idle_ms: int
    delivery_count: int = 0


