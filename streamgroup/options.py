from typing import Any, Awaitable, Callable, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, model_validator

from streamgroup.models import StreamRecord

RecordHandler = Callable[[StreamRecord], Union[Awaitable[None], None]]
BatchHandler = Callable[[List[StreamRecord]], Union[Awaitable[None], None]]
ErrorHandler = Callable[[StreamRecord, BaseException], Union[Awaitable[None], None]]


class ConsumerOptions(BaseModel):
    """
    Immutable engine configuration.

    Attributes:
        consumer_name: Name of this consumer inside the group.
        group_name: Consumer group name.
        stream_name: Stream key.
        batch_size: Max records per pull, also the pending-list ceiling.
        block_interval_ms: How long a pull may block. 0 means non-blocking.
        check_abandoned_ms: Reclaim period and idle threshold.
        disable_abandoned_check: Skip the reclaim loop entirely.
        pull_error_backoff_ms: Optional pause after a failed pull before the
            next tick. 0 (default) retries as soon as the failed tick unwinds.
        record_handler: Called on each record in pull order. Raising aborts
            the rest of the batch after acknowledging the processed prefix.
        batch_handler: Called once with the whole batch, before any record
            handling. Owns its own acknowledgment.
        error_handler: Called with the failing record and the error, after
            the processed prefix has been acknowledged.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    consumer_name: str = Field(min_length=1)
    group_name: str = Field(min_length=1)
    stream_name: str = Field(min_length=1)
    batch_size: int = Field(gt=0)
    block_interval_ms: int = Field(0, ge=0)
    check_abandoned_ms: int = Field(1000, gt=0)
    disable_abandoned_check: bool = False
    pull_error_backoff_ms: int = Field(0, ge=0)

    record_handler: Optional[Any] = None
    batch_handler: Optional[Any] = None
    error_handler: Optional[Any] = None

    @model_validator(mode="after")
    def _check_handlers(self) -> "ConsumerOptions":
        if self.record_handler is None and self.batch_handler is None:
            raise ValueError("At least one of record_handler or batch_handler must be supplied")
        for name in ("record_handler", "batch_handler", "error_handler"):
            value = getattr(self, name)
            if value is not None and not callable(value):
                raise ValueError(f"{name} must be callable")
        return self
