from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from streamgroup.models import StreamRecord


class StreamGroupError(Exception):
    """Base class for streamgroup errors."""


class ErrorHandlerFailed(StreamGroupError):
    """
    Raised when the user supplied error handler raises while handling a
    record failure. Terminates the current tick, never the loop.
    """
    def __init__(self, record: "StreamRecord", original: BaseException, cause: BaseException):
        super().__init__(
            f"Error handler failed for record {record.id}: {cause!r} "
            f"(while handling {original!r})"
        )
        self.record = record
        self.original = original
        self.cause = cause
