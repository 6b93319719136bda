from streamgroup.consumer import Consumer
from streamgroup.options import ConsumerOptions
from streamgroup.models import StreamRecord, PendingEntry
from streamgroup.processor import BatchProcessor
from streamgroup.exceptions import StreamGroupError, ErrorHandlerFailed
from streamgroup.connectors.base import StreamGroupBackend
from streamgroup.connectors.memory import MemoryBackend
from streamgroup.connectors.valkey import ValkeyConnector, ValkeyStreamBackend

__version__ = "0.1.0"

__all__ = [
    "Consumer",
    "ConsumerOptions",
    "StreamRecord",
    "PendingEntry",
    "BatchProcessor",
    "StreamGroupError",
    "ErrorHandlerFailed",
    "StreamGroupBackend",
    "MemoryBackend",
    "ValkeyConnector",
    "ValkeyStreamBackend",
]
