from typing import Union

from .base import BatchFailure, BatchResult, Message, MessageQueue, SendEntry
from .filesystem import FileSystemQueue
from .memory import MemoryQueue

QueueType = Union[MemoryQueue, FileSystemQueue]

__all__ = [
    "BatchFailure",
    "BatchResult",
    "Message",
    "MessageQueue",
    "SendEntry",
    "FileSystemQueue",
    "MemoryQueue",
    "QueueType",
]
