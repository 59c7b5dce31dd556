from typing import Iterator, Literal

from pydantic import PrivateAttr

from .base import MessageQueue, StoredMessage


class MemoryQueue(MessageQueue):
    """In-process queue, lost when the process exits."""

    type: Literal["memory"] = "memory"
    _messages: dict[str, StoredMessage] = PrivateAttr(default_factory=dict)

    def _put(self, message: StoredMessage) -> None:
        self._messages[message.message_id] = message

    def _iter_stored(self) -> Iterator[StoredMessage]:
        yield from list(self._messages.values())

    def _get(self, message_id: str) -> StoredMessage | None:
        return self._messages.get(message_id)

    def _remove(self, message: StoredMessage) -> None:
        del self._messages[message.message_id]

    def _dedup_exists(self, dedup_id: str) -> bool:
        return any(m.dedup_id == dedup_id for m in self._messages.values())

    def __len__(self) -> int:
        return len(self._messages)
