import abc
import logging
import time
import uuid
from typing import ClassVar, Iterator, List

from pydantic import BaseModel, Field

from ..schedule import Clock, utcnow


logger = logging.getLogger(__name__)


class SendEntry(BaseModel):
    id: str
    body: str
    dedup_id: str
    delay_seconds: int = 0


class Message(BaseModel):
    message_id: str
    receipt_handle: str
    body: str
    dedup_id: str
    receive_count: int = 1


class StoredMessage(BaseModel):
    message_id: str
    body: str
    dedup_id: str
    # end of the send delay
    available_at: float
    # end of the visibility timeout of the latest receive
    visible_at: float
    receive_count: int = 0
    receipt_handle: str = ""


class BatchFailure(BaseModel):
    id: str
    message: str


class BatchResult(BaseModel):
    successful: List[str] = []
    failed: List[BatchFailure] = []


class MessageQueue(abc.ABC, BaseModel):
    """
    Durable at-least-once queue with batched send, receive and delete.
    Received messages stay hidden for ``visibility_timeout`` seconds and are
    redelivered unless deleted in the meantime.
    """

    type: str
    max_batch_size: ClassVar[int] = 10
    max_delay_seconds: ClassVar[int] = 900
    visibility_timeout: float = 30.0
    clock: Clock = Field(default=utcnow, exclude=True)

    # --- storage primitives ---
    @abc.abstractmethod
    def _put(self, message: StoredMessage) -> None: ...
    @abc.abstractmethod
    def _iter_stored(self) -> Iterator[StoredMessage]: ...
    @abc.abstractmethod
    def _get(self, message_id: str) -> StoredMessage | None: ...
    @abc.abstractmethod
    def _remove(self, message: StoredMessage) -> None: ...
    @abc.abstractmethod
    def _dedup_exists(self, dedup_id: str) -> bool: ...

    def _now(self) -> float:
        return self.clock().timestamp()

    def _check_batch_size(self, n: int):
        if n > self.max_batch_size:
            raise ValueError(
                f"batch of {n} entries exceeds the maximum of {self.max_batch_size}"
            )

    # ----------------------------
    # Queue operations
    # ----------------------------
    async def send_batch(self, entries: List[SendEntry]) -> BatchResult:
        self._check_batch_size(len(entries))
        result = BatchResult()
        now = self._now()
        for entry in entries:
            if not 0 <= entry.delay_seconds <= self.max_delay_seconds:
                result.failed.append(
                    BatchFailure(
                        id=entry.id,
                        message=f"invalid delay {entry.delay_seconds}s",
                    )
                )
                continue
            if self._dedup_exists(entry.dedup_id):
                logger.debug(f"{entry.dedup_id} is already queued")
                result.successful.append(entry.id)
                continue

            available_at = now + entry.delay_seconds
            self._put(
                StoredMessage(
                    message_id=self._new_message_id(),
                    body=entry.body,
                    dedup_id=entry.dedup_id,
                    available_at=available_at,
                    visible_at=available_at,
                )
            )
            result.successful.append(entry.id)
        return result

    async def receive(self, max_messages: int) -> List[Message]:
        self._check_batch_size(max_messages)
        now = self._now()
        received = []
        for stored in self._iter_stored():
            if len(received) >= max_messages:
                break
            if stored.visible_at > now:
                continue
            stored.receive_count += 1
            stored.receipt_handle = uuid.uuid4().hex
            stored.visible_at = now + self.visibility_timeout
            self._put(stored)
            received.append(
                Message(
                    message_id=stored.message_id,
                    receipt_handle=stored.receipt_handle,
                    body=stored.body,
                    dedup_id=stored.dedup_id,
                    receive_count=stored.receive_count,
                )
            )
        logger.debug(f"received {len(received)} messages")
        return received

    async def delete_batch(self, messages: List[Message]) -> BatchResult:
        self._check_batch_size(len(messages))
        result = BatchResult()
        for message in messages:
            stored = self._get(message.message_id)
            if stored is None or stored.receipt_handle != message.receipt_handle:
                result.failed.append(
                    BatchFailure(
                        id=message.message_id,
                        message="message not found or receipt handle expired",
                    )
                )
                continue
            self._remove(stored)
            result.successful.append(message.message_id)
        return result

    async def approximate_depth(self) -> int:
        """Messages that a receive would return now, in flight ones are not counted."""
        now = self._now()
        return sum(1 for stored in self._iter_stored() if stored.visible_at <= now)

    def _new_message_id(self) -> str:
        return f"{time.time_ns():020d}-{uuid.uuid4().hex[:12]}"
