import json
import logging
from hashlib import sha256
from pathlib import Path
from typing import Iterator, Literal

from .base import MessageQueue, StoredMessage


logger = logging.getLogger(__name__)


class FileSystemQueue(MessageQueue):
    """
    Queue kept in a directory, one JSON file per message, so that it survives
    between separate invocations.
    """

    type: Literal["filesystem"] = "filesystem"
    base_path: Path

    # ----------------------------
    # Helpers for paths
    # ----------------------------
    def _message_path(self, message_id: str) -> Path:
        return self.base_path / "messages" / f"{message_id}.json"

    def _dedup_path(self, dedup_id: str) -> Path:
        return self.base_path / "dedup" / sha256(dedup_id.encode()).hexdigest()

    def _write(self, path: Path, text: str) -> None:
        tmp = path.with_suffix(".tmp")
        tmp.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(text)
        tmp.replace(path)

    # ----------------------------
    # Storage primitives
    # ----------------------------
    def _put(self, message: StoredMessage) -> None:
        path = self._message_path(message.message_id)
        logger.debug(f"writing {path}")
        self._write(path, message.model_dump_json())
        dedup_path = self._dedup_path(message.dedup_id)
        if not dedup_path.exists():
            self._write(dedup_path, message.message_id)

    def _iter_stored(self) -> Iterator[StoredMessage]:
        # message ids start with the send time, so sorting keeps the send order
        for path in sorted((self.base_path / "messages").glob("*.json")):
            try:
                yield StoredMessage.model_validate(json.loads(path.read_text()))
            except FileNotFoundError:
                continue

    def _get(self, message_id: str) -> StoredMessage | None:
        path = self._message_path(message_id)
        if not path.exists():
            return None
        return StoredMessage.model_validate(json.loads(path.read_text()))

    def _remove(self, message: StoredMessage) -> None:
        logger.debug(f"removing {message.message_id}")
        self._message_path(message.message_id).unlink(missing_ok=True)
        self._dedup_path(message.dedup_id).unlink(missing_ok=True)

    def _dedup_exists(self, dedup_id: str) -> bool:
        path = self._dedup_path(dedup_id)
        if not path.exists():
            return False
        # a marker without its message is left over from an interrupted delete
        if self._message_path(path.read_text()).exists():
            return True
        path.unlink(missing_ok=True)
        return False
