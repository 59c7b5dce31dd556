import json
import logging
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, Field

from .types import RateLimit, TaskKey
from .providers import ProviderConfig


logger = logging.getLogger(__name__)


class Checkpoint(BaseModel):
    """Enumeration and rate-schedule progress of the Queuer, one entry per provider."""

    # provider -> ISO minute -> calls scheduled into that minute
    call_counts: dict[str, dict[str, int]] = {}
    delay_seconds: dict[str, int] = {}
    # missing: never started, False: checkpointed, True: fully enumerated
    queued_all_items: dict[str, bool] = {}
    last_queued_item: dict[str, TaskKey] = {}


class Progress(BaseModel):
    items_queued: int = 0
    items_processed: int = 0
    worked_messages: int = 0
    api_calls: int = 0
    # dedup key -> failed attempts, only for tasks not given up on
    failures: dict[str, int] = {}
    stalled: bool = False


class PipelineState(BaseModel):
    """Everything one invocation hands to the next."""

    checkpoint: Checkpoint = Field(default_factory=Checkpoint)
    progress: Progress = Field(default_factory=Progress)
    rate_limits: dict[str, RateLimit] = {}
    wait_seconds: int = 0
    skip_queueing: bool = False

    @property
    def generation_drained(self) -> bool:
        return self.progress.items_processed >= self.progress.items_queued

    def fully_queued(self, providers: Iterable[ProviderConfig]) -> bool:
        return all(
            self.checkpoint.queued_all_items.get(p.provider) is True
            for p in providers
            if not p.disabled
        )

    def is_complete(self, providers: Iterable[ProviderConfig]) -> bool:
        return self.fully_queued(providers) and self.generation_drained

    @classmethod
    def load(cls, path: str | Path, missing_ok: bool = True) -> "PipelineState":
        path = Path(path)
        if not path.exists():
            if not missing_ok:
                raise FileNotFoundError(path)
            logger.debug(f"{path} not found, starting from an empty state")
            return cls()
        return cls.model_validate(json.loads(path.read_text()))

    def dump(self, path: str | Path) -> None:
        path = Path(path)
        tmp = path.with_suffix(".tmp")
        tmp.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"writing {path}")
        tmp.write_text(json.dumps(self.model_dump(mode="json"), indent=2))
        tmp.replace(path)
