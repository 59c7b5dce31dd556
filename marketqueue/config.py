import os
from datetime import date
from pathlib import Path
from typing import List, Self

import yaml
from pydantic import BaseModel, Field, model_validator

from .backend import BackendType
from .io.dates import parse_date
from .io.fetch import ProviderFetcher, TaskProcessor
from .pipeline import Pipeline
from .providers import ProviderConfig
from .queue import MessageQueue, QueueType
from .queuer import Queuer
from .worker import Worker


class QueuerConfig(BaseModel):
    max_delay_seconds: int = Field(30, ge=0, le=MessageQueue.max_delay_seconds)
    min_wait_seconds: int = Field(60, ge=0)
    disabled: List[str] = []


class WorkerConfig(BaseModel):
    max_api_calls: int = Field(50, ge=1)
    max_concurrency: int = Field(10, ge=1)
    give_up_threshold: int = Field(3, ge=0)
    download_start_date: str | None = None
    download_end_date: str | None = None
    timeout: float = 30.0

    def download_dates(self) -> tuple[date, date]:
        """Resolve the download window, falling back to the environment."""
        dates = []
        for key in ["download_start_date", "download_end_date"]:
            value = getattr(self, key) or os.environ.get(f"MARKETQUEUE_{key.upper()}")
            parsed = parse_date(value)
            if parsed is None:
                raise ValueError(
                    f"{key} is a required input and it was not provided or invalid: {value}"
                )
            dates.append(parsed)
        return dates[0], dates[1]


class MarketQueueConfig(BaseModel):
    providers: List[ProviderConfig]
    queue: QueueType = Field(..., discriminator="type")
    backend: BackendType = Field(..., discriminator="type")
    queuer: QueuerConfig = Field(default_factory=QueuerConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)

    @classmethod
    def from_yaml(cls, path: str | Path):
        path = Path(path)
        assert path.exists(), f"{path} not found!"
        with path.open("r") as f:
            config_dict = yaml.safe_load(f)
        return cls.model_validate(config_dict)

    @model_validator(mode="after")
    def validate_unique_providers(self) -> Self:
        names = [p.provider for p in self.providers]
        duplicated = sorted({n for n in names if names.count(n) > 1})
        if duplicated:
            raise ValueError(f"providers configured more than once: {duplicated}")
        unknown = sorted(set(self.queuer.disabled) - set(names))
        if unknown:
            raise ValueError(f"unknown providers in queuer.disabled: {unknown}")
        return self

    def build_queuer(self) -> Queuer:
        return Queuer(
            providers=self.providers,
            queue=self.queue,
            max_delay_seconds=self.queuer.max_delay_seconds,
            min_wait_seconds=self.queuer.min_wait_seconds,
            disabled=self.queuer.disabled,
        )

    def build_fetcher(self) -> ProviderFetcher:
        start_date, end_date = self.worker.download_dates()
        return ProviderFetcher(
            backend=self.backend,
            start_date=start_date,
            end_date=end_date,
            secrets=os.environ,
            timeout=self.worker.timeout,
        )

    def build_worker(self, processor: TaskProcessor | None = None) -> Worker:
        return Worker(
            queue=self.queue,
            processor=processor or self.build_fetcher(),
            max_api_calls=self.worker.max_api_calls,
            max_concurrency=self.worker.max_concurrency,
            give_up_threshold=self.worker.give_up_threshold,
        )

    def build_pipeline(self, processor: TaskProcessor | None = None) -> Pipeline:
        return Pipeline(
            queuer=self.build_queuer(),
            worker=self.build_worker(processor),
            providers=self.providers,
        )
