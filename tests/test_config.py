from datetime import date

import pytest
from pydantic import ValidationError

from marketqueue.backend import FileSystemBackend
from marketqueue.config import MarketQueueConfig, WorkerConfig
from marketqueue.io.fetch import ProviderFetcher
from marketqueue.providers import ProviderConfig
from marketqueue.queue import FileSystemQueue
from marketqueue.types import TaskKey
from tests.util import make_provider


def test_config(config_path):
    cfg = MarketQueueConfig.from_yaml(config_path)
    assert isinstance(cfg.queue, FileSystemQueue)
    assert isinstance(cfg.backend, FileSystemBackend)
    assert cfg.queue.base_path == config_path.parent / "queue"
    assert cfg.worker.max_api_calls == 50

    tiingo, alphavantage = cfg.providers
    assert alphavantage.disabled
    assert tiingo.calls["stocks"].all_symbols() == ["VOO", "BIV", "VTI", "VXUS"]
    assert tiingo.n_tasks() == 4

    tasks = list(tiingo.iter_tasks())
    assert tasks[0].key == TaskKey("tiingo", "stocks", "VOO", "eod")
    assert tasks[0].dedup_key == "tiingo|stocks|VOO|eod"
    assert tasks[0].call.response.value_property == "adjClose"


def test_config_not_found():
    with pytest.raises(AssertionError, match="conf.yml not found"):
        MarketQueueConfig.from_yaml("conf.yml")


def test_builders(config_path):
    cfg = MarketQueueConfig.from_yaml(config_path)
    queuer = cfg.build_queuer()
    assert queuer.max_delay_seconds == 30
    assert [p.provider for p in queuer.enabled_providers()] == ["tiingo"]

    fetcher = cfg.build_fetcher()
    assert isinstance(fetcher, ProviderFetcher)
    assert fetcher.start_date == date(2021, 1, 1)
    assert fetcher.end_date == date(2021, 1, 10)

    worker = cfg.build_worker(fetcher)
    assert worker.queue is cfg.queue
    assert worker.processor is fetcher


@pytest.mark.parametrize("symbol", ["A|B", ""])
def test_invalid_symbol(symbol):
    with pytest.raises(ValidationError):
        ProviderConfig.model_validate(
            dict(
                provider="tiingo",
                rate_limit={"per_minute": 5},
                calls={
                    "stocks": {
                        "url": "https://example.com",
                        "function": "eod",
                        "response": {"value_property": "close"},
                        "symbols": [symbol],
                    }
                },
            )
        )


def test_invalid_rate_limit():
    with pytest.raises(ValidationError):
        make_provider(per_minute=0)


def _config(**kwargs):
    config = dict(
        providers=[make_provider("tiingo").model_dump()],
        queue={"type": "memory"},
        backend={"type": "filesystem", "base_path": "data"},
    )
    config.update(kwargs)
    return config


def test_duplicated_providers():
    providers = [make_provider("tiingo").model_dump()] * 2
    with pytest.raises(ValidationError, match="configured more than once"):
        MarketQueueConfig.model_validate(_config(providers=providers))


def test_unknown_disabled_provider():
    with pytest.raises(ValidationError, match="unknown providers"):
        MarketQueueConfig.model_validate(_config(queuer={"disabled": ["polygon"]}))


def test_max_delay_is_capped():
    with pytest.raises(ValidationError):
        MarketQueueConfig.model_validate(_config(queuer={"max_delay_seconds": 901}))


def test_download_dates_from_environment(monkeypatch):
    monkeypatch.setenv("MARKETQUEUE_DOWNLOAD_START_DATE", "2020-06-01")
    monkeypatch.setenv("MARKETQUEUE_DOWNLOAD_END_DATE", "2020-06-30")
    assert WorkerConfig().download_dates() == (date(2020, 6, 1), date(2020, 6, 30))

    cfg = WorkerConfig(download_end_date="2020-07-31")
    assert cfg.download_dates() == (date(2020, 6, 1), date(2020, 7, 31))


def test_download_dates_missing(monkeypatch):
    monkeypatch.delenv("MARKETQUEUE_DOWNLOAD_START_DATE", raising=False)
    monkeypatch.delenv("MARKETQUEUE_DOWNLOAD_END_DATE", raising=False)
    with pytest.raises(ValueError, match="download_start_date is a required input"):
        WorkerConfig(download_end_date="2021-01-01").download_dates()
