from pathlib import Path

import pytest

from marketqueue.queue import MemoryQueue
from tests.constants import DATA_DIR
from tests.util import FakeClock, at


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(at(10, 0, 0))


@pytest.fixture
def queue(clock) -> MemoryQueue:
    return MemoryQueue(clock=clock)


@pytest.fixture
def config_path(tmp_path) -> Path:
    config_template_path = DATA_DIR / "test_config.yml"
    with config_template_path.open("r") as f:
        config = f.read()
    config = config.replace("BASE_PATH", str(tmp_path)).replace(
        "SYMBOLS_CSV", str(DATA_DIR / "symbols.csv")
    )
    config_path = tmp_path / "marketqueue_config.yml"
    with config_path.open("w") as f:
        f.write(config)

    return config_path
