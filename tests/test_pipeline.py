import asyncio
import logging

import pytest

from marketqueue.pipeline import Pipeline
from marketqueue.queuer import Queuer
from marketqueue.state import PipelineState
from marketqueue.worker import Worker
from tests.dummy_processor import DummyProcessor
from tests.util import make_provider


logger = logging.getLogger("marketqueue.test")


@pytest.fixture
def providers():
    return [
        make_provider("tiingo", n_symbols=30, per_minute=7),
        make_provider("alphavantage", n_symbols=12, per_minute=5, call_types=("crypto",)),
        make_provider("polygon", n_symbols=5, disabled=True),
    ]


def make_pipeline(providers, queue, clock, processor, max_api_calls=10):
    queuer = Queuer(providers, queue, clock=clock)
    worker = Worker(queue, processor, max_api_calls=max_api_calls, clock=clock)
    return Pipeline(queuer, worker, providers, sleep=clock.sleep)


def test_pipeline_completes(providers, queue, clock):
    processor = DummyProcessor()
    pipeline = make_pipeline(providers, queue, clock, processor)
    state = asyncio.run(pipeline.run())

    assert state.is_complete(providers)
    assert len(queue) == 0
    expected = {t.dedup_key for p in providers[:2] for t in p.iter_tasks()}
    assert set(processor.calls) == expected
    assert all(n == 1 for n in processor.calls.values())

    for p in providers[:2]:
        counts = state.checkpoint.call_counts[p.provider]
        assert max(counts.values()) <= p.rate_limit.per_minute
    assert "polygon" not in state.checkpoint.call_counts
    # five minutes of tiingo's budget, the last one partially used
    assert clock.now.minute == 4


def test_pipeline_gives_up_on_failing_task(providers, queue, clock):
    bad_key = "alphavantage|crypto|SYM0003|crypto_daily"
    processor = DummyProcessor(failures={bad_key: -1})
    pipeline = make_pipeline(providers, queue, clock, processor)
    state = asyncio.run(pipeline.run())

    assert state.is_complete(providers)
    assert processor.calls[bad_key] == 4
    assert state.progress.failures == {}
    assert len(queue) == 0


def test_pipeline_resumes_from_state(providers, queue, clock, tmp_path):
    state_path = tmp_path / "state.json"
    processor = DummyProcessor()
    pipeline = make_pipeline(providers, queue, clock, processor)

    # one queue and work round trip through the state file
    state = asyncio.run(pipeline.queuer.run())
    state.dump(state_path)
    state = asyncio.run(pipeline.drain(PipelineState.load(state_path)))
    state.dump(state_path)
    assert state.generation_drained
    assert not state.fully_queued(providers)

    clock.advance(state.wait_seconds)
    state = asyncio.run(pipeline.run(PipelineState.load(state_path)))
    assert state.is_complete(providers)
    assert all(n == 1 for n in processor.calls.values())
    assert len(processor.calls) == 42


def test_pipeline_skip_queueing(providers, queue, clock):
    pipeline = make_pipeline(providers, queue, clock, DummyProcessor())
    state = asyncio.run(pipeline.run(PipelineState(skip_queueing=True)))
    assert state.progress.items_queued == 0
    assert len(queue) == 0


def test_pipeline_iteration_limit(providers, queue, clock):
    pipeline = make_pipeline(providers, queue, clock, DummyProcessor())
    pipeline.max_iterations = 2
    with pytest.raises(RuntimeError, match="not complete after 2 iterations"):
        asyncio.run(pipeline.run())
