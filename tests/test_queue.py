import asyncio

import pytest

from marketqueue.queue import FileSystemQueue, MemoryQueue, SendEntry


@pytest.fixture(params=["memory", "filesystem"])
def any_queue(request, clock, tmp_path):
    if request.param == "memory":
        return MemoryQueue(clock=clock)
    return FileSystemQueue(base_path=tmp_path / "queue", clock=clock)


def entries(n: int, delay: int = 0, prefix: str = "task"):
    return [
        SendEntry(id=str(i), body=f'{{"i": {i}}}', dedup_id=f"{prefix}{i}", delay_seconds=delay)
        for i in range(n)
    ]


def test_send_and_receive(any_queue):
    result = asyncio.run(any_queue.send_batch(entries(3)))
    assert result.successful == ["0", "1", "2"]
    assert result.failed == []

    messages = asyncio.run(any_queue.receive(10))
    assert [m.body for m in messages] == ['{"i": 0}', '{"i": 1}', '{"i": 2}']
    assert all(m.receive_count == 1 for m in messages)

    result = asyncio.run(any_queue.delete_batch(messages))
    assert len(result.successful) == 3
    assert asyncio.run(any_queue.approximate_depth()) == 0
    assert asyncio.run(any_queue.receive(10)) == []


def test_send_delay(any_queue, clock):
    asyncio.run(any_queue.send_batch(entries(2, delay=20)))
    assert asyncio.run(any_queue.receive(10)) == []
    assert asyncio.run(any_queue.approximate_depth()) == 0

    clock.advance(20)
    assert asyncio.run(any_queue.approximate_depth()) == 2
    assert len(asyncio.run(any_queue.receive(10))) == 2


def test_invalid_delay(any_queue):
    batch = entries(2)
    batch[1].delay_seconds = 901
    result = asyncio.run(any_queue.send_batch(batch))
    assert result.successful == ["0"]
    assert [f.id for f in result.failed] == ["1"]


def test_visibility_timeout_redelivers(any_queue, clock):
    asyncio.run(any_queue.send_batch(entries(1)))
    first = asyncio.run(any_queue.receive(10))
    assert len(first) == 1

    # in flight messages are neither delivered nor counted
    assert asyncio.run(any_queue.receive(10)) == []
    assert asyncio.run(any_queue.approximate_depth()) == 0

    clock.advance(any_queue.visibility_timeout)
    second = asyncio.run(any_queue.receive(10))
    assert len(second) == 1
    assert second[0].message_id == first[0].message_id
    assert second[0].receive_count == 2

    # the first receipt expired with the redelivery
    result = asyncio.run(any_queue.delete_batch(first))
    assert result.successful == []
    assert result.failed[0].id == first[0].message_id
    result = asyncio.run(any_queue.delete_batch(second))
    assert result.successful == [first[0].message_id]


def test_deduplication(any_queue):
    asyncio.run(any_queue.send_batch(entries(3)))
    result = asyncio.run(any_queue.send_batch(entries(3)))
    assert len(result.successful) == 3
    assert asyncio.run(any_queue.approximate_depth()) == 3

    messages = asyncio.run(any_queue.receive(10))
    asyncio.run(any_queue.delete_batch(messages))
    # once deleted, the same task can be queued again
    asyncio.run(any_queue.send_batch(entries(3)))
    assert asyncio.run(any_queue.approximate_depth()) == 3


def test_receive_respects_max(any_queue):
    asyncio.run(any_queue.send_batch(entries(10)))
    assert len(asyncio.run(any_queue.receive(4))) == 4
    assert len(asyncio.run(any_queue.receive(10))) == 6


@pytest.mark.parametrize("operation", ["send", "receive"])
def test_batch_size_limit(any_queue, operation):
    with pytest.raises(ValueError, match="exceeds the maximum"):
        if operation == "send":
            asyncio.run(any_queue.send_batch(entries(11)))
        else:
            asyncio.run(any_queue.receive(11))


def test_filesystem_queue_persists(tmp_path, clock):
    base_path = tmp_path / "queue"
    asyncio.run(FileSystemQueue(base_path=base_path, clock=clock).send_batch(entries(5)))

    reopened = FileSystemQueue(base_path=base_path, clock=clock)
    messages = asyncio.run(reopened.receive(10))
    assert [m.dedup_id for m in messages] == [f"task{i}" for i in range(5)]
    asyncio.run(reopened.delete_batch(messages))
    assert list((base_path / "messages").glob("*.json")) == []
    assert list((base_path / "dedup").iterdir()) == []


def test_filesystem_stale_dedup_marker(tmp_path, clock):
    queue = FileSystemQueue(base_path=tmp_path / "queue", clock=clock)
    asyncio.run(queue.send_batch(entries(1)))
    for path in (tmp_path / "queue" / "messages").glob("*.json"):
        path.unlink()

    asyncio.run(queue.send_batch(entries(1)))
    assert asyncio.run(queue.approximate_depth()) == 1
