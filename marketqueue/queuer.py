import logging
from typing import Iterable, Iterator, List, Optional, Sequence

from .providers import ProviderConfig
from .queue import MessageQueue, SendEntry
from .schedule import Clock, RateSchedule, utcnow
from .state import Checkpoint, PipelineState
from .types import Task


logger = logging.getLogger(__name__)


class Queuer:
    """
    Sends the tasks of all providers to the queue, spread over the providers'
    per-minute budgets, and checkpoints where it stopped when a provider's
    schedule would reach further into the future than the queue allows.
    """

    def __init__(
        self,
        providers: Sequence[ProviderConfig],
        queue: MessageQueue,
        max_delay_seconds: int = 30,
        min_wait_seconds: int = 60,
        disabled: Iterable[str] = (),
        clock: Clock = utcnow,
    ):
        if max_delay_seconds > queue.max_delay_seconds:
            raise ValueError(
                f"max_delay_seconds={max_delay_seconds} exceeds the queue's "
                f"maximum delay of {queue.max_delay_seconds}s"
            )
        self.providers = list(providers)
        self.queue = queue
        self.max_delay_seconds = max_delay_seconds
        self.min_wait_seconds = min_wait_seconds
        self.disabled = set(disabled)
        self.clock = clock

        self._entries: List[SendEntry] = []
        self._n_sent_batches = 0

    # ----------------------------
    # helpers
    # ----------------------------
    def enabled_providers(self) -> List[ProviderConfig]:
        return [
            p
            for p in self.providers
            if not p.disabled and p.provider not in self.disabled
        ]

    @staticmethod
    def remaining_tasks(
        provider: ProviderConfig, checkpoint: Checkpoint
    ) -> Iterator[Task]:
        """Tasks of ``provider`` that come after the checkpointed one."""
        name = provider.provider
        last = checkpoint.last_queued_item.get(name)
        if checkpoint.queued_all_items.get(name) is not False or last is None:
            yield from provider.iter_tasks()
            return

        tasks = list(provider.iter_tasks())
        for i, task in enumerate(tasks):
            if task.key == last:
                logger.debug(f"{name}: resuming after {last}")
                yield from tasks[i + 1 :]
                return

        logger.warning(f"{name}: checkpointed item {last} not found, starting over")
        yield from tasks

    def wait_seconds(self, delays: Iterable[int]) -> int:
        """
        Half of the largest delay, in whole minutes, but at least the minimum wait.
        Part of the delay will have passed by the time the next invocation runs.
        """
        largest = max(delays, default=0)
        return max(self.min_wait_seconds, int(largest / 2 // 60) * 60)

    # ----------------------------
    # sending
    # ----------------------------
    async def _add(self, task: Task, delay: int):
        self._entries.append(
            SendEntry(
                id=str(len(self._entries)),
                body=task.model_dump_json(),
                dedup_id=task.dedup_key,
                delay_seconds=delay,
            )
        )
        if len(self._entries) >= self.queue.max_batch_size:
            await self._flush()

    async def _flush(self):
        if not self._entries:
            return
        entries, self._entries = self._entries, []
        self._n_sent_batches += 1
        try:
            result = await self.queue.send_batch(entries)
        except Exception as e:
            logger.error(f"failed to send batch of {len(entries)} tasks: {e!r}")
            return
        for failure in result.failed:
            dedup_id = entries[int(failure.id)].dedup_id
            logger.error(f"failed to queue {dedup_id}: {failure.message}")

    async def queue_provider(self, provider: ProviderConfig, state: PipelineState) -> int:
        """Queue what fits of one provider's tasks. Returns the number of tasks queued."""
        name = provider.provider
        checkpoint = state.checkpoint
        call_counts = checkpoint.call_counts.setdefault(name, {})
        schedule = RateSchedule(
            provider.rate_limit, call_counts, self.clock(), self.max_delay_seconds
        )

        n_queued = 0
        for task in self.remaining_tasks(provider, checkpoint):
            delay = schedule.next()
            if delay is None:
                checkpoint.queued_all_items[name] = False
                checkpoint.delay_seconds[name] = schedule.delay_seconds
                logger.info(
                    f"{name}: queued {n_queued} tasks, deferring the rest, "
                    f"next slot opens in {schedule.delay_seconds}s"
                )
                return n_queued

            await self._add(task, delay)
            checkpoint.last_queued_item[name] = task.key
            n_queued += 1

        checkpoint.queued_all_items[name] = True
        checkpoint.last_queued_item.pop(name, None)
        checkpoint.delay_seconds[name] = schedule.delay_seconds
        logger.info(f"{name}: queued {n_queued} tasks, all tasks queued")
        return n_queued

    # ----------------------------
    # Main entry point
    # ----------------------------
    async def run(self, state: Optional[PipelineState] = None) -> PipelineState:
        state = state or PipelineState()
        if state.skip_queueing:
            logger.info("skipping queueing")
            state.progress.items_queued = 0
            state.wait_seconds = 0
            return state

        self._entries = []
        self._n_sent_batches = 0
        items_queued = 0
        delays = []
        for provider in self.enabled_providers():
            name = provider.provider
            state.rate_limits[name] = provider.rate_limit
            if state.checkpoint.queued_all_items.get(name) is True:
                logger.debug(f"{name}: all tasks already queued")
                continue
            items_queued += await self.queue_provider(provider, state)
            delays.append(state.checkpoint.delay_seconds[name])
        await self._flush()

        # a new checkpoint generation starts with every pass
        state.progress.items_queued = items_queued
        state.progress.items_processed = 0
        state.wait_seconds = self.wait_seconds(delays)
        logger.info(
            f"queued {items_queued} tasks in {self._n_sent_batches} batches, "
            f"recommending to wait {state.wait_seconds}s"
        )
        return state
