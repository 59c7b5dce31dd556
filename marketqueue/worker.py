import asyncio
import logging
from collections import defaultdict
from typing import List, Optional

from pydantic import ValidationError

from .io.fetch import TaskProcessor
from .queue import Message, MessageQueue
from .schedule import Clock, minute_bucket, utcnow
from .state import PipelineState, Progress
from .types import RateLimit, Task


logger = logging.getLogger(__name__)


class Worker:
    """
    Drains the queue within one invocation's call budget. Messages are only deleted
    once their task succeeded or was given up on, everything else is redelivered.
    """

    max_empty_receives = 2

    def __init__(
        self,
        queue: MessageQueue,
        processor: TaskProcessor,
        max_api_calls: int = 50,
        max_concurrency: int = 10,
        give_up_threshold: int = 3,
        clock: Clock = utcnow,
    ):
        self.queue = queue
        self.processor = processor
        self.max_api_calls = max_api_calls
        self.max_concurrency = max_concurrency
        self.give_up_threshold = give_up_threshold
        self.clock = clock

        # provider -> minute bucket -> calls made by this invocation
        self.provider_calls: dict[str, dict[str, int]] = defaultdict(dict)
        self.api_calls = 0

    # ----------------------------
    # per-message processing
    # ----------------------------
    def _take_call(self, provider: str, rate_limits: dict[str, RateLimit]) -> bool:
        """Count one call against the provider's budget, False if it is spent."""
        if self.api_calls >= self.max_api_calls:
            return False
        calls = self.provider_calls[provider]
        bucket = minute_bucket(self.clock())
        limit = rate_limits.get(provider)
        if limit is not None and calls.get(bucket, 0) >= limit.per_minute:
            return False
        calls[bucket] = calls.get(bucket, 0) + 1
        self.api_calls += 1
        return True

    async def process_message(
        self,
        message: Message,
        progress: Progress,
        rate_limits: dict[str, RateLimit],
        semaphore: asyncio.Semaphore,
    ) -> Optional[bool]:
        """
        Returns True if the message should be deleted, False if it stays for
        redelivery and None if it was held back without calling the provider.
        """
        try:
            task = Task.model_validate_json(message.body)
        except ValidationError as e:
            logger.error(f"dropping malformed message {message.message_id}: {e}")
            return True
        key = task.dedup_key

        async with semaphore:
            if not self._take_call(task.provider, rate_limits):
                logger.debug(f"call budget of {task.provider} spent, holding back {key}")
                return None
            result = await self.processor.process(task)

        if result.success:
            logger.debug(f"processed {key}: {result.records_written} records")
            progress.failures.pop(key, None)
            return True

        failure_count = progress.failures.get(key, 0)
        if failure_count < self.give_up_threshold:
            logger.warning(f"failed to process {key}")
            progress.failures[key] = failure_count + 1
            return False

        logger.warning(f"gave up processing {key} after {failure_count + 1} attempts")
        progress.failures.pop(key, None)
        return True

    # ----------------------------
    # batches
    # ----------------------------
    async def _delete(self, messages: List[Message]) -> int:
        if not messages:
            return 0
        try:
            result = await self.queue.delete_batch(messages)
        except Exception as e:
            logger.error(f"failed to delete {len(messages)} messages: {e!r}")
            return 0
        for failure in result.failed:
            logger.error(f"failed to delete {failure.id}: {failure.message}")
        return len(result.successful)

    async def receive_and_process(
        self, state: PipelineState, semaphore: asyncio.Semaphore
    ) -> tuple[int, int]:
        """One receive cycle. Returns the number of messages received and deleted."""
        n_max = min(self.queue.max_batch_size, self.max_api_calls - self.api_calls)
        try:
            messages = await self.queue.receive(n_max)
        except Exception as e:
            logger.error(f"failed to receive messages: {e!r}")
            return 0, 0
        if not messages:
            logger.info("no messages received")
            return 0, 0

        outcomes = await asyncio.gather(
            *(
                self.process_message(m, state.progress, state.rate_limits, semaphore)
                for m in messages
            )
        )
        done = [m for m, outcome in zip(messages, outcomes) if outcome]
        n_deleted = await self._delete(done)

        if all(outcome is None for outcome in outcomes):
            # nothing could be called, treat like an empty receive
            return 0, n_deleted
        return len(messages), n_deleted

    # ----------------------------
    # Main entry point
    # ----------------------------
    async def run(self, state: PipelineState) -> PipelineState:
        progress = state.progress
        progress.stalled = False
        self.provider_calls.clear()
        self.api_calls = 0

        semaphore = asyncio.Semaphore(self.max_concurrency)
        worked_messages = 0
        empty_receives = 0
        while self.api_calls < self.max_api_calls:
            n_received, n_deleted = await self.receive_and_process(state, semaphore)
            worked_messages += n_deleted
            if n_received > 0:
                empty_receives = 0
                continue

            empty_receives += 1
            if empty_receives >= self.max_empty_receives:
                depth = await self.queue.approximate_depth()
                logger.info(f"approximate number of visible messages: {depth}")
                if depth > 0 and worked_messages == 0:
                    logger.error(
                        f"queue still holds {depth} visible messages but none could "
                        f"be processed, the pipeline is stalled"
                    )
                    progress.stalled = True
                break

        progress.worked_messages = worked_messages
        progress.api_calls = self.api_calls
        progress.items_processed += worked_messages
        logger.info(
            f"worked {worked_messages} messages with {self.api_calls} calls, "
            f"{progress.items_processed}/{progress.items_queued} processed"
        )
        return state
