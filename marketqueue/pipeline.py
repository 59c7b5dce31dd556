import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from .providers import ProviderConfig
from .queuer import Queuer
from .state import PipelineState
from .worker import Worker


logger = logging.getLogger(__name__)


class Pipeline:
    """
    Local orchestrator: runs the Queuer, then the Worker until the generation is
    drained, and goes back to the Queuer until every provider is fully queued.
    """

    def __init__(
        self,
        queuer: Queuer,
        worker: Worker,
        providers: Sequence[ProviderConfig],
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        max_iterations: int = 1000,
        max_idle_invocations: int = 3,
    ):
        self.queuer = queuer
        self.worker = worker
        self.providers = [p for p in providers if p.provider not in queuer.disabled]
        self.sleep = sleep
        self.max_iterations = max_iterations
        self.max_idle_invocations = max_idle_invocations

    async def drain(self, state: PipelineState) -> PipelineState:
        idle = 0
        while not state.generation_drained:
            state = await self.worker.run(state)
            progress = state.progress
            if state.generation_drained:
                break

            if progress.api_calls > 0:
                idle = 0
                continue

            idle += 1
            if progress.stalled:
                logger.warning("worker stalled, waiting before the next invocation")
            if idle >= self.max_idle_invocations:
                logger.error(
                    f"no progress after {idle} invocations, "
                    f"{progress.items_processed}/{progress.items_queued} processed"
                )
                break
            await self.sleep(state.wait_seconds)
        return state

    async def run(self, state: Optional[PipelineState] = None) -> PipelineState:
        state = state or PipelineState()
        for iteration in range(self.max_iterations):
            logger.info(f"iteration {iteration}")
            state = await self.queuer.run(state)
            if state.skip_queueing:
                return state

            state = await self.drain(state)
            if state.is_complete(self.providers):
                logger.info("all providers queued and processed")
                return state
            if state.fully_queued(self.providers):
                logger.error("all providers queued but the queue could not be drained")
                return state

            logger.info(f"waiting {state.wait_seconds}s before queueing again")
            await self.sleep(state.wait_seconds)

        raise RuntimeError(f"pipeline not complete after {self.max_iterations} iterations")
