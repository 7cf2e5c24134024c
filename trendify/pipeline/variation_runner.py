"""
Bounded-Concurrency Variation Runner

Generates N variations of one request with a fixed pool of workers pulling
from a shared FIFO queue. Every item is paced, recorded with the rate
governor and finishes independently. Quota exhaustion starts the shared
cooldown but the remaining items are still attempted.
"""

import asyncio
from typing import AsyncIterator, Optional, Sequence

from ..core.constants import VARIATION_POOL_SIZE, MIN_VARIATIONS, MAX_VARIATIONS
from ..models import ErrorKind, ImageArtifact, RunEvent, RunEventType, TaskDescriptor, TaskResult
from .context import RunContext


def clamp_quantity(quantity: Optional[int]) -> int:
    """Clamp a requested variation count into the supported range."""
    return max(MIN_VARIATIONS, min(MAX_VARIATIONS, int(quantity or MIN_VARIATIONS)))


class VariationRunner:
    """Runs N copies of one request across `pool_size` concurrent workers."""

    def __init__(self, ctx: RunContext, pool_size: int = VARIATION_POOL_SIZE):
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self.ctx = ctx
        self.pool_size = pool_size

    def _event(self, event_type: RunEventType, **fields) -> RunEvent:
        return RunEvent(run_id=self.ctx.run_id, type=event_type, **fields)

    async def run(
        self,
        images: Sequence[ImageArtifact],
        prompt: str,
        quantity: int,
    ) -> AsyncIterator[RunEvent]:
        """Yield RunEvents for every item; results are keyed by item position."""
        ctx = self.ctx
        quantity = clamp_quantity(quantity)
        # Same prompt for every item; diversified prompts are a separate client call.
        items = [TaskDescriptor(id=index, images=tuple(images), prompt=prompt) for index in range(quantity)]

        work_queue: asyncio.Queue = asyncio.Queue()
        for item in items:
            work_queue.put_nowait(item)
        events: asyncio.Queue = asyncio.Queue()
        completed = 0

        async def worker(worker_id: int) -> None:
            nonlocal completed
            while True:
                try:
                    item = work_queue.get_nowait()
                except asyncio.QueueEmpty:
                    return

                await ctx.pace()
                ctx.governor.record_request()
                result = TaskResult(task_id=item.id).mark_running()
                events.put_nowait(self._event(
                    RunEventType.TASK_UPDATE, task_id=item.id, result=result, completed=completed, total=quantity
                ))

                try:
                    output = await ctx.client.generate(item.images, item.prompt, ctx.credential)
                except Exception as e:
                    classified = ctx.classify(e)
                    if classified.kind == ErrorKind.QUOTA_EXHAUSTED:
                        ctx.governor.trigger_cooldown()
                    ctx.log(f"   ❌ Variation {item.id} failed on worker {worker_id} ({classified.kind.value})")
                    result = result.mark_failed(classified.kind, classified.headline)
                else:
                    result = result.mark_success(output)

                completed += 1
                events.put_nowait(self._event(
                    RunEventType.TASK_UPDATE, task_id=item.id, result=result, completed=completed, total=quantity
                ))

        async def supervise() -> None:
            try:
                await asyncio.gather(*(worker(worker_id) for worker_id in range(self.pool_size)))
            finally:
                events.put_nowait(None)

        ctx.log(f"Starting {quantity} variation(s) with {self.pool_size} worker(s)")
        yield self._event(RunEventType.STARTED, task_ids=[item.id for item in items], total=quantity)

        supervisor = asyncio.create_task(supervise())
        try:
            while True:
                event = await events.get()
                if event is None:
                    break
                yield event
            await supervisor
        finally:
            if not supervisor.done():
                supervisor.cancel()

        ctx.log(f"✅ Variations finished: {completed}/{quantity}")
        yield self._event(RunEventType.COMPLETED, completed=completed, total=quantity)
