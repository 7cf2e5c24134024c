"""
Sequential Batch Runner

Runs independent tasks one at a time in input order. Each task fails or
succeeds on its own, with one exception: quota exhaustion on the shared
default key aborts the whole run, because every remaining task would hit the
same wall.
"""

from typing import AsyncIterator, Sequence

from ..models import ErrorKind, RunEvent, RunEventType, TaskDescriptor, TaskResult
from .context import RunContext


class SequentialBatchRunner:
    """Executes a task list strictly in order, one dispatch at a time."""

    def __init__(self, ctx: RunContext):
        self.ctx = ctx

    def _event(self, event_type: RunEventType, **fields) -> RunEvent:
        return RunEvent(run_id=self.ctx.run_id, type=event_type, **fields)

    async def run(self, tasks: Sequence[TaskDescriptor]) -> AsyncIterator[RunEvent]:
        """
        Execute `tasks` and yield a RunEvent for every state change.

        Stream shape: one STARTED, then RUNNING and terminal TASK_UPDATEs per
        task, then COMPLETED. On shared-key quota exhaustion the stream ends
        with ABORTED instead and later tasks are never dispatched.
        """
        ctx = self.ctx
        task_ids = [task.id for task in tasks]
        if len(set(task_ids)) != len(task_ids):
            raise ValueError("Task ids must be unique within a run")

        total = len(tasks)
        completed = 0
        ctx.log(f"Starting batch of {total} task(s)")
        yield self._event(RunEventType.STARTED, task_ids=task_ids, total=total)

        for index, task in enumerate(tasks):
            if index > 0:
                await ctx.pace()

            result = TaskResult(task_id=task.id).mark_running()
            ctx.governor.record_request()
            yield self._event(
                RunEventType.TASK_UPDATE, task_id=task.id, result=result, completed=completed, total=total
            )

            try:
                output = await ctx.client.generate(task.images, task.prompt, ctx.credential)
            except Exception as e:
                classified = ctx.classify(e)
                if classified.kind == ErrorKind.QUOTA_EXHAUSTED and not ctx.has_user_credential:
                    ctx.log(f"❌ Shared quota exhausted at task {task.id}; aborting batch")
                    yield self._event(
                        RunEventType.ABORTED, task_id=task.id, completed=completed, total=total,
                        error=classified.message,
                    )
                    return
                ctx.log(f"   ❌ Task {task.id} failed ({classified.kind.value})")
                result = result.mark_failed(classified.kind, classified.message)
            else:
                ctx.log(f"   ✅ Task {task.id} succeeded")
                result = result.mark_success(output)

            completed += 1
            yield self._event(
                RunEventType.TASK_UPDATE, task_id=task.id, result=result, completed=completed, total=total
            )

        ctx.log(f"✅ Batch finished: {completed}/{total} task(s) processed")
        yield self._event(RunEventType.COMPLETED, completed=completed, total=total)
