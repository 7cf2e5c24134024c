import asyncio
import logging
from typing import AsyncGenerator, Dict, List, Optional

from trendify.api.schemas import TaskResultResponse, WSMessageType
from trendify.api.websocket import connection_manager
from trendify.models import RunEvent, RunEventType, RunMode, RunSnapshot, RunState
from trendify.pipeline.context import RunContext

logger = logging.getLogger(__name__)


EVENT_MESSAGE_TYPES = {
    RunEventType.STARTED: WSMessageType.RUN_STARTED,
    RunEventType.TASK_UPDATE: WSMessageType.TASK_UPDATE,
    RunEventType.COMPLETED: WSMessageType.RUN_COMPLETE,
    RunEventType.ABORTED: WSMessageType.RUN_ABORTED,
}


def event_payload(event: RunEvent) -> dict:
    """Render a run event as the `data` of a WebSocket message"""
    data = {
        "completed": event.completed,
        "total": event.total,
        "progress_percent": round(event.progress * 100),
    }
    if event.task_ids:
        data["task_ids"] = list(event.task_ids)
    if event.task_id is not None:
        data["task_id"] = event.task_id
    if event.result is not None:
        data["result"] = TaskResultResponse.from_result(event.result).model_dump(mode="json")
    if event.error:
        data["error"] = event.error
    return data


class RunTaskProcessor:
    """Consumes run event streams in the background and keeps a snapshot per run"""

    def __init__(self):
        self.active_tasks: Dict[str, asyncio.Task] = {}
        self.snapshots: Dict[str, RunSnapshot] = {}

    def register_run(self, run_id: str, mode: RunMode, total: int = 0) -> RunSnapshot:
        """Create the snapshot a run's events will be folded into"""
        snapshot = RunSnapshot(run_id=run_id, mode=mode, total=total)
        self.snapshots[run_id] = snapshot
        return snapshot

    def get_snapshot(self, run_id: str) -> Optional[RunSnapshot]:
        return self.snapshots.get(run_id)

    async def start_run(self, ctx: RunContext, stream: AsyncGenerator[RunEvent, None]):
        """Start consuming a run's event stream in the background"""
        if ctx.run_id in self.active_tasks:
            logger.warning(f"Run {ctx.run_id} is already running")
            return
        if ctx.run_id not in self.snapshots:
            self.register_run(ctx.run_id, ctx.mode, ctx.total)

        task = asyncio.create_task(self._execute_run(ctx, stream))
        self.active_tasks[ctx.run_id] = task

        def cleanup_tasks(t):
            self.active_tasks.pop(ctx.run_id, None)

        task.add_done_callback(cleanup_tasks)
        logger.info(f"Started background task for {ctx.mode.value} run {ctx.run_id}")

    async def _execute_run(self, ctx: RunContext, stream: AsyncGenerator[RunEvent, None]):
        snapshot = self.snapshots[ctx.run_id]
        try:
            async for event in stream:
                snapshot.apply(event)
                await connection_manager.send_event(
                    ctx.run_id, EVENT_MESSAGE_TYPES[event.type], event_payload(event)
                )
            logger.info(
                f"🎉 Run {ctx.run_id} finished in state {snapshot.state.value} "
                f"({snapshot.completed}/{snapshot.total})"
            )
        except asyncio.CancelledError:
            logger.info(f"Run {ctx.run_id} was cancelled")
            snapshot.state = RunState.ABORTED
            snapshot.error = "Run was cancelled"
            raise
        except Exception as e:
            logger.error(f"❌ Run {ctx.run_id} failed unexpectedly: {e}", exc_info=True)
            snapshot.state = RunState.ABORTED
            snapshot.error = str(e)
            await connection_manager.send_event(ctx.run_id, WSMessageType.RUN_ERROR, {"error": str(e)})
        finally:
            # A stream cancelled mid-broadcast is still suspended at its yield
            await stream.aclose()

    async def cancel_run(self, run_id: str) -> bool:
        """Cancel a running run; returns False when nothing was running"""
        task = self.active_tasks.get(run_id)
        if task is None:
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    def discard_run(self, run_id: str) -> bool:
        """Forget a finished run's snapshot"""
        if run_id in self.active_tasks:
            return False
        return self.snapshots.pop(run_id, None) is not None

    def get_active_runs(self) -> List[str]:
        return list(self.active_tasks.keys())


# Global task processor instance
task_processor = RunTaskProcessor()
