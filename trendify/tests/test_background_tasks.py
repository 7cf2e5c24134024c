"""
Tests for the background run processor: event folding, WebSocket broadcast
and cancellation.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from trendify.api.background_tasks import RunTaskProcessor, event_payload
from trendify.api.schemas import WSMessageType
from trendify.models import RunEvent, RunEventType, RunMode, RunState, TaskDescriptor, TaskResult
from trendify.pipeline.batch_runner import SequentialBatchRunner
from trendify.tests.conftest import make_artifact


def make_tasks(count):
    return [TaskDescriptor(id=i, images=(make_artifact(),), prompt="p") for i in range(count)]


@pytest.mark.asyncio
async def test_run_events_are_folded_and_broadcast(make_context):
    processor = RunTaskProcessor()
    ctx = make_context(mode=RunMode.BATCH, total=2)

    with patch("trendify.api.background_tasks.connection_manager") as manager:
        manager.send_event = AsyncMock()
        await processor.start_run(ctx, SequentialBatchRunner(ctx).run(make_tasks(2)))
        await processor.active_tasks[ctx.run_id]

    snapshot = processor.get_snapshot(ctx.run_id)
    assert snapshot.state == RunState.COMPLETED
    assert snapshot.completed == 2

    message_types = [call.args[1] for call in manager.send_event.await_args_list]
    assert message_types[0] == WSMessageType.RUN_STARTED
    assert message_types[-1] == WSMessageType.RUN_COMPLETE
    assert message_types.count(WSMessageType.TASK_UPDATE) == 4
    assert processor.get_active_runs() == []


@pytest.mark.asyncio
async def test_unexpected_stream_error_marks_run_aborted(make_context):
    processor = RunTaskProcessor()
    ctx = make_context()

    async def broken_stream():
        yield RunEvent(run_id=ctx.run_id, type=RunEventType.STARTED, task_ids=[0], total=1)
        raise RuntimeError("stream broke")

    with patch("trendify.api.background_tasks.connection_manager") as manager:
        manager.send_event = AsyncMock()
        await processor.start_run(ctx, broken_stream())
        await processor.active_tasks[ctx.run_id]

    snapshot = processor.get_snapshot(ctx.run_id)
    assert snapshot.state == RunState.ABORTED
    assert snapshot.error == "stream broke"
    assert manager.send_event.await_args.args[1] == WSMessageType.RUN_ERROR


@pytest.mark.asyncio
async def test_cancel_run(make_context):
    processor = RunTaskProcessor()
    ctx = make_context()
    started = asyncio.Event()

    async def endless_stream():
        yield RunEvent(run_id=ctx.run_id, type=RunEventType.STARTED, task_ids=[0], total=1)
        started.set()
        await asyncio.Event().wait()
        yield RunEvent(run_id=ctx.run_id, type=RunEventType.COMPLETED)

    with patch("trendify.api.background_tasks.connection_manager") as manager:
        manager.send_event = AsyncMock()
        await processor.start_run(ctx, endless_stream())
        await started.wait()

        assert await processor.cancel_run(ctx.run_id)

    assert processor.get_snapshot(ctx.run_id).state == RunState.ABORTED
    assert not await processor.cancel_run(ctx.run_id)
    assert processor.discard_run(ctx.run_id)


@pytest.mark.asyncio
async def test_cancel_during_broadcast_closes_stream(make_context):
    processor = RunTaskProcessor()
    ctx = make_context()
    sending = asyncio.Event()
    closed = asyncio.Event()

    async def stream():
        try:
            yield RunEvent(run_id=ctx.run_id, type=RunEventType.STARTED, task_ids=[0], total=1)
            yield RunEvent(run_id=ctx.run_id, type=RunEventType.COMPLETED)
        finally:
            closed.set()

    async def stalled_send(*args):
        sending.set()
        await asyncio.Event().wait()

    with patch("trendify.api.background_tasks.connection_manager") as manager:
        manager.send_event = AsyncMock(side_effect=stalled_send)
        await processor.start_run(ctx, stream())
        await sending.wait()

        assert await processor.cancel_run(ctx.run_id)

    assert closed.is_set()
    assert processor.get_snapshot(ctx.run_id).state == RunState.ABORTED


def test_event_payload_renders_result():
    done = TaskResult(task_id=1).mark_running().mark_success(make_artifact("x"))
    event = RunEvent(run_id="r", type=RunEventType.TASK_UPDATE, task_id=1, result=done, completed=1, total=4)

    payload = event_payload(event)

    assert payload["progress_percent"] == 25
    assert payload["task_id"] == 1
    assert payload["result"]["status"] == "success"
    assert payload["result"]["image_data_uri"].startswith("data:image/png;base64,")
