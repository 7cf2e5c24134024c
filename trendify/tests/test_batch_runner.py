"""
Tests for the sequential batch runner: ordering, pacing, per-task failure
isolation and the shared-key abort.
"""

import pytest

from trendify.core.error_classifier import QUOTA_SHARED_KEY_MESSAGE, QUOTA_USER_KEY_MESSAGE, SAFETY_MESSAGE
from trendify.models import (
    ErrorKind, RunEventType, RunMode, RunSnapshot, RunState, TaskDescriptor, TaskStatus,
)
from trendify.pipeline.batch_runner import SequentialBatchRunner
from trendify.stages.image_generation import SafetyBlockedError, UpstreamError
from trendify.tests.conftest import collect, make_artifact


def make_tasks(count):
    return [TaskDescriptor(id=i, images=(make_artifact(f"in-{i}"),), prompt=f"prompt {i}") for i in range(count)]


def fold(ctx, events):
    snapshot = RunSnapshot(run_id=ctx.run_id, mode=RunMode.BATCH)
    for event in events:
        snapshot.apply(event)
    return snapshot


def terminal_updates(events):
    return [e for e in events if e.type == RunEventType.TASK_UPDATE and e.result.is_terminal]


class TestHappyPath:

    @pytest.mark.asyncio
    async def test_tasks_run_in_input_order(self, make_context, client):
        outputs = [make_artifact(f"out-{i}") for i in range(3)]
        client.generate.side_effect = outputs
        ctx = make_context()

        events = await collect(SequentialBatchRunner(ctx).run(make_tasks(3)))

        prompts = [call.args[1] for call in client.generate.await_args_list]
        assert prompts == ["prompt 0", "prompt 1", "prompt 2"]

        snapshot = fold(ctx, events)
        assert snapshot.state == RunState.COMPLETED
        assert snapshot.completed == 3
        assert snapshot.successful_outputs() == outputs

    @pytest.mark.asyncio
    async def test_stream_shape(self, make_context):
        ctx = make_context()
        events = await collect(SequentialBatchRunner(ctx).run(make_tasks(2)))

        assert events[0].type == RunEventType.STARTED
        assert events[0].task_ids == [0, 1]
        assert events[-1].type == RunEventType.COMPLETED
        statuses = [e.result.status for e in events[1:-1]]
        assert statuses == [TaskStatus.RUNNING, TaskStatus.SUCCESS, TaskStatus.RUNNING, TaskStatus.SUCCESS]

    @pytest.mark.asyncio
    async def test_pacing_before_every_task_but_the_first(self, make_context, sleep):
        ctx = make_context()
        await collect(SequentialBatchRunner(ctx).run(make_tasks(4)))
        assert [c.args[0] for c in sleep.await_args_list] == [1.1, 1.1, 1.1]

    @pytest.mark.asyncio
    async def test_single_task_is_not_paced(self, make_context, sleep):
        ctx = make_context()
        await collect(SequentialBatchRunner(ctx).run(make_tasks(1)))
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_every_dispatch_is_recorded(self, make_context, governor):
        ctx = make_context()
        await collect(SequentialBatchRunner(ctx).run(make_tasks(3)))
        assert governor.used() == 3

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_reaches_total_once(self, make_context):
        ctx = make_context()
        events = await collect(SequentialBatchRunner(ctx).run(make_tasks(5)))

        progress = [e.completed for e in events if e.type == RunEventType.TASK_UPDATE]
        assert progress == sorted(progress)
        assert [e.completed for e in terminal_updates(events)].count(5) == 1

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_rejected(self, make_context):
        ctx = make_context()
        tasks = make_tasks(2) + make_tasks(1)
        with pytest.raises(ValueError):
            await collect(SequentialBatchRunner(ctx).run(tasks))


class TestFailures:

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_later_tasks(self, make_context, client):
        client.generate.side_effect = [make_artifact("a"), SafetyBlockedError(), make_artifact("c")]
        ctx = make_context()

        events = await collect(SequentialBatchRunner(ctx).run(make_tasks(3)))
        snapshot = fold(ctx, events)

        assert snapshot.state == RunState.COMPLETED
        assert snapshot.results[1].status == TaskStatus.FAILED
        assert snapshot.results[1].error_kind == ErrorKind.SAFETY_BLOCKED
        assert snapshot.results[1].error_message == SAFETY_MESSAGE
        assert snapshot.results[2].status == TaskStatus.SUCCESS
        assert snapshot.completed == 3

    @pytest.mark.asyncio
    async def test_shared_key_quota_aborts_and_clears(self, make_context, client):
        client.generate.side_effect = [make_artifact("a"), UpstreamError(429, "RESOURCE_EXHAUSTED"), make_artifact("c")]
        ctx = make_context(credential=None)

        events = await collect(SequentialBatchRunner(ctx).run(make_tasks(3)))

        assert client.generate.await_count == 2
        assert events[-1].type == RunEventType.ABORTED
        assert events[-1].error == QUOTA_SHARED_KEY_MESSAGE

        snapshot = fold(ctx, events)
        assert snapshot.state == RunState.ABORTED
        assert snapshot.results == {}
        assert snapshot.error == QUOTA_SHARED_KEY_MESSAGE

    @pytest.mark.asyncio
    async def test_user_key_quota_is_isolated(self, make_context, client):
        client.generate.side_effect = [UpstreamError(429, "RESOURCE_EXHAUSTED"), make_artifact("b")]
        ctx = make_context(credential="user-key")

        events = await collect(SequentialBatchRunner(ctx).run(make_tasks(2)))
        snapshot = fold(ctx, events)

        assert snapshot.state == RunState.COMPLETED
        assert snapshot.results[0].error_kind == ErrorKind.QUOTA_EXHAUSTED
        assert snapshot.results[0].error_message == QUOTA_USER_KEY_MESSAGE
        assert snapshot.results[1].status == TaskStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_credential_is_passed_to_every_call(self, make_context, client):
        ctx = make_context(credential="  user-key ")
        await collect(SequentialBatchRunner(ctx).run(make_tasks(2)))
        assert {call.args[2] for call in client.generate.await_args_list} == {"user-key"}
