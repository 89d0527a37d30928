"""
Tests for IOMultiplexer
=======================

Classification and routing of worker replies to their tasks.
"""

from unittest.mock import MagicMock

import pytest

from pel.execution_scheduler import ExecutionScheduler
from pel.io_multiplexer import IOMultiplexer
from pel.models import Action, Task


@pytest.fixture
def send():
    return MagicMock()


@pytest.fixture
def scheduler(send):
    return ExecutionScheduler(send)


@pytest.fixture
def mux(scheduler):
    mux = IOMultiplexer(scheduler)
    scheduler.reply_locally = mux.route
    return mux


def mock_task(code="x"):
    return Task(
        action=Action.RUN,
        code=code,
        on_success=MagicMock(),
        on_error=MagicMock(),
        before_run=MagicMock(),
        after_run=MagicMock(),
        on_stdout=MagicMock(),
        on_stderr=MagicMock(),
    )


class TestClassification:
    def test_log_message_is_not_forwarded(self, scheduler, mux):
        task = mock_task()
        scheduler.submit(task)

        mux.route({"log": "worker ready", "id": 1})

        task.on_success.assert_not_called()
        task.on_error.assert_not_called()
        assert scheduler.in_flight is task

    def test_stdout_chunk(self, scheduler, mux):
        task = mock_task()
        scheduler.submit(task)

        mux.route({"id": 1, "stdout": "hello\n"})

        task.on_stdout.assert_called_once_with("hello\n")
        task.on_success.assert_not_called()
        assert scheduler.in_flight is task
        assert 1 in scheduler.contexts

    def test_stderr_chunk(self, scheduler, mux):
        task = mock_task()
        scheduler.submit(task)

        mux.route({"id": 1, "stderr": "warning\n"})

        task.on_stderr.assert_called_once_with("warning\n")
        task.on_stdout.assert_not_called()

    def test_empty_stream_chunk_is_still_a_stream(self, scheduler, mux):
        task = mock_task()
        scheduler.submit(task)

        mux.route({"id": 1, "stdout": ""})

        task.on_stdout.assert_called_once_with("")
        task.on_success.assert_not_called()

    def test_error_reply(self, scheduler, mux):
        task = mock_task()
        scheduler.submit(task)

        error = {"ename": "NameError", "evalue": "name 'y' is not defined", "traceback": ["tb"]}
        mux.route({"id": 1, "end": True, "error": error})

        task.on_error.assert_called_once_with({"error": error})
        task.on_success.assert_not_called()
        task.after_run.assert_called_once()

    def test_success_payload_has_no_envelope(self, scheduler, mux):
        task = mock_task()
        scheduler.submit(task)

        mux.route({"id": 1, "end": True, "mime": {"text/plain": "2"}})

        task.on_success.assert_called_once_with({"mime": {"text/plain": "2"}})

    def test_unknown_success_shape_is_forwarded(self, scheduler, mux):
        task = mock_task()
        scheduler.submit(task)

        mux.route({"id": 1, "end": True, "custom": [1, 2]})

        task.on_success.assert_called_once_with({"custom": [1, 2]})

    @pytest.mark.parametrize("raw", ["garbage", None, {"id": 1, "names": "not-a-list"}])
    def test_undecodable_message_is_dropped(self, scheduler, mux, raw):
        task = mock_task()
        scheduler.submit(task)

        mux.route(raw)

        task.on_success.assert_not_called()
        task.on_error.assert_not_called()
        assert scheduler.in_flight is task


class TestRouting:
    def test_end_finalizes_and_dispatches_next(self, scheduler, mux, send):
        first, second = mock_task("a"), mock_task("b")
        scheduler.submit(first)
        scheduler.submit(second)

        mux.route({"id": 1, "end": True, "mime": {}})

        assert scheduler.contexts == {2: second}
        assert scheduler.in_flight is second
        assert send.call_args.args[0].context_id == 2
        second.before_run.assert_called_once()

    def test_callback_fires_before_after_run(self, scheduler, mux):
        order = []
        task = Task(
            action=Action.RUN,
            code="x",
            on_success=lambda result: order.append("success"),
            after_run=lambda: order.append("after"),
        )
        scheduler.submit(task)

        mux.route({"id": 1, "end": True, "mime": {}})

        assert order == ["success", "after"]

    def test_reply_without_end_keeps_context_open(self, scheduler, mux):
        first, second = mock_task("a"), mock_task("b")
        scheduler.submit(first)
        scheduler.submit(second)

        mux.route({"id": 1, "mime": {"text/plain": "None"}})

        # Queue moved on, but context 1 still receives late output
        assert scheduler.in_flight is second
        assert scheduler.contexts[1] is first
        first.after_run.assert_not_called()

        mux.route({"id": 1, "stdout": "late"})
        first.on_stdout.assert_called_once_with("late")
        second.on_stdout.assert_not_called()

        mux.route({"id": 1, "end": True, "mime": {}})
        first.after_run.assert_called_once()
        assert 1 not in scheduler.contexts
        assert scheduler.in_flight is second

    def test_unknown_context_falls_back_to_last_task(self, scheduler, mux):
        task = mock_task()
        scheduler.submit(task)

        mux.route({"id": 42, "stdout": "orphan"})
        mux.route({"mime": {"text/plain": "1"}})

        task.on_stdout.assert_called_once_with("orphan")
        task.on_success.assert_called_once_with({"mime": {"text/plain": "1"}})

    def test_message_before_any_dispatch_is_dropped(self, scheduler, mux, send):
        mux.route({"id": 1, "end": True, "mime": {}})
        assert scheduler.in_flight is None
        send.assert_not_called()

    def test_missing_callbacks_are_tolerated(self, scheduler, mux):
        task = Task(action=Action.RUN, code="x")
        scheduler.submit(task)

        mux.route({"id": 1, "stdout": "x"})
        mux.route({"id": 1, "end": True, "error": {"ename": "E", "evalue": "v"}})

        assert scheduler.in_flight is None
        assert scheduler.contexts == {}

    def test_transform_failure_routes_through_multiplexer(self, send):
        def broken(code):
            raise RuntimeError("boom")

        scheduler = ExecutionScheduler(send, transform=broken)
        mux = IOMultiplexer(scheduler)
        scheduler.reply_locally = mux.route
        failing, following = mock_task("a"), mock_task("b")
        following.action = Action.INSPECT

        scheduler.submit(failing)
        scheduler.submit(following)

        failing.on_error.assert_called_once()
        assert failing.on_error.call_args.args[0]["error"]["ename"] == "RuntimeError"
        failing.after_run.assert_called_once()
        send.assert_called_once()
        assert send.call_args.args[0].context_id == 2

    def test_queued_transform_failures_drain_without_recursion(self, send):
        def broken(code):
            raise ValueError(code)

        scheduler = ExecutionScheduler(send)
        mux = IOMultiplexer(scheduler)
        scheduler.reply_locally = mux.route

        running = mock_task("running")
        scheduler.submit(running)
        scheduler.transform = broken
        failing = [mock_task(f"bad{i}") for i in range(600)]
        for task in failing:
            scheduler.submit(task)
        following = mock_task("after")
        following.action = Action.INSPECT
        scheduler.submit(following)

        mux.route({"id": 1, "end": True, "mime": {}})

        for task in failing:
            task.on_error.assert_called_once()
            task.after_run.assert_called_once()
        assert send.call_count == 2
        assert send.call_args.args[0].code == "after"
        assert send.call_args.args[0].context_id == 602
        assert scheduler.in_flight is following
        assert scheduler.contexts == {602: following}


class TestCallbackFailures:
    @pytest.mark.parametrize("hook", ["on_success", "after_run"])
    def test_raising_reply_hook_still_advances(self, scheduler, mux, send, hook):
        first, second = mock_task("a"), mock_task("b")
        getattr(first, hook).side_effect = RuntimeError("callback failed")
        scheduler.submit(first)
        scheduler.submit(second)

        mux.route({"id": 1, "end": True, "mime": {}})

        first.after_run.assert_called_once()
        assert scheduler.in_flight is second
        assert scheduler.contexts == {2: second}
        assert send.call_args.args[0].code == "b"

    def test_raising_error_hook_still_advances(self, scheduler, mux, send):
        first, second = mock_task("a"), mock_task("b")
        first.on_error.side_effect = KeyError("oops")
        scheduler.submit(first)
        scheduler.submit(second)

        mux.route({"id": 1, "end": True, "error": {"ename": "E", "evalue": "v"}})

        first.after_run.assert_called_once()
        assert scheduler.in_flight is second

    def test_raising_stream_hook_is_contained(self, scheduler, mux):
        task = mock_task()
        task.on_stdout.side_effect = RuntimeError("closed pipe")
        scheduler.submit(task)

        mux.route({"id": 1, "stdout": "text"})
        mux.route({"id": 1, "end": True, "mime": {}})

        task.on_success.assert_called_once_with({"mime": {}})
        assert scheduler.in_flight is None
