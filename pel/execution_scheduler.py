"""
Execution Scheduler
===================

Owns the pending queue and the single in-flight slot of a session.

- One task in flight at a time, mirroring the worker's own single-threaded
  evaluation.
- Strict FIFO: tasks are dispatched in submission order.
- Every dispatch allocates a fresh execution context id (1, 2, 3, ...) that
  tags the outbound request; replies carrying that id are routed back to the
  task by the IOMultiplexer.

A context outlives the in-flight slot: the queue advances as soon as the
worker answers the in-flight task, while the context stays registered until
the worker marks it ended, so late stdout/stderr still reaches its task.
"""

import traceback
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

import structlog

from .models import Action, Request, Task

logger = structlog.get_logger(__name__)


class ExecutionScheduler:
    """Dispatches tasks to the worker one at a time, in submission order."""

    def __init__(
        self,
        send: Callable[[Request], None],
        transform: Optional[Callable[[str], str]] = None,
    ):
        """
        Args:
            send: Non-blocking function that hands a request to the worker
            transform: Optional hook rewriting the code of ``run`` tasks
        """
        self._send = send
        self.transform = transform

        self.pending: Deque[Task] = deque()
        self.in_flight: Optional[Task] = None
        self.contexts: Dict[int, Task] = {}
        self.last_context_id = 0
        self.last_task: Optional[Task] = None
        self.killed = False
        self._draining = False

        # Set by the session: delivers a locally synthesized reply through the
        # same routing path as worker replies.
        self.reply_locally: Optional[Callable[[Dict[str, Any]], None]] = None

    def submit(self, task: Task) -> None:
        """Dispatch ``task`` now if the worker is free, otherwise queue it."""
        if self.killed:
            logger.debug("Ignoring task submitted to killed session", action=task.action.value)
            return

        self.pending.append(task)
        if self.in_flight is None:
            self._drain()
        else:
            logger.debug(f"Queued {task.action.value} task (queue length={len(self.pending)})")

    def dispatch(self, task: Task) -> None:
        """Open a new execution context for ``task`` and send it to the worker."""
        self.in_flight = task
        self.last_context_id += 1
        context_id = self.last_context_id
        self.last_task = task
        self.contexts[context_id] = task

        run_hook(task.before_run, context_id=context_id)

        if task.action is Action.RUN and self.transform is not None:
            try:
                task.code = self.transform(task.code)
            except Exception as e:
                logger.warning(f"Code transform failed for context {context_id}: {e!r}")
                self._reply(
                    {
                        "id": context_id,
                        "end": True,
                        "error": _error_content(e),
                    }
                )
                return
            logger.debug("Transformed code", context_id=context_id, code=task.code)

        logger.debug(f"Dispatching {task.action.value} task", context_id=context_id)
        self._send(Request(action=task.action, code=task.code, context_id=context_id))

    def resolve(self, context_id: Optional[int]) -> Optional[Task]:
        """Return the task that owns ``context_id``.

        Unknown (or missing) ids fall back to the last dispatched task, even
        when that task has already finished. Stale or malformed replies can
        therefore be attributed to the wrong task; the fallback exists because
        workers may report on code that outlived its context.
        """
        task = self.contexts.get(context_id) if context_id is not None else None
        if task is None:
            logger.debug(f"Missing context {context_id}, using last task")
            task = self.last_task
        return task

    def end_context(self, context_id: Optional[int], task: Task) -> None:
        """Close an execution context and fire its ``after_run`` hook."""
        logger.debug("Context ended", context_id=context_id)
        if context_id is not None:
            self.contexts.pop(context_id, None)

        run_hook(task.after_run, context_id=context_id)

    def advance(self, task: Task) -> None:
        """Free the in-flight slot if ``task`` holds it and start the next task."""
        if task is not self.in_flight:
            return

        self.in_flight = None
        self._drain()

    def _drain(self) -> None:
        """Dispatch queued tasks until one is waiting on the worker.

        A task whose transform fails is answered locally during ``dispatch``,
        which frees the slot again; the loop picks up the next task instead of
        re-entering ``dispatch`` from the reply path.
        """
        if self._draining:
            return

        self._draining = True
        try:
            while self.in_flight is None and self.pending and not self.killed:
                self.dispatch(self.pending.popleft())
        finally:
            self._draining = False

    def kill(self) -> None:
        """Stop dispatching. Queued tasks are discarded without callbacks."""
        self.killed = True
        dropped = len(self.pending)
        self.pending.clear()
        if dropped:
            logger.info(f"Discarded {dropped} queued task(s) on kill")

    def _reply(self, message: Dict[str, Any]) -> None:
        if self.reply_locally is None:
            logger.warning("No local reply route; dropping synthesized message")
            return
        self.reply_locally(message)


def run_hook(hook: Optional[Callable[..., Any]], *args: Any, **log_context: Any) -> None:
    """Call a user hook. Exceptions are logged, never propagated into the scheduler."""
    if hook is None:
        return
    try:
        hook(*args)
    except Exception:
        hook_name = getattr(hook, "__name__", repr(hook))
        logger.exception(f"Task callback {hook_name} raised", **log_context)


def _error_content(error: BaseException) -> Dict[str, Any]:
    """Shape an exception like a worker-reported error."""
    return {
        "ename": type(error).__name__,
        "evalue": str(error) or repr(error),
        "traceback": "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ).splitlines(),
    }
