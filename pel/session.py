"""
Session
=======

Public entry point: a long-lived Python evaluation context backed by a
single worker process.

    session = await Session.start(SessionConfig(cwd="/tmp"))
    session.execute("x = 40 + 2", Callbacks(on_success=print))
    session.complete("x.re", 4, Callbacks(on_success=print))
    session.inspect("x.real", 6, Callbacks(on_success=print))
    await session.kill()

Requests are queued and run strictly in submission order, one at a time.
Completion and inspection are answered from the worker's live namespace.
"""

import keyword
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from .config import SessionConfig
from .documentation import DocumentationIndex, builtin_index
from .errors import SessionError
from .execution_scheduler import ExecutionScheduler, run_hook
from .expression import Expression, parse_expression
from .io_multiplexer import IOMultiplexer
from .kernel_startup import GLOBAL_SCOPE
from .kernel_worker import ExitStatus, KernelWorker, Worker
from .models import Action, Callbacks, Task

logger = structlog.get_logger(__name__)

RESERVED_WORDS = list(keyword.kwlist)

WorkerFactory = Callable[[SessionConfig], Awaitable[Worker]]


class Session:
    """Coordinates requests against one worker and routes its replies."""

    def __init__(
        self,
        worker: Worker,
        config: Optional[SessionConfig] = None,
        worker_factory: Optional[WorkerFactory] = None,
        documentation: Optional[DocumentationIndex] = None,
    ):
        """
        Args:
            worker: Running worker to send requests to
            config: Session configuration (reused on restart)
            worker_factory: Coroutine function creating a fresh worker; required by restart()
            documentation: Index consulted by inspect(); defaults to Python builtins
        """
        self.config = config if config is not None else SessionConfig()
        self.documentation = documentation
        self._worker_factory = worker_factory
        self._transform = self.config.transform
        self._attach(worker)

    @classmethod
    async def start(
        cls,
        config: Optional[SessionConfig] = None,
        worker_factory: Optional[WorkerFactory] = None,
        documentation: Optional[DocumentationIndex] = None,
    ) -> "Session":
        """Create a worker with ``worker_factory`` (a kernel by default) and wrap it."""
        config = config if config is not None else SessionConfig()
        factory = worker_factory or KernelWorker.start
        worker = await factory(config)
        return cls(worker, config, worker_factory=factory, documentation=documentation)

    def _attach(self, worker: Worker) -> None:
        self.worker = worker
        self.scheduler = ExecutionScheduler(worker.send, transform=self._transform)
        self.multiplexer = IOMultiplexer(self.scheduler)
        self.scheduler.reply_locally = self.multiplexer.route
        worker.on_message(self.multiplexer.route)

    @property
    def killed(self) -> bool:
        return self.scheduler.killed

    @property
    def transform(self) -> Optional[Callable[[str], str]]:
        """Hook applied to the code of every ``execute`` request before it runs."""
        return self._transform

    @transform.setter
    def transform(self, hook: Optional[Callable[[str], str]]) -> None:
        self._transform = hook
        self.scheduler.transform = hook

    def execute(self, code: str, callbacks: Optional[Callbacks] = None) -> None:
        """Run ``code`` in the worker.

        ``on_success`` receives ``{"mime": {...}}`` with the representations
        of the result; ``on_error`` receives ``{"error": {ename, evalue, traceback}}``.
        """
        logger.debug("Execute", code=code)
        self.scheduler.submit(Task.build(Action.RUN, code, callbacks))

    def complete(
        self, code: str, cursor_pos: int, callbacks: Optional[Callbacks] = None
    ) -> None:
        """Complete the expression that ends at ``cursor_pos``.

        ``on_success`` receives ``{"completion": {list, code, cursorPos,
        matchedText, cursorStart, cursorEnd}}``.
        """
        callbacks = callbacks or Callbacks()
        expression = parse_expression(code, cursor_pos)
        logger.debug("Complete", expression=expression)

        if expression is None:
            self._answer_locally(
                callbacks,
                {
                    "completion": {
                        "list": [],
                        "code": code,
                        "cursorPos": cursor_pos,
                        "matchedText": "",
                        "cursorStart": cursor_pos,
                        "cursorEnd": cursor_pos,
                    }
                },
            )
            return

        def on_names(result: Dict[str, Any]) -> None:
            completion = _completion(code, cursor_pos, expression, _candidates(expression, result))
            if callbacks.on_success:
                callbacks.on_success({"completion": completion})

        self.scheduler.submit(
            Task.build(
                Action.LIST_NAMES,
                expression.scope or GLOBAL_SCOPE,
                callbacks,
                on_success=on_names,
            )
        )

    def inspect(
        self, code: str, cursor_pos: int, callbacks: Optional[Callbacks] = None
    ) -> None:
        """Inspect the expression that ends at ``cursor_pos``.

        ``on_success`` receives ``{"inspection": {code, cursorPos, matchedText,
        string, type, constructorList?, length?}}`` plus ``"doc"`` when
        documentation was found.
        """
        callbacks = callbacks or Callbacks()
        expression = parse_expression(code, cursor_pos)
        logger.debug("Inspect", expression=expression)

        if expression is None:
            self._answer_locally(
                callbacks,
                {
                    "inspection": {
                        "code": code,
                        "cursorPos": cursor_pos,
                        "matchedText": "",
                        "string": "",
                        "type": "",
                    }
                },
            )
            return

        def deliver(result: Dict[str, Any]) -> None:
            run_hook(callbacks.on_success, result)

        def on_scope_inspection(result: Dict[str, Any], scope_result: Dict[str, Any]) -> None:
            constructors = scope_result.get("inspection", {}).get("constructorList") or []
            for name in constructors:
                doc = self._lookup_documentation(f"{name}.{expression.selector}")
                if doc:
                    result["doc"] = doc
                    break
            deliver(result)

        def on_inspection(result: Dict[str, Any]) -> None:
            result.setdefault("inspection", {}).update(
                code=code, cursorPos=cursor_pos, matchedText=expression.matched_text
            )

            if not expression.scope:
                doc = self._lookup_documentation(expression.matched_text)
                if doc:
                    result["doc"] = doc
                deliver(result)
                run_hook(callbacks.after_run)
                return

            # Member documentation: search the scope's constructor chain
            self.scheduler.submit(
                Task.build(
                    Action.INSPECT,
                    expression.scope,
                    callbacks,
                    before_run=None,
                    on_success=lambda scope_result: on_scope_inspection(result, scope_result),
                )
            )

        def on_error(error: Dict[str, Any]) -> None:
            run_hook(callbacks.on_error, error)
            run_hook(callbacks.after_run)

        self.scheduler.submit(
            Task.build(
                Action.INSPECT,
                expression.matched_text,
                callbacks,
                on_success=on_inspection,
                on_error=on_error,
                after_run=None,
            )
        )

    async def kill(
        self,
        signal: str = "SIGTERM",
        callback: Optional[Callable[[Optional[int], Optional[str]], None]] = None,
    ) -> ExitStatus:
        """Stop dispatching, detach from the worker and terminate it.

        Returns:
            ``(exit_code, signal_name)`` of the worker, also passed to ``callback``.
        """
        self.scheduler.kill()
        self.worker.on_message(None)
        exit_code, exit_signal = await self.worker.terminate(signal)
        logger.info("Session killed", exit_code=exit_code, signal=exit_signal)
        if callback:
            callback(exit_code, exit_signal)
        return exit_code, exit_signal

    async def restart(
        self,
        signal: str = "SIGTERM",
        callback: Optional[Callable[[Optional[int], Optional[str]], None]] = None,
    ) -> ExitStatus:
        """Kill the worker and continue with a fresh one built from the same config.

        Raises:
            SessionError: if the session has no worker factory.
        """
        if self._worker_factory is None:
            raise SessionError("restart() requires a session created with a worker factory")

        exit_code, exit_signal = await self.kill(signal)
        self._attach(await self._worker_factory(self.config))
        logger.info("Session restarted")
        if callback:
            callback(exit_code, exit_signal)
        return exit_code, exit_signal

    def _answer_locally(self, callbacks: Callbacks, result: Dict[str, Any]) -> None:
        """Deliver a result that needs no worker round trip."""
        if self.killed:
            return
        run_hook(callbacks.before_run)
        run_hook(callbacks.on_success, result)
        run_hook(callbacks.after_run)

    def _lookup_documentation(self, name: str) -> Optional[Dict[str, str]]:
        index = self.documentation if self.documentation is not None else builtin_index()
        return index.lookup(name)


def _candidates(expression: Expression, result: Dict[str, Any]) -> List[str]:
    """Names that can follow ``expression.left_op``: keys inside a subscript, attributes otherwise."""
    if expression.right_op and "keys" in result:
        return result["keys"]
    return result.get("names", [])


def _completion(
    code: str, cursor_pos: int, expression: Expression, names
) -> Dict[str, Any]:
    matches = list(names)
    if not expression.scope:
        matches = list(dict.fromkeys(matches + RESERVED_WORDS))

    if expression.selector:
        matches = [m for m in matches if m.startswith(expression.selector)]

    left = expression.scope + expression.left_op
    right = expression.right_op
    matches = [left + m + right for m in matches]

    if matches:
        # Extend the replaced range over text already matching the shortest candidate
        shortest = min(matches, key=len)
        cursor_start = code.find(expression.matched_text)
        cursor_end = cursor_start
        for char in shortest:
            if cursor_end >= len(code) or code[cursor_end] != char:
                break
            cursor_end += 1
    else:
        cursor_start = cursor_end = cursor_pos

    return {
        "list": matches,
        "code": code,
        "cursorPos": cursor_pos,
        "matchedText": expression.matched_text,
        "cursorStart": cursor_start,
        "cursorEnd": cursor_end,
    }
