"""
I/O Multiplexer
===============

Routes inbound worker messages to the task that owns them.

Each message is decoded once into its variant (see ``pel.models``) and then:

- LogMessage      -> logged, never forwarded
- StreamMessage   -> the owning task's ``on_stdout`` / ``on_stderr``
- ErrorMessage    -> ``on_error``
- any other reply -> ``on_success``

A reply to the in-flight task frees the scheduler's slot; a reply carrying
``end`` also closes its execution context.
Exceptions raised by task callbacks are logged; the reply still closes its
context and advances the queue.
"""

from typing import Any

import structlog

from .errors import ProtocolError
from .execution_scheduler import ExecutionScheduler, run_hook
from .models import ErrorMessage, LogMessage, StreamMessage, decode_message

logger = structlog.get_logger(__name__)


class IOMultiplexer:
    """Demultiplexes worker replies by execution context id."""

    def __init__(self, scheduler: ExecutionScheduler):
        self.scheduler = scheduler

    def route(self, raw: Any) -> None:
        """Handle one raw message received from the worker."""
        try:
            message = decode_message(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping undecodable worker message: {e}")
            return

        if isinstance(message, LogMessage):
            logger.debug("Worker log", text=message.log)
            return

        task = self.scheduler.resolve(message.id)
        if task is None:
            logger.debug("Dropping message: no context and no last task", context_id=message.id)
            return

        if isinstance(message, StreamMessage):
            handler = task.on_stdout if message.stream == "stdout" else task.on_stderr
            if handler:
                run_hook(handler, message.text, context_id=message.id)
            else:
                logger.debug(f"Missing {message.stream} callback", context_id=message.id)
            return

        payload = message.payload()
        if isinstance(message, ErrorMessage):
            if task.on_error:
                run_hook(task.on_error, payload, context_id=message.id)
            else:
                logger.debug("Missing on_error callback", context_id=message.id)
        else:
            if task.on_success:
                run_hook(task.on_success, payload, context_id=message.id)
            else:
                logger.debug("Missing on_success callback", context_id=message.id)

        if message.end:
            self.scheduler.end_context(message.id, task)

        self.scheduler.advance(task)
