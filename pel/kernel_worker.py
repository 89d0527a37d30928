"""
Kernel Worker
=============

The worker is the process that actually evaluates code. The session depends
only on the ``Worker`` protocol below; ``KernelWorker`` implements it over a
Jupyter kernel through jupyter_client.

Translation between the session protocol and the Jupyter wire protocol:

Outbound
    run                  -> execute_request(code)
    getAllPropertyNames  -> silent execute_request with a names user_expression
    inspect              -> silent execute_request with an inspection user_expression

Inbound (per request msg_id, mapped back to its context id)
    IOPub stream         -> {id, stdout} / {id, stderr}
    IOPub execute_result -> remembered as the run's MIME bundle
    execute_reply + IOPub idle
                         -> one terminal {id, end, error|mime|names|inspection}
"""

import ast
import asyncio
import json
import os
import signal as signal_module
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import structlog
from jupyter_client.manager import AsyncKernelManager

from .config import SessionConfig
from .errors import WorkerError
from .kernel_startup import inspection_expression, names_expression
from .models import Action, Request

logger = structlog.get_logger(__name__)

MessageHandler = Callable[[Dict[str, Any]], None]
ExitStatus = Tuple[Optional[int], Optional[str]]

# Key of the user_expression carrying name-listing and inspection results
RESULT_KEY = "pel_result"

_EXIT_POLL_INTERVAL = 0.05


class Worker(Protocol):
    """Asynchronous, bidirectional channel to an evaluation process."""

    def send(self, request: Request) -> None:
        """Hand a request to the worker without waiting for the answer."""

    def on_message(self, handler: Optional[MessageHandler]) -> None:
        """Install the inbound message handler; None detaches it."""

    async def terminate(self, signal: str = "SIGTERM") -> ExitStatus:
        """Stop the worker and return ``(exit_code, signal_name)`` once it has exited."""


def _get_kernel_process(km):
    """Return the kernel's subprocess.Popen, or None if unavailable."""
    if getattr(km, "provisioner", None):
        process = getattr(km.provisioner, "process", None)
        if process:
            return process
    return None


@dataclass
class _PendingRequest:
    context_id: int
    action: Action
    mime: Dict[str, Any] = field(default_factory=dict)
    reply: Optional[Dict[str, Any]] = None
    idle: bool = False


class KernelWorker:
    """Worker backed by a Jupyter kernel."""

    def __init__(self, km, kc):
        """
        Args:
            km: Started AsyncKernelManager
            kc: Kernel client with running channels
        """
        self.km = km
        self.kc = kc
        self._handler: Optional[MessageHandler] = None
        self._pending: Dict[str, _PendingRequest] = {}
        self._listeners: List[asyncio.Task] = []

    @classmethod
    async def start(cls, config: Optional[SessionConfig] = None) -> "KernelWorker":
        """Launch a kernel as configured and start listening to it.

        Raises:
            WorkerError: if the kernel is not ready within ``startup_timeout``.
        """
        config = config or SessionConfig()
        cwd = config.cwd or os.getcwd()

        km = AsyncKernelManager(kernel_name=config.kernel_name)
        await km.start_kernel(cwd=cwd)
        kc = km.client()
        kc.start_channels()

        try:
            await kc.wait_for_ready(timeout=config.startup_timeout)
        except RuntimeError as e:
            kc.stop_channels()
            await km.shutdown_kernel(now=True)
            raise WorkerError(f"Kernel '{config.kernel_name}' failed to start: {e}") from e

        logger.info(f"[KERNEL] Started {config.kernel_name}", cwd=cwd)
        worker = cls(km, kc)
        worker.listen()
        return worker

    def listen(self) -> None:
        """Start the IOPub and shell listener tasks."""
        self._listeners = [
            asyncio.create_task(self._listen(self.kc.get_iopub_msg, self._handle_iopub)),
            asyncio.create_task(self._listen(self.kc.get_shell_msg, self._handle_shell)),
        ]

    def on_message(self, handler: Optional[MessageHandler]) -> None:
        self._handler = handler

    def send(self, request: Request) -> None:
        if request.action is Action.RUN:
            msg_id = self.kc.execute(request.code, store_history=True, allow_stdin=False)
        else:
            if request.action is Action.LIST_NAMES:
                expression = names_expression(request.code)
            else:
                expression = inspection_expression(request.code)
            msg_id = self.kc.execute(
                "",
                silent=True,
                store_history=False,
                user_expressions={RESULT_KEY: expression},
                allow_stdin=False,
            )

        self._pending[msg_id] = _PendingRequest(
            context_id=request.context_id, action=request.action
        )
        logger.debug("Sent execute_request", msg_id=msg_id, context_id=request.context_id)

    async def terminate(self, signal: str = "SIGTERM") -> ExitStatus:
        signum = signal_module.Signals.__members__.get(signal)
        if signum is None:
            raise ValueError(f"Unknown signal: {signal}")

        for task in self._listeners:
            task.cancel()
        await asyncio.gather(*self._listeners, return_exceptions=True)
        self._listeners = []
        self._handler = None
        self.kc.stop_channels()

        process = _get_kernel_process(self.km)

        if await self.km.is_alive():
            await self.km.signal_kernel(signum)
            while await self.km.is_alive():
                await asyncio.sleep(_EXIT_POLL_INTERVAL)
        await self.km.cleanup_resources()

        returncode = process.returncode if process is not None else None
        logger.info("[KERNEL] Terminated", signal=signal, returncode=returncode)
        if returncode is not None and returncode < 0:
            return None, signal_module.Signals(-returncode).name
        return returncode, None

    async def _listen(self, receive, handle) -> None:
        while True:
            try:
                msg = await receive()
                handle(msg)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error while handling kernel message")

    def _handle_iopub(self, msg: Dict[str, Any]) -> None:
        parent_id = msg.get("parent_header", {}).get("msg_id")
        pending = self._pending.get(parent_id)
        if pending is None:
            return

        msg_type = msg["msg_type"]
        content = msg["content"]
        if msg_type == "stream":
            self._emit({"id": pending.context_id, content["name"]: content["text"]})
        elif msg_type == "execute_result":
            pending.mime = dict(content.get("data", {}))
        elif msg_type == "status" and content.get("execution_state") == "idle":
            pending.idle = True
            self._maybe_finish(parent_id)

    def _handle_shell(self, msg: Dict[str, Any]) -> None:
        if msg.get("msg_type") != "execute_reply":
            return
        parent_id = msg.get("parent_header", {}).get("msg_id")
        pending = self._pending.get(parent_id)
        if pending is None:
            return
        pending.reply = msg["content"]
        self._maybe_finish(parent_id)

    def _maybe_finish(self, msg_id: str) -> None:
        pending = self._pending[msg_id]
        if pending.reply is None or not pending.idle:
            return
        del self._pending[msg_id]

        message: Dict[str, Any] = {"id": pending.context_id, "end": True}
        message.update(_reply_payload(pending))
        self._emit(message)

    def _emit(self, message: Dict[str, Any]) -> None:
        if self._handler is None:
            logger.debug("No message handler attached; dropping", message=message)
            return
        self._handler(message)


def _error(content: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "error": {
            "ename": content.get("ename", "Error"),
            "evalue": content.get("evalue", ""),
            "traceback": list(content.get("traceback", [])),
        }
    }


def _reply_payload(pending: _PendingRequest) -> Dict[str, Any]:
    reply = pending.reply or {}
    status = reply.get("status")
    if status == "aborted":
        return _error({"ename": "Aborted", "evalue": "Execution was aborted"})
    if status != "ok":
        return _error(reply)

    if pending.action is Action.RUN:
        return {"mime": pending.mime}

    result = reply.get("user_expressions", {}).get(RESULT_KEY, {})
    if result.get("status") != "ok":
        return _error(result)

    try:
        value = json.loads(ast.literal_eval(result["data"]["text/plain"]))
    except (KeyError, ValueError, SyntaxError, TypeError) as e:
        return _error({"ename": type(e).__name__, "evalue": f"Unreadable kernel result: {e}"})

    if pending.action is Action.LIST_NAMES:
        if not isinstance(value, dict):
            return _error({"ename": "TypeError", "evalue": f"Unexpected names result: {value!r}"})
        return {"names": value.get("names", []), "keys": value.get("keys", [])}
    return {"inspection": value}
