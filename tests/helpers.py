"""
Test doubles shared across the pel test suite.
"""

from typing import Any, Dict, List, Optional, Tuple

from pel.models import Callbacks, Request


class FakeWorker:
    """In-memory worker: records requests, lets tests push replies."""

    def __init__(self, exit_status: Tuple[Optional[int], Optional[str]] = (None, "SIGTERM")):
        self.requests: List[Request] = []
        self.handler = None
        self.exit_status = exit_status
        self.terminated_with: Optional[str] = None

    def send(self, request: Request) -> None:
        self.requests.append(request)

    def on_message(self, handler) -> None:
        self.handler = handler

    async def terminate(self, signal: str = "SIGTERM"):
        self.terminated_with = signal
        return self.exit_status

    def reply(self, message: Dict[str, Any]) -> None:
        """Deliver ``message`` as if the worker had sent it."""
        if self.handler is not None:
            self.handler(message)

    @property
    def sent(self) -> List[Tuple[str, str, int]]:
        return [r.as_tuple() for r in self.requests]


class Recorder:
    """Collects callback invocations in the order they happen."""

    def __init__(self):
        self.events: List[Tuple[str, Any]] = []

    def callbacks(self, tag: str = "") -> Callbacks:
        def record(name):
            def hook(*args):
                self.events.append((f"{tag}{name}", args[0] if args else None))

            return hook

        return Callbacks(
            on_success=record("success"),
            on_error=record("error"),
            before_run=record("before"),
            after_run=record("after"),
            on_stdout=record("stdout"),
            on_stderr=record("stderr"),
        )

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> List[Any]:
        return [payload for event, payload in self.events if event == name]


