"""
Session Data Model
==================

Tasks, outbound requests and the inbound message union exchanged with the
worker.

Inbound messages are decoded once, at the channel boundary, into one of the
variants below. Classification follows field precedence:

1. ``log``                      -> LogMessage (diagnostic only)
2. ``stdout`` / ``stderr``      -> StreamMessage
3. ``error``                    -> ErrorMessage
4. ``mime`` / ``completion`` / ``inspection`` / ``names``
                                -> the matching success variant
5. anything else                -> ReplyMessage (opaque success payload)

``id`` and ``end`` are envelope fields; ``payload()`` strips them before a
message reaches a caller.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ProtocolError


class Action(str, Enum):
    """Kind of work a task asks the worker to do."""

    RUN = "run"
    LIST_NAMES = "getAllPropertyNames"
    INSPECT = "inspect"


@dataclass
class Callbacks:
    """Optional hooks attached to a request.

    ``on_success`` and ``on_error`` receive the message payload as a dict.
    ``on_stdout`` and ``on_stderr`` receive text chunks as they stream in.
    ``before_run`` fires when the task is dispatched, ``after_run`` when its
    execution context ends.
    """

    on_success: Optional[Callable[[Dict[str, Any]], None]] = None
    on_error: Optional[Callable[[Dict[str, Any]], None]] = None
    before_run: Optional[Callable[[], None]] = None
    after_run: Optional[Callable[[], None]] = None
    on_stdout: Optional[Callable[[str], None]] = None
    on_stderr: Optional[Callable[[str], None]] = None


@dataclass(eq=False)
class Task:
    """One unit of work plus the callbacks that observe it.

    Tasks compare by identity: the scheduler needs to tell two tasks with the
    same code apart.
    """

    action: Action
    code: str
    on_success: Optional[Callable[[Dict[str, Any]], None]] = None
    on_error: Optional[Callable[[Dict[str, Any]], None]] = None
    before_run: Optional[Callable[[], None]] = None
    after_run: Optional[Callable[[], None]] = None
    on_stdout: Optional[Callable[[str], None]] = None
    on_stderr: Optional[Callable[[str], None]] = None

    @classmethod
    def build(
        cls,
        action: Action,
        code: str,
        callbacks: Optional[Callbacks] = None,
        **overrides: Any,
    ) -> "Task":
        """Create a task copying hooks from ``callbacks``; ``overrides`` win."""
        hooks: Dict[str, Any] = {}
        if callbacks is not None:
            hooks = {
                "on_success": callbacks.on_success,
                "on_error": callbacks.on_error,
                "before_run": callbacks.before_run,
                "after_run": callbacks.after_run,
                "on_stdout": callbacks.on_stdout,
                "on_stderr": callbacks.on_stderr,
            }
        hooks.update(overrides)
        return cls(action=action, code=code, **hooks)


class Request(BaseModel):
    """Outbound message: ``(action, code, context_id)``."""

    model_config = ConfigDict(frozen=True)

    action: Action
    code: str
    context_id: int = Field(..., ge=1)

    def as_tuple(self) -> Tuple[str, str, int]:
        return (self.action.value, self.code, self.context_id)


# ============================================================================
# INBOUND MESSAGES
# ============================================================================


class LogMessage(BaseModel):
    """Free-form diagnostic text from the worker. Never forwarded."""

    log: str


class StreamMessage(BaseModel):
    """A chunk written to the worker's stdout or stderr."""

    id: Optional[int] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None

    @property
    def stream(self) -> str:
        return "stdout" if self.stdout is not None else "stderr"

    @property
    def text(self) -> str:
        return self.stdout if self.stdout is not None else (self.stderr or "")


class ReplyMessage(BaseModel):
    """Error-or-success reply. Unknown payload fields are kept as extras."""

    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    end: bool = False

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id", "end"})


class ErrorContent(BaseModel):
    ename: str
    evalue: str
    traceback: List[str] = Field(default_factory=list)


class ErrorMessage(ReplyMessage):
    error: ErrorContent


class ExecutionMessage(ReplyMessage):
    mime: Dict[str, Any]


class CompletionMessage(ReplyMessage):
    completion: Dict[str, Any]


class InspectionMessage(ReplyMessage):
    inspection: Dict[str, Any]


class NameListMessage(ReplyMessage):
    """Attribute names of a scope. ``keys`` lists its string keys when it is a mapping."""

    names: List[str]
    keys: Optional[List[str]] = None

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id", "end"}, exclude_none=True)


InboundMessage = Union[LogMessage, StreamMessage, ReplyMessage]

_SUCCESS_VARIANTS = (
    ("mime", ExecutionMessage),
    ("completion", CompletionMessage),
    ("inspection", InspectionMessage),
    ("names", NameListMessage),
)


def decode_message(raw: Any) -> InboundMessage:
    """Decode a raw worker message into its tagged variant.

    Raises:
        ProtocolError: if ``raw`` is not a mapping or a field has the wrong type.
    """
    if not isinstance(raw, Mapping):
        raise ProtocolError(f"Expected a mapping, got {type(raw).__name__}")

    model = ReplyMessage
    if "log" in raw:
        model = LogMessage
    elif "stdout" in raw or "stderr" in raw:
        model = StreamMessage
    elif "error" in raw:
        model = ErrorMessage
    else:
        for key, variant in _SUCCESS_VARIANTS:
            if key in raw:
                model = variant
                break

    try:
        return model.model_validate(dict(raw))
    except ValidationError as e:
        raise ProtocolError(f"Malformed {model.__name__}: {e}") from e
