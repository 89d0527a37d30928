"""pel: a persistent Python evaluation session with completion and inspection."""

from .config import SessionConfig, load_config
from .documentation import DocumentationIndex, get_documentation
from .errors import PelError, ProtocolError, SessionError, WorkerError
from .expression import Expression, parse_expression
from .kernel_worker import KernelWorker, Worker
from .models import Action, Callbacks, Request, Task
from .observability import configure_logging
from .session import Session

__version__ = "0.1.0"

__all__ = [
    "Action",
    "Callbacks",
    "DocumentationIndex",
    "Expression",
    "KernelWorker",
    "PelError",
    "ProtocolError",
    "Request",
    "Session",
    "SessionConfig",
    "SessionError",
    "Task",
    "Worker",
    "WorkerError",
    "configure_logging",
    "get_documentation",
    "load_config",
    "parse_expression",
]
