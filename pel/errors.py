"""Exceptions raised by the pel session layer."""


class PelError(Exception):
    """Base class for all pel errors."""


class ProtocolError(PelError):
    """An inbound worker message does not match any known message shape."""


class WorkerError(PelError):
    """The worker process could not be started or reached."""


class SessionError(PelError):
    """A session operation was used in an unsupported way."""
