"""Event types emitted by requests and attempts."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    """Events emitted by a logical request."""

    REQUEST = "request"
    RESPONSE = "response"
    REDIRECT = "redirect"
    UPLOAD_PROGRESS = "upload_progress"
    DOWNLOAD_PROGRESS = "download_progress"
    RETRY = "retry"
    ERROR = "error"


class AttemptEvent(str, Enum):
    """
    Lifecycle events of one physical attempt.

    Transports emit the connection events (``socket`` through ``upload``);
    the engine emits ``response``, ``end``, ``error`` and ``abort``.
    """

    SOCKET = "socket"
    LOOKUP = "lookup"
    CONNECT = "connect"
    SECURE_CONNECT = "secure_connect"
    UPLOAD = "upload"
    RESPONSE = "response"
    END = "end"
    ERROR = "error"
    ABORT = "abort"


@dataclass(frozen=True)
class Progress:
    """
    Upload or download progress of one attempt.

    ``percent`` is a ratio in ``[0, 1]``. ``total`` is None when the size is
    unknown, in which case ``percent`` stays at 0 until the transfer ends.
    """

    percent: float
    transferred: int
    total: Optional[int] = None

    @classmethod
    def of(cls, transferred: int, total: Optional[int]) -> "Progress":
        if total:
            percent = min(transferred / total, 1.0)
        else:
            percent = 0.0
        return cls(percent=percent, transferred=transferred, total=total)

    @classmethod
    def done(cls, transferred: int) -> "Progress":
        return cls(percent=1.0, transferred=transferred, total=transferred)
