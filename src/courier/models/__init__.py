"""courier option, configuration and event models."""

from .config import ClientSettings
from .events import AttemptEvent, EventType, Progress
from .options import (
    DEFAULT_RETRY_ERROR_CODES,
    DEFAULT_RETRY_METHODS,
    DEFAULT_RETRY_STATUS_CODES,
    Hooks,
    HookType,
    Options,
    RetryOptions,
    TimeoutOptions,
)

__all__ = [
    # Options
    "Hooks",
    "HookType",
    "Options",
    "RetryOptions",
    "TimeoutOptions",
    "DEFAULT_RETRY_ERROR_CODES",
    "DEFAULT_RETRY_METHODS",
    "DEFAULT_RETRY_STATUS_CODES",
    # Config
    "ClientSettings",
    # Events
    "AttemptEvent",
    "EventType",
    "Progress",
]
