from .base import (
    SIGNAL_ENDED,
    SIGNAL_ERROR,
    SIGNAL_PROGRESS,
    SIGNAL_STARTED,
    TERMINAL_SIGNALS,
    NarrationBackend,
    SignalCallback,
)
from .factory import create_backend, get_available_backends

__all__ = [
    "SIGNAL_ENDED",
    "SIGNAL_ERROR",
    "SIGNAL_PROGRESS",
    "SIGNAL_STARTED",
    "TERMINAL_SIGNALS",
    "NarrationBackend",
    "SignalCallback",
    "create_backend",
    "get_available_backends",
]
