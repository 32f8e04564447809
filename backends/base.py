"""Abstract narration backend interface."""

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

SIGNAL_STARTED = "started"
SIGNAL_PROGRESS = "progress"
SIGNAL_ENDED = "ended"
SIGNAL_ERROR = "error"

TERMINAL_SIGNALS = frozenset({SIGNAL_ENDED, SIGNAL_ERROR})

# on_signal(kind, detail): detail carries the error message for SIGNAL_ERROR.
SignalCallback = Callable[[str, Optional[str]], None]


class NarrationBackend(ABC):
    """Speaks short texts asynchronously and reports back through a callback.

    Each ``speak`` call is one request. The backend calls ``on_signal`` with
    zero or more non-terminal signals (``started``, ``progress``) followed by
    exactly one terminal signal (``ended`` or ``error``). Signals may arrive
    on any thread, including synchronously from within ``speak``.
    ``cancel`` is best-effort: a terminal signal may still arrive afterwards.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier used by the factory."""

    def initialize(self, lang_code: str = "a", device: str = "auto") -> None:
        """Load models or connect to the platform service.

        Args:
            lang_code: Language code passed through to the synthesizer
            device: Requested execution device, if the backend has one
        """

    @abstractmethod
    def speak(
        self,
        text: str,
        on_signal: SignalCallback,
        *,
        voice: Optional[str] = None,
        rate: float = 1.0,
        pitch: float = 1.0,
    ) -> Any:
        """Start narrating ``text`` and return an opaque request handle.

        Raises:
            NarrationError: If the request cannot be issued at all
        """

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        """Stop the request identified by ``handle`` if it is still running."""

    def list_voices(self) -> List[str]:
        return []

    def cleanup(self) -> None:
        """Release backend resources."""
