"""Deterministic mock backend for engine tests."""

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Set

from epub_narrator.errors import NarrationError

from .base import (
    SIGNAL_ENDED,
    SIGNAL_ERROR,
    SIGNAL_PROGRESS,
    SIGNAL_STARTED,
    NarrationBackend,
    SignalCallback,
)


@dataclass
class MockRequest:
    handle: int
    text: str
    on_signal: SignalCallback
    voice: Optional[str] = None
    rate: float = 1.0
    pitch: float = 1.0
    cancelled: bool = False


class MockNarrationBackend(NarrationBackend):
    """Backend whose signals are driven explicitly by the caller.

    With ``auto_complete=True`` every request emits ``started`` and ``ended``
    synchronously from inside ``speak``. Texts listed in ``failing_texts``
    emit ``error`` instead; texts in ``rejected_texts`` make ``speak`` raise.
    """

    def __init__(
        self,
        auto_complete: bool = False,
        failing_texts: Iterable[str] = (),
        rejected_texts: Iterable[str] = (),
    ) -> None:
        self.auto_complete = auto_complete
        self.failing_texts: Set[str] = set(failing_texts)
        self.rejected_texts: Set[str] = set(rejected_texts)
        self.requests: List[MockRequest] = []
        self.cancelled: List[int] = []
        self._initialized = False

    @property
    def name(self) -> str:
        return "mock"

    def initialize(self, lang_code: str = "a", device: str = "auto") -> None:
        self._initialized = True

    def speak(
        self,
        text: str,
        on_signal: SignalCallback,
        *,
        voice: Optional[str] = None,
        rate: float = 1.0,
        pitch: float = 1.0,
    ) -> Any:
        if text in self.rejected_texts:
            raise NarrationError(f"Mock backend rejected: {text}")

        request = MockRequest(
            handle=len(self.requests) + 1,
            text=text,
            on_signal=on_signal,
            voice=voice,
            rate=rate,
            pitch=pitch,
        )
        self.requests.append(request)

        if text in self.failing_texts:
            on_signal(SIGNAL_ERROR, "synthesis-failed")
        elif self.auto_complete:
            on_signal(SIGNAL_STARTED, None)
            on_signal(SIGNAL_ENDED, None)
        return request.handle

    def cancel(self, handle: Any) -> None:
        request = self._request(handle)
        request.cancelled = True
        self.cancelled.append(request.handle)

    def list_voices(self) -> List[str]:
        return ["mock-a", "mock-b"]

    def cleanup(self) -> None:
        self._initialized = False

    @property
    def spoken_texts(self) -> List[str]:
        return [request.text for request in self.requests]

    @property
    def last_request(self) -> MockRequest:
        if not self.requests:
            raise AssertionError("No narration request has been issued.")
        return self.requests[-1]

    def _request(self, handle: Optional[int]) -> MockRequest:
        if handle is None:
            return self.last_request
        return self.requests[handle - 1]

    def start(self, handle: Optional[int] = None) -> None:
        self._request(handle).on_signal(SIGNAL_STARTED, None)

    def progress(self, handle: Optional[int] = None) -> None:
        self._request(handle).on_signal(SIGNAL_PROGRESS, None)

    def complete(self, handle: Optional[int] = None) -> None:
        self._request(handle).on_signal(SIGNAL_ENDED, None)

    def fail(self, handle: Optional[int] = None, message: str = "synthesis-failed") -> None:
        self._request(handle).on_signal(SIGNAL_ERROR, message)
