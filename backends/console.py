"""Console backend: prints each request and simulates speaking time."""

import itertools
import threading
from typing import Any, Dict, List, Optional

from rich.console import Console

from .base import (
    SIGNAL_ENDED,
    SIGNAL_PROGRESS,
    SIGNAL_STARTED,
    NarrationBackend,
    SignalCallback,
)

DEFAULT_WORDS_PER_MINUTE = 170


class ConsoleNarrationBackend(NarrationBackend):
    """Writes narration text to the terminal at a realistic reading pace.

    Useful on hosts without a speech synthesizer and for checking import
    results end-to-end. Each request runs on its own daemon thread that emits
    one ``progress`` signal per word.
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
    ) -> None:
        self._console = console or Console(highlight=False)
        self._words_per_minute = max(1, words_per_minute)
        self._handles = itertools.count(1)
        self._cancel_events: Dict[int, threading.Event] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "console"

    def speak(
        self,
        text: str,
        on_signal: SignalCallback,
        *,
        voice: Optional[str] = None,
        rate: float = 1.0,
        pitch: float = 1.0,
    ) -> Any:
        handle = next(self._handles)
        cancel_event = threading.Event()
        with self._lock:
            self._cancel_events[handle] = cancel_event

        words = text.split() or [text]
        seconds_per_word = 60.0 / (self._words_per_minute * max(rate, 0.1))

        def narrate() -> None:
            try:
                on_signal(SIGNAL_STARTED, None)
                self._console.print(text)
                for _ in words:
                    if cancel_event.wait(seconds_per_word):
                        return
                    on_signal(SIGNAL_PROGRESS, None)
                on_signal(SIGNAL_ENDED, None)
            finally:
                with self._lock:
                    self._cancel_events.pop(handle, None)

        thread = threading.Thread(target=narrate, name=f"console-narration-{handle}", daemon=True)
        thread.start()
        return handle

    def cancel(self, handle: Any) -> None:
        with self._lock:
            cancel_event = self._cancel_events.get(handle)
        if cancel_event is not None:
            cancel_event.set()

    def list_voices(self) -> List[str]:
        return ["console"]

    def cleanup(self) -> None:
        with self._lock:
            events = list(self._cancel_events.values())
            self._cancel_events.clear()
        for cancel_event in events:
            cancel_event.set()
