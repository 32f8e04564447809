"""PyTorch-based Kokoro narration backend."""

import itertools
import threading
from typing import Any, Dict, Iterator, List, Optional

import numpy as np
from pydub import AudioSegment

from epub_narrator.errors import NarrationError

from .base import (
    SIGNAL_ENDED,
    SIGNAL_ERROR,
    SIGNAL_PROGRESS,
    SIGNAL_STARTED,
    NarrationBackend,
    SignalCallback,
)

DEFAULT_SAMPLE_RATE = 24000
DEFAULT_VOICE = "af_heart"
DEFAULT_SLICE_MS = 500
KOKORO_VOICES = [
    "af_heart",
    "af_bella",
    "af_nicole",
    "af_sarah",
    "af_sky",
    "am_adam",
    "am_michael",
    "bf_emma",
    "bf_isabella",
    "bm_george",
    "bm_lewis",
]


def audio_to_int16(audio: Any) -> np.ndarray:
    """Convert an audio tensor/array to an int16 numpy array."""
    if hasattr(audio, "detach"):
        audio = audio.detach().cpu().numpy()
    elif not isinstance(audio, np.ndarray):
        audio = np.asarray(audio)

    if audio.dtype != np.int16:
        audio = np.clip(audio, -1.0, 1.0)
        audio = (audio * 32767.0).astype(np.int16)
    return audio


def audio_to_segment(audio: Any, rate: int = DEFAULT_SAMPLE_RATE) -> AudioSegment:
    pcm = audio_to_int16(audio)
    return AudioSegment(
        pcm.tobytes(),
        frame_rate=rate,
        sample_width=2,
        channels=1,
    )


def play_segment(segment: AudioSegment) -> None:
    from pydub.playback import play

    play(segment)


class KokoroNarrationBackend(NarrationBackend):
    """Narration backend using the Kokoro library with PyTorch.

    Each request synthesizes on a worker thread and plays the generated
    segments through pydub in slices of ``slice_ms`` milliseconds. Every
    played slice reports progress, and cancellation stops playback at the
    next slice boundary.
    """

    def __init__(self, player=play_segment, slice_ms: int = DEFAULT_SLICE_MS):
        self._pipeline = None
        self._model = None
        self._sample_rate = DEFAULT_SAMPLE_RATE
        self._player = player
        self._slice_ms = max(1, int(slice_ms))
        self._handles = itertools.count(1)
        self._cancel_events: Dict[int, threading.Event] = {}
        self._lock = threading.Lock()
        # Kokoro pipelines are not safe to drive from two threads at once.
        self._synthesis_lock = threading.Lock()

    @property
    def name(self) -> str:
        return "kokoro"

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def initialize(self, lang_code: str = "a", device: str = "auto") -> None:
        """Initialize the Kokoro PyTorch pipeline.

        Args:
            lang_code: Language code ('a' for American English, 'b' for British English)
            device: Requested torch device ('auto', 'cpu', or 'mps')
        """
        from kokoro import KModel, KPipeline
        import torch

        resolved_device = device
        if resolved_device == "auto":
            if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
                resolved_device = "mps"
            else:
                self._model = None
                self._pipeline = KPipeline(lang_code=lang_code)
                return

        if resolved_device == "mps":
            if not hasattr(torch.backends, "mps") or not torch.backends.mps.is_available():
                raise RuntimeError("MPS requested but not available")

        self._model = KModel().to(resolved_device).eval()
        self._pipeline = KPipeline(lang_code=lang_code, model=self._model)

    def _generate(self, text: str, voice: str, speed: float) -> Iterator[Any]:
        for _, _, audio in self._pipeline(text, voice=voice, speed=speed):
            yield audio

    def speak(
        self,
        text: str,
        on_signal: SignalCallback,
        *,
        voice: Optional[str] = None,
        rate: float = 1.0,
        pitch: float = 1.0,
    ) -> Any:
        if self._pipeline is None:
            raise NarrationError("Backend not initialized. Call initialize() first.")

        handle = next(self._handles)
        cancel_event = threading.Event()
        with self._lock:
            self._cancel_events[handle] = cancel_event

        def narrate() -> None:
            try:
                on_signal(SIGNAL_STARTED, None)
                with self._synthesis_lock:
                    for audio in self._generate(text, voice or DEFAULT_VOICE, rate):
                        segment = audio_to_segment(audio, self._sample_rate)
                        for start in range(0, len(segment), self._slice_ms):
                            if cancel_event.is_set():
                                return
                            self._player(segment[start:start + self._slice_ms])
                            on_signal(SIGNAL_PROGRESS, None)
                if not cancel_event.is_set():
                    on_signal(SIGNAL_ENDED, None)
            except Exception as exc:
                on_signal(SIGNAL_ERROR, str(exc))
            finally:
                with self._lock:
                    self._cancel_events.pop(handle, None)

        thread = threading.Thread(target=narrate, name=f"kokoro-narration-{handle}", daemon=True)
        thread.start()
        return handle

    def cancel(self, handle: Any) -> None:
        with self._lock:
            cancel_event = self._cancel_events.get(handle)
        if cancel_event is not None:
            cancel_event.set()

    def list_voices(self) -> List[str]:
        return list(KOKORO_VOICES)

    def cleanup(self) -> None:
        """Release PyTorch resources."""
        with self._lock:
            for cancel_event in self._cancel_events.values():
                cancel_event.set()
            self._cancel_events.clear()
        self._pipeline = None
        self._model = None
        try:
            import torch

            if torch.cuda.is_available():
                torch.cuda.empty_cache()
            elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
                if hasattr(torch, "mps") and hasattr(torch.mps, "empty_cache"):
                    torch.mps.empty_cache()
        except ImportError:
            pass
