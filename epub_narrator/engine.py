"""Sentence-by-sentence narration state machine.

Commands (``play``, ``pause``, ...) and backend signals are serialized
through one re-entrant lock. Signals are queued and drained by whichever
thread currently owns the engine, so a backend that signals synchronously
from inside ``speak`` is handled after the issuing command finishes.

Every backend request is tagged with a generation token. Cancelling a
request bumps the generation, so any ``ended``/``error`` that arrives later
for the old request no longer matches and is dropped.
"""

import functools
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Deque, Iterator, List, Optional, Tuple

from backends import (
    SIGNAL_ENDED,
    SIGNAL_ERROR,
    SIGNAL_PROGRESS,
    SIGNAL_STARTED,
    NarrationBackend,
)

from .chunking import split_for_narration
from .models import Chapter, RenderState
from .persistence import PositionWriter
from .runtime import NarrationSettings
from .store import RecordStore
from .timers import ThreadingScheduler

STATE_IDLE = "idle"
STATE_LOADING = "loading"
STATE_STOPPED = "stopped"
STATE_PLAYING = "playing"
STATE_PAUSED = "paused"
STATE_ERROR = "error"

READY_STATES = frozenset({STATE_STOPPED, STATE_PLAYING, STATE_PAUSED})

# Raised internally by the watchdog, never by a backend.
SIGNAL_TIMEOUT = "timeout"

NO_CHAPTERS_MESSAGE = "No chapters found"

Cursor = Tuple[int, int]
RenderCallback = Callable[[RenderState], None]


@dataclass
class NarrationRequest:
    chapter_index: int
    sentence_index: int
    chunks: List[str]
    chunk_index: int = 0
    token: int = 0
    handle: Any = None

    @property
    def text(self) -> str:
        return self.chunks[self.chunk_index]


@dataclass(frozen=True)
class NarrationSignal:
    kind: str
    token: int
    detail: Optional[str] = None
    # Watchdog arm that raised a timeout; zero for backend signals.
    serial: int = 0


class NarrationEngine:
    def __init__(
        self,
        store: RecordStore,
        backend: NarrationBackend,
        render_callback: Optional[RenderCallback] = None,
        *,
        settings: Optional[NarrationSettings] = None,
        scheduler: Optional[Any] = None,
        warning_callback: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.backend = backend
        self.settings = settings or NarrationSettings()
        self._scheduler = scheduler or ThreadingScheduler()
        self._warning_callback = warning_callback
        self._clock = clock
        self._wall_clock = wall_clock
        self._subscribers: List[RenderCallback] = []
        if render_callback is not None:
            self._subscribers.append(render_callback)

        self._lock = threading.RLock()
        self._busy = False
        self._signals: Deque[NarrationSignal] = deque()

        self._state = STATE_IDLE
        self._book_id: Optional[str] = None
        self._chapters: List[Chapter] = []
        self._cursor: Cursor = (0, 0)
        self._message = ""
        self._request: Optional[NarrationRequest] = None
        self._generation = 0
        self._watchdog: Optional[Any] = None
        self._watchdog_serial = 0
        self._writer: Optional[PositionWriter] = None
        self._chapter_failures = 0

    # -- accessors ---------------------------------------------------------

    @property
    def state(self) -> str:
        return self._state

    @property
    def cursor(self) -> Cursor:
        return self._cursor

    @property
    def book_id(self) -> Optional[str]:
        return self._book_id

    @property
    def chapters(self) -> Tuple[Chapter, ...]:
        return tuple(self._chapters)

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, callback: RenderCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def render_state(self) -> RenderState:
        chapter_index, sentence_index = self._cursor
        chapter = self._chapters[chapter_index] if self._chapters else None
        sentence = ""
        title = ""
        if chapter is not None:
            title = chapter.title or f"Chapter {chapter_index + 1}"
            if sentence_index < len(chapter.sentences):
                sentence = chapter.sentences[sentence_index]
        return RenderState(
            state=self._state,
            chapter_index=chapter_index,
            sentence_index=sentence_index,
            total_chapters=len(self._chapters),
            chapter_title=title,
            current_sentence_text=sentence,
            message=self._message,
        )

    # -- transport ---------------------------------------------------------

    def open(self, book_id: str) -> str:
        """Load a book's chapters and last position; returns the resulting state."""
        with self._serialized():
            self._teardown()
            self._book_id = book_id
            self._set_state(STATE_LOADING)

            try:
                chapters = sorted(self.store.get_chapters(book_id), key=lambda ch: ch.spine_index)
                position = self.store.get_position(book_id)
            except Exception as exc:
                self._message = f"Failed to load book: {exc}"
                self._warn(self._message)
                self._set_state(STATE_ERROR)
                return self._state

            self._chapters = chapters
            self._writer = PositionWriter(
                self.store,
                book_id,
                self.settings.persist_interval_seconds,
                clock=self._clock,
                wall_clock=self._wall_clock,
                on_error=self._on_persist_error,
            )
            if position is not None:
                self._cursor = self._clamp(position.chapter_index, position.sentence_index)
                if self._cursor == (position.chapter_index, position.sentence_index):
                    self._writer.mark_written(*self._cursor)

            if not chapters:
                self._message = NO_CHAPTERS_MESSAGE
                self._warn(f"{NO_CHAPTERS_MESSAGE} for book {book_id}.")
            self._set_state(STATE_STOPPED)
            return self._state

    def play(self) -> None:
        with self._serialized():
            if self._state not in (STATE_STOPPED, STATE_PAUSED):
                return
            start = self._playable_from(*self._cursor)
            if start is None:
                return

            self._cursor = start
            self._chapter_failures = 0
            self._message = ""
            self._state = STATE_PLAYING
            self._speak_current()
            self._render()

    def pause(self) -> None:
        with self._serialized():
            if self._state != STATE_PLAYING:
                return
            self._cancel_request()
            self._state = STATE_PAUSED
            self._persist(force=True)
            self._render()

    def stop(self) -> None:
        with self._serialized():
            if self._state not in (STATE_PLAYING, STATE_PAUSED):
                return
            self._cancel_request()
            self._state = STATE_STOPPED
            self._persist(force=True)
            self._render()

    def rewind(self) -> None:
        with self._serialized():
            if self._state not in READY_STATES or not self._chapters:
                return
            self._move_cursor(self._cursor[0], 0, restart=True)

    def forward(self) -> None:
        with self._serialized():
            if self._state not in READY_STATES or not self._chapters:
                return
            next_chapter = self._cursor[0] + 1
            if next_chapter >= len(self._chapters):
                return
            self._move_cursor(next_chapter, 0)

    def seek(self, chapter_index: int, sentence_index: int) -> None:
        with self._serialized():
            if self._state not in READY_STATES or not self._chapters:
                return
            self._move_cursor(*self._clamp(chapter_index, sentence_index))

    def destroy(self) -> None:
        with self._serialized():
            self._teardown()
            self._set_state(STATE_IDLE)
            self._subscribers.clear()

    # -- serialization -----------------------------------------------------

    @contextmanager
    def _serialized(self) -> Iterator[None]:
        with self._lock:
            if self._busy:
                yield
                return

            self._busy = True
            try:
                yield
                while self._signals:
                    self._handle_signal(self._signals.popleft())
            finally:
                self._busy = False

    def _post(self, signal: NarrationSignal) -> None:
        with self._serialized():
            self._signals.append(signal)

    def _on_backend_signal(self, token: int, kind: str, detail: Optional[str] = None) -> None:
        self._post(NarrationSignal(kind=kind, token=token, detail=detail))

    # -- request lifecycle -------------------------------------------------

    def _speak_current(self) -> None:
        chapter_index, sentence_index = self._cursor
        sentence = self._chapters[chapter_index].sentences[sentence_index]
        chunks = split_for_narration(sentence, self.settings.max_request_chars) or [sentence]
        self._request = NarrationRequest(
            chapter_index=chapter_index,
            sentence_index=sentence_index,
            chunks=chunks,
        )
        self._issue_chunk()

    def _issue_chunk(self) -> None:
        request = self._request
        self._generation += 1
        request.token = self._generation
        request.handle = None
        on_signal = functools.partial(self._on_backend_signal, request.token)

        try:
            request.handle = self.backend.speak(
                request.text,
                on_signal,
                voice=self.settings.voice,
                rate=self.settings.rate,
                pitch=self.settings.pitch,
            )
        except Exception as exc:
            self._signals.append(NarrationSignal(SIGNAL_ERROR, request.token, str(exc)))
            return

        self._arm_watchdog(request.token)

    def _cancel_request(self) -> None:
        request = self._request
        self._request = None
        self._generation += 1
        self._disarm_watchdog()
        if request is not None:
            self._cancel_handle(request.handle)

    def _cancel_handle(self, handle: Any) -> None:
        if handle is None:
            return
        try:
            self.backend.cancel(handle)
        except Exception as exc:
            self._warn(f"Cancelling narration request failed: {exc}")

    def _handle_signal(self, signal: NarrationSignal) -> None:
        request = self._request
        if request is None or signal.token != request.token or self._state != STATE_PLAYING:
            return

        if signal.kind in (SIGNAL_STARTED, SIGNAL_PROGRESS):
            self._arm_watchdog(request.token)
            return

        if signal.kind == SIGNAL_ENDED:
            self._disarm_watchdog()
            request.chunk_index += 1
            if request.chunk_index < len(request.chunks):
                self._issue_chunk()
                return
            self._request = None
            self._chapter_failures = 0
            self._advance()
            return

        if signal.kind not in (SIGNAL_ERROR, SIGNAL_TIMEOUT):
            return
        if signal.kind == SIGNAL_TIMEOUT and signal.serial != self._watchdog_serial:
            return

        self._disarm_watchdog()
        self._request = None
        if signal.kind == SIGNAL_TIMEOUT:
            self._cancel_handle(request.handle)
            reason = "stalled"
        else:
            reason = f"failed ({signal.detail or 'unknown error'})"

        chapter_index = request.chapter_index
        self._warn(
            f"Narration {reason} at chapter {chapter_index + 1}, "
            f"sentence {request.sentence_index + 1}; skipping."
        )
        self._chapter_failures += 1
        if self._chapter_failures >= len(self._chapters[chapter_index].sentences):
            self._message = f"Narration failed for every sentence in chapter {chapter_index + 1}."
            self._warn(self._message)
            self._state = STATE_ERROR
            self._persist(force=True)
            self._render()
            return

        self._advance()

    def _advance(self) -> None:
        chapter_index, sentence_index = self._cursor
        next_cursor = self._next_cursor(chapter_index, sentence_index)
        if next_cursor is None:
            self._state = STATE_STOPPED
            self._persist(force=True)
            self._render()
            return

        if next_cursor[0] != chapter_index:
            self._chapter_failures = 0
        self._cursor = next_cursor
        self._speak_current()
        self._persist()
        self._render()

    def _move_cursor(self, chapter_index: int, sentence_index: int, restart: bool = False) -> None:
        target = (chapter_index, sentence_index)
        was_playing = self._state == STATE_PLAYING
        if target == self._cursor and not (restart and was_playing):
            return

        self._cancel_request()
        self._cursor = target
        self._chapter_failures = 0

        if was_playing:
            start = self._playable_from(chapter_index, sentence_index)
            if start is None:
                self._state = STATE_STOPPED
                self._persist(force=True)
                self._render()
                return
            self._cursor = start
            self._speak_current()

        self._persist()
        self._render()

    # -- watchdog ----------------------------------------------------------

    def _arm_watchdog(self, token: int) -> None:
        self._disarm_watchdog()
        if self.settings.watchdog_seconds <= 0:
            return
        signal = NarrationSignal(SIGNAL_TIMEOUT, token, serial=self._watchdog_serial)
        self._watchdog = self._scheduler.call_later(
            self.settings.watchdog_seconds,
            functools.partial(self._post, signal),
        )

    def _disarm_watchdog(self) -> None:
        # A timer that already fired may still be waiting on the lock.
        self._watchdog_serial += 1
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    # -- cursor helpers ----------------------------------------------------

    def _clamp(self, chapter_index: int, sentence_index: int) -> Cursor:
        if not self._chapters:
            return (0, 0)
        chapter_index = min(max(int(chapter_index), 0), len(self._chapters) - 1)
        sentence_count = len(self._chapters[chapter_index].sentences)
        if sentence_count == 0:
            return (chapter_index, 0)
        return (chapter_index, min(max(int(sentence_index), 0), sentence_count - 1))

    def _playable_from(self, chapter_index: int, sentence_index: int) -> Optional[Cursor]:
        for index in range(chapter_index, len(self._chapters)):
            start = sentence_index if index == chapter_index else 0
            if start < len(self._chapters[index].sentences):
                return (index, start)
        return None

    def _next_cursor(self, chapter_index: int, sentence_index: int) -> Optional[Cursor]:
        if sentence_index + 1 < len(self._chapters[chapter_index].sentences):
            return (chapter_index, sentence_index + 1)
        return self._playable_from(chapter_index + 1, 0)

    # -- persistence / notifications ---------------------------------------

    def _persist(self, force: bool = False) -> None:
        if self._writer is not None:
            self._writer.persist(*self._cursor, force=force)

    def _on_persist_error(self, exc: Exception) -> None:
        self._warn(f"Could not save playback position: {exc}")

    def _teardown(self) -> None:
        self._cancel_request()
        if self._writer is not None:
            self._writer.flush()
            self._writer = None
        self._book_id = None
        self._chapters = []
        self._cursor = (0, 0)
        self._message = ""
        self._chapter_failures = 0

    def _set_state(self, state: str) -> None:
        self._state = state
        self._render()

    def _render(self) -> None:
        payload = self.render_state()
        for callback in list(self._subscribers):
            callback(payload)

    def _warn(self, message: str) -> None:
        if self._warning_callback is not None:
            self._warning_callback(message)
