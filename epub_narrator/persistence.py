import time
from typing import Callable, Optional, Tuple

from .models import PlaybackPosition
from .store import RecordStore


class PositionWriter:
    """Throttled, failure-tolerant writer for one book's playback position.

    ``persist`` writes at most once per ``interval_seconds`` unless forced;
    skipped and failed writes stay pending and go out with the next call.
    A failed write never raises: ``on_error`` receives the exception.
    """

    def __init__(
        self,
        store: RecordStore,
        book_id: str,
        interval_seconds: float = 2.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.store = store
        self.book_id = book_id
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._wall_clock = wall_clock
        self._on_error = on_error
        self._pending: Optional[Tuple[int, int]] = None
        self._last_written: Optional[Tuple[int, int]] = None
        self._last_write_at: Optional[float] = None

    @property
    def pending(self) -> Optional[Tuple[int, int]]:
        return self._pending

    @property
    def last_written(self) -> Optional[Tuple[int, int]]:
        return self._last_written

    def mark_written(self, chapter_index: int, sentence_index: int) -> None:
        """Record a position known to be persisted already (e.g. just loaded)."""
        self._last_written = (chapter_index, sentence_index)

    def persist(self, chapter_index: int, sentence_index: int, force: bool = False) -> bool:
        cursor = (chapter_index, sentence_index)
        if cursor == self._last_written:
            self._pending = None
            return True

        self._pending = cursor
        now = self._clock()
        if (
            not force
            and self._last_write_at is not None
            and now - self._last_write_at < self.interval_seconds
        ):
            return False
        return self._write(now)

    def flush(self) -> bool:
        if self._pending is None:
            return True
        return self._write(self._clock())

    def _write(self, now: float) -> bool:
        if self._pending is None:
            return True
        chapter_index, sentence_index = self._pending
        position = PlaybackPosition(
            book_id=self.book_id,
            chapter_index=chapter_index,
            sentence_index=sentence_index,
            updated_at=self._wall_clock(),
        )
        try:
            self.store.put_position(position)
        except Exception as exc:
            if self._on_error is not None:
                self._on_error(exc)
            return False

        self._last_written = self._pending
        self._pending = None
        self._last_write_at = now
        return True
