"""Line-oriented event output for the command-line interface.

Each event is one line: ``KIND:field:field`` in text mode, or a JSON object
with ``type`` and ``ts_ms`` keys in json mode. Lines can also be appended to a
log file.
"""

import json
import os
import sys
import threading
import time
from typing import Any, Callable, Dict, Optional, TextIO, Tuple

TextFormatter = Callable[[Dict[str, Any]], str]

TEXT_FORMATS: Dict[str, TextFormatter] = {
    "phase": lambda p: f"PHASE:{p['phase']}",
    "metadata": lambda p: f"METADATA:{p['key']}:{p['value']}",
    "parse_progress": lambda p: (
        f"PARSE_PROGRESS:{p['current_item']}/{p['total_items']}:{p['current_chapter_count']}"
    ),
    "heartbeat": lambda p: f"HEARTBEAT:{p['heartbeat_ts']}",
    "book": lambda p: f"BOOK:{p['book_id']}:{p['chapter_count']}:{p['title']}",
    "chapter": lambda p: f"CHAPTER:{p['index']}:{p['sentence_count']}:{p['title']}",
    "state": lambda p: (
        f"STATE:{p['state']}:{p['chapter_index']}/{p['total_chapters']}:{p['sentence_index']}"
    ),
    "inspection": lambda p: f"INSPECTION:{json.dumps(p['result'], ensure_ascii=False)}",
    "done": lambda p: "DONE",
}


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventEmitter:
    """Write CLI events to stdout/stderr and an optional log file."""

    def __init__(self, event_format: str = "text", log_file: Optional[str] = None):
        self.event_format = event_format
        self._log_fp: Optional[TextIO] = None
        self._write_lock = threading.Lock()

        if log_file:
            os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
            self._log_fp = open(log_file, "a", encoding="utf-8")

    @property
    def structured(self) -> bool:
        return self.event_format == "json"

    def _write(self, line: str, *, stderr: bool = False) -> None:
        with self._write_lock:
            print(line, file=sys.stderr if stderr else sys.stdout, flush=True)
            if self._log_fp is not None:
                self._log_fp.write(line + "\n")
                self._log_fp.flush()

    def _write_json(self, event_type: str, payload: Dict[str, Any]) -> None:
        body = {"type": event_type, "ts_ms": _now_ms(), **payload}
        self._write(json.dumps(body, ensure_ascii=False))

    def emit(self, event_type: str, **payload: Any) -> None:
        if self.structured:
            self._write_json(event_type, payload)
            return
        formatter = TEXT_FORMATS.get(event_type)
        if formatter is not None:
            self._write(formatter(payload))

    def info(self, message: str) -> None:
        if self.structured:
            self._write_json("log", {"level": "info", "message": message})
        else:
            self._write(message)

    def warn(self, message: str) -> None:
        if self.structured:
            self._write_json("log", {"level": "warning", "message": message})
        else:
            self._write(f"WARN: {message}", stderr=True)

    def error(self, message: str) -> None:
        if self.structured:
            self._write_json("error", {"message": message})
        else:
            self._write(message, stderr=True)

    def close(self) -> None:
        if self._log_fp is not None:
            self._log_fp.close()
            self._log_fp = None


def start_heartbeat_emitter(
    events: EventEmitter,
    interval_seconds: float = 5.0,
    thread_name: str = "event-heartbeat",
) -> Tuple[threading.Event, threading.Thread]:
    """Emit a heartbeat every ``interval_seconds`` until the returned event is set."""
    stop_event = threading.Event()

    def beat() -> None:
        while not stop_event.wait(interval_seconds):
            events.emit("heartbeat", heartbeat_ts=_now_ms())

    thread = threading.Thread(target=beat, name=thread_name, daemon=True)
    thread.start()
    return stop_event, thread
