import argparse
from contextlib import nullcontext
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from backends import NarrationBackend, create_backend

from .cleanup import cleanup_backend, cleanup_engine
from .engine import STATE_ERROR, STATE_PLAYING, NarrationEngine
from .events import EventEmitter, start_heartbeat_emitter
from .importer import ImportResult, import_book
from .models import RenderState
from .runtime import (
    NarrationSettings,
    default_library_dir,
    resolve_backend,
    resolve_settings,
)
from .store import JsonRecordStore, RecordStore


@dataclass
class MainDeps:
    parse_args: Callable[[], argparse.Namespace]
    event_emitter_cls: Callable[..., EventEmitter]
    open_store: Callable[[str], RecordStore]
    import_book: Callable[..., ImportResult]
    resolve_settings: Callable[..., Tuple[NarrationSettings, List[str]]]
    resolve_backend: Callable[[str], str]
    create_backend: Callable[[str], NarrationBackend]
    engine_cls: Callable[..., NarrationEngine]
    cleanup_backend: Callable[[Optional[NarrationBackend]], Optional[BaseException]]
    cleanup_engine: Callable[[Optional[NarrationEngine]], Optional[BaseException]]
    start_heartbeat_emitter: Callable[..., Any]
    wait_until_finished: Callable[[threading.Event], None]


def wait_until_finished(finished: threading.Event, poll_seconds: float = 0.5) -> None:
    # Short waits keep the main thread responsive to Ctrl-C.
    while not finished.wait(poll_seconds):
        pass


DEFAULT_MAIN_DEPS = MainDeps(
    parse_args=lambda: parse_args(),
    event_emitter_cls=EventEmitter,
    open_store=JsonRecordStore,
    import_book=import_book,
    resolve_settings=resolve_settings,
    resolve_backend=resolve_backend,
    create_backend=create_backend,
    engine_cls=NarrationEngine,
    cleanup_backend=cleanup_backend,
    cleanup_engine=cleanup_engine,
    start_heartbeat_emitter=start_heartbeat_emitter,
    wait_until_finished=wait_until_finished,
)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import EPUB books and narrate them aloud")
    commands = parser.add_mutually_exclusive_group(required=True)
    commands.add_argument("--import_book", metavar="PATH", help="Import an EPUB into the library")
    commands.add_argument("--list_books", action="store_true", help="List imported books")
    commands.add_argument(
        "--inspect_book",
        metavar="BOOK_ID",
        help="Print chapters and saved position of a book, then exit",
    )
    commands.add_argument("--remove_book", metavar="BOOK_ID", help="Remove a book from the library")
    commands.add_argument("--read", metavar="BOOK_ID", help="Narrate a book from its saved position")
    commands.add_argument(
        "--list_voices",
        action="store_true",
        help="List voices offered by the selected backend, then exit",
    )

    parser.add_argument(
        "--library",
        default=None,
        help="Library directory (default: $NARRATOR_LIBRARY or ~/.epub_narrator)",
    )
    parser.add_argument(
        "--chapter",
        type=int,
        default=None,
        help="Start reading at this chapter (1-based)",
    )
    parser.add_argument(
        "--sentence",
        type=int,
        default=None,
        help="Start reading at this sentence of the chapter (1-based)",
    )
    parser.add_argument(
        "--backend",
        choices=["auto", "kokoro", "console", "mock"],
        default="auto",
        help="Narration backend to use (default: auto)",
    )
    parser.add_argument("--voice", default=None, help="Backend voice")
    parser.add_argument("--rate", type=float, default=None, help="Speech rate (default: 1.0)")
    parser.add_argument("--pitch", type=float, default=None, help="Speech pitch (default: 1.0)")
    parser.add_argument("--lang_code", default=None, help="Kokoro language code")
    parser.add_argument(
        "--device",
        choices=["auto", "cpu", "mps", "cuda"],
        default=None,
        help="Execution device for the Kokoro backend (default: auto)",
    )
    parser.add_argument(
        "--max_request_chars",
        type=int,
        default=None,
        help="Longest text sent to the backend in one request (default: 220)",
    )
    parser.add_argument(
        "--watchdog_seconds",
        type=float,
        default=None,
        help="Skip a sentence when the backend stays silent this long; 0 disables (default: 12)",
    )
    parser.add_argument(
        "--no_rich",
        action="store_true",
        help="Disable rich progress bar (for CLI integration)",
    )
    parser.add_argument(
        "--event_format",
        choices=["text", "json"],
        default="text",
        help="IPC event output format (default: text)",
    )
    parser.add_argument(
        "--log_file",
        help="Optional path to append narrator logs",
    )
    return parser.parse_args(argv)


def inspect_book(store: RecordStore, book_id: str) -> dict:
    book = store.get_book(book_id)
    if book is None:
        raise ValueError(f"Book not found: {book_id}")

    position = store.get_position(book_id)
    return {
        "book": book.to_dict(),
        "chapters": [
            {
                "index": chapter.spine_index,
                "title": chapter.title,
                "source_path": chapter.source_path,
                "sentence_count": len(chapter.sentences),
            }
            for chapter in store.get_chapters(book_id)
        ],
        "position": position.to_dict() if position else None,
    }


def run_import(
    args: argparse.Namespace,
    store: RecordStore,
    events: EventEmitter,
    deps: MainDeps,
) -> ImportResult:
    events.emit("phase", phase="IMPORTING")

    progress = None
    task_id = None
    if not args.no_rich:
        progress = Progress(
            TextColumn("[bold]Importing[/bold]"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total} documents"),
            TimeElapsedColumn(),
        )
        task_id = progress.add_task("import", total=None)

    def on_progress(current_item: int, total_items: int, chapter_count: int) -> None:
        events.emit(
            "parse_progress",
            current_item=current_item,
            total_items=total_items,
            current_chapter_count=chapter_count,
        )
        if progress is not None:
            progress.update(task_id, completed=current_item, total=total_items)

    heartbeat_stop, heartbeat_thread = deps.start_heartbeat_emitter(
        events,
        thread_name="import-heartbeat",
    )
    try:
        with progress if progress is not None else nullcontext():
            result = deps.import_book(
                args.import_book,
                store,
                source_name=os.path.basename(args.import_book),
                progress_callback=on_progress,
            )
    finally:
        heartbeat_stop.set()
        heartbeat_thread.join(timeout=1)

    for warning in result.warnings:
        events.warn(warning)

    book = result.book
    events.emit("metadata", key="title", value=book.title)
    events.emit("metadata", key="author", value=book.author)
    events.emit("metadata", key="has_cover", value=str(book.cover_path is not None).lower())
    for index, chapter in enumerate(result.chapters):
        events.emit(
            "chapter",
            index=index,
            sentence_count=len(chapter.sentences),
            title=chapter.title,
        )
    events.emit("book", book_id=book.id, chapter_count=book.chapter_count, title=book.title)
    if book.error:
        events.warn(f"Book imported without chapters: {book.error}")
    return result


def run_reader(
    args: argparse.Namespace,
    store: RecordStore,
    events: EventEmitter,
    deps: MainDeps,
) -> None:
    settings, warnings = deps.resolve_settings(args)
    for warning in warnings:
        events.warn(warning)

    resolved_backend = deps.resolve_backend(args.backend)
    events.emit("metadata", key="backend_resolved", value=resolved_backend)

    backend: Optional[NarrationBackend] = None
    engine: Optional[NarrationEngine] = None
    main_error: Optional[BaseException] = None
    last_chapter = [-1]

    def on_render(render: RenderState) -> None:
        events.emit(
            "state",
            state=render.state,
            chapter_index=render.chapter_index,
            total_chapters=render.total_chapters,
            sentence_index=render.sentence_index,
        )
        if render.state == STATE_PLAYING and render.chapter_index != last_chapter[0]:
            last_chapter[0] = render.chapter_index
            events.emit(
                "chapter",
                index=render.chapter_index,
                sentence_count=len(engine.chapters[render.chapter_index].sentences),
                title=render.chapter_title,
            )

    try:
        try:
            backend = deps.create_backend(resolved_backend)
            backend.initialize(lang_code=settings.lang_code, device=settings.device)
        except ImportError as exc:
            raise RuntimeError(
                f"Failed to initialize '{resolved_backend}' backend: {exc}"
            ) from exc

        engine = deps.engine_cls(
            store,
            backend,
            on_render,
            settings=settings,
            warning_callback=events.warn,
        )
        state = engine.open(args.read)
        if state == STATE_ERROR:
            raise RuntimeError(engine.render_state().message)
        if not engine.chapters:
            events.warn(engine.render_state().message)
            return

        if args.chapter is not None or args.sentence is not None:
            chapter_index = (args.chapter - 1) if args.chapter is not None else engine.cursor[0]
            sentence_index = (args.sentence - 1) if args.sentence is not None else 0
            engine.seek(chapter_index, sentence_index)

        events.emit("phase", phase="READING")
        events.info(f"Reading with {backend.name} backend")

        finished = threading.Event()

        def on_finished(render: RenderState) -> None:
            if render.state != STATE_PLAYING:
                finished.set()

        engine.play()
        engine.subscribe(on_finished)
        if engine.state != STATE_PLAYING:
            finished.set()

        try:
            deps.wait_until_finished(finished)
        except KeyboardInterrupt:
            engine.stop()
            events.info("Stopped; position saved.")

        final = engine.render_state()
        if final.state == STATE_ERROR:
            raise RuntimeError(final.message)
        events.emit("done", book_id=args.read, chapter_index=final.chapter_index)
    except BaseException as exc:
        main_error = exc
        raise
    finally:
        cleanup_error: Optional[BaseException] = None

        engine_cleanup_error = deps.cleanup_engine(engine)
        if engine_cleanup_error is not None:
            cleanup_error = engine_cleanup_error

        backend_cleanup_error = deps.cleanup_backend(backend)
        if cleanup_error is None and backend_cleanup_error is not None:
            cleanup_error = backend_cleanup_error

        if main_error is None and cleanup_error is not None:
            raise cleanup_error


def main(deps: Optional[MainDeps] = None) -> None:
    deps = deps or DEFAULT_MAIN_DEPS

    args = deps.parse_args()
    events = deps.event_emitter_cls(
        event_format=args.event_format,
        log_file=args.log_file,
    )

    try:
        if args.list_voices:
            backend = deps.create_backend(deps.resolve_backend(args.backend))
            try:
                for voice in backend.list_voices():
                    events.emit("metadata", key="voice", value=voice)
            finally:
                deps.cleanup_backend(backend)
            return

        store = deps.open_store(args.library or default_library_dir())

        if args.import_book:
            if not os.path.exists(args.import_book):
                raise FileNotFoundError(f"Input EPUB not found: {args.import_book}")
            run_import(args, store, events, deps)
            return

        if args.list_books:
            for book in store.list_books():
                events.emit(
                    "book",
                    book_id=book.id,
                    chapter_count=book.chapter_count,
                    title=book.title,
                )
            return

        if args.inspect_book:
            events.emit("inspection", result=inspect_book(store, args.inspect_book))
            return

        if args.remove_book:
            if store.get_book(args.remove_book) is None:
                raise ValueError(f"Book not found: {args.remove_book}")
            store.delete_book(args.remove_book)
            events.info(f"Removed {args.remove_book}")
            return

        run_reader(args, store, events, deps)
    except BaseException as exc:
        if isinstance(exc, Exception):
            events.error(str(exc))
        raise
    finally:
        events.close()
