from typing import Any, Optional

from backends import NarrationBackend


def cleanup_backend(backend: Optional[NarrationBackend]) -> Optional[BaseException]:
    if backend is None:
        return None

    try:
        backend.cleanup()
    except BaseException as exc:  # pragma: no cover - asserted via main() behavior
        return exc
    return None


def cleanup_engine(engine: Optional[Any]) -> Optional[BaseException]:
    """Destroy a NarrationEngine, flushing any throttled position write."""
    if engine is None:
        return None

    try:
        engine.destroy()
    except BaseException as exc:  # pragma: no cover - asserted via main() behavior
        return exc
    return None
