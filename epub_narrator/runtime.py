import argparse
import importlib.util
import os
from dataclasses import dataclass, replace
from typing import List, Mapping, Optional, Tuple

# Platform speech services stall or truncate on long utterances; ~200 chars
# stays under every limit observed.
DEFAULT_MAX_REQUEST_CHARS = 220
DEFAULT_WATCHDOG_SECONDS = 12.0
DEFAULT_PERSIST_INTERVAL_SECONDS = 2.0
DEFAULT_LIBRARY_DIRNAME = ".epub_narrator"

ENV_MAX_REQUEST_CHARS = "NARRATOR_MAX_REQUEST_CHARS"
ENV_WATCHDOG_SECONDS = "NARRATOR_WATCHDOG_SECONDS"
ENV_PERSIST_INTERVAL = "NARRATOR_PERSIST_INTERVAL"
ENV_VOICE = "NARRATOR_VOICE"
ENV_LIBRARY = "NARRATOR_LIBRARY"

_AUTO_BACKEND_CACHE: Optional[str] = None


@dataclass(frozen=True)
class NarrationSettings:
    max_request_chars: int = DEFAULT_MAX_REQUEST_CHARS
    watchdog_seconds: float = DEFAULT_WATCHDOG_SECONDS
    persist_interval_seconds: float = DEFAULT_PERSIST_INTERVAL_SECONDS
    voice: Optional[str] = None
    rate: float = 1.0
    pitch: float = 1.0
    lang_code: str = "a"
    device: str = "auto"


def _parse_env_int(
    environ: Mapping[str, str], name: str, warnings: List[str]
) -> Optional[int]:
    value = environ.get(name)
    if value is None or not value.strip():
        return None
    try:
        parsed = int(value.strip())
    except ValueError:
        warnings.append(f"Ignoring {name}={value!r}: expected an integer.")
        return None
    if parsed <= 0:
        warnings.append(f"Ignoring {name}={value!r}: must be positive.")
        return None
    return parsed


def _parse_env_float(
    environ: Mapping[str, str], name: str, warnings: List[str]
) -> Optional[float]:
    value = environ.get(name)
    if value is None or not value.strip():
        return None
    try:
        parsed = float(value.strip())
    except ValueError:
        warnings.append(f"Ignoring {name}={value!r}: expected a number.")
        return None
    if parsed < 0:
        warnings.append(f"Ignoring {name}={value!r}: must not be negative.")
        return None
    return parsed


def default_library_dir(environ: Optional[Mapping[str, str]] = None) -> str:
    environ = os.environ if environ is None else environ
    configured = environ.get(ENV_LIBRARY)
    if configured and configured.strip():
        return os.path.abspath(os.path.expanduser(configured.strip()))
    return os.path.join(os.path.expanduser("~"), DEFAULT_LIBRARY_DIRNAME)


def resolve_settings(
    args: Optional[argparse.Namespace] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[NarrationSettings, List[str]]:
    """Layer CLI flags over environment variables over defaults."""
    environ = os.environ if environ is None else environ
    warnings: List[str] = []
    settings = NarrationSettings()

    max_chars = _parse_env_int(environ, ENV_MAX_REQUEST_CHARS, warnings)
    if max_chars is not None:
        settings = replace(settings, max_request_chars=max_chars)
    watchdog = _parse_env_float(environ, ENV_WATCHDOG_SECONDS, warnings)
    if watchdog is not None:
        settings = replace(settings, watchdog_seconds=watchdog)
    interval = _parse_env_float(environ, ENV_PERSIST_INTERVAL, warnings)
    if interval is not None:
        settings = replace(settings, persist_interval_seconds=interval)
    voice = environ.get(ENV_VOICE)
    if voice and voice.strip():
        settings = replace(settings, voice=voice.strip())

    if args is None:
        return settings, warnings

    if getattr(args, "max_request_chars", None) is not None:
        if args.max_request_chars <= 0:
            warnings.append("--max_request_chars must be positive; keeping the default.")
        else:
            settings = replace(settings, max_request_chars=args.max_request_chars)
    if getattr(args, "watchdog_seconds", None) is not None:
        settings = replace(settings, watchdog_seconds=max(0.0, args.watchdog_seconds))
    if getattr(args, "voice", None):
        settings = replace(settings, voice=args.voice)
    if getattr(args, "rate", None) is not None:
        if args.rate <= 0:
            warnings.append("--rate must be positive; using 1.0.")
        else:
            settings = replace(settings, rate=args.rate)
    if getattr(args, "pitch", None) is not None:
        settings = replace(settings, pitch=args.pitch)
    if getattr(args, "lang_code", None):
        settings = replace(settings, lang_code=args.lang_code)
    if getattr(args, "device", None):
        settings = replace(settings, device=args.device)

    return settings, warnings


def resolve_backend(backend: str) -> str:
    """Resolve backend selection; 'auto' prefers Kokoro when it is installed."""
    global _AUTO_BACKEND_CACHE

    if backend != "auto":
        return backend

    if _AUTO_BACKEND_CACHE is not None:
        return _AUTO_BACKEND_CACHE

    if importlib.util.find_spec("kokoro") is not None:
        _AUTO_BACKEND_CACHE = "kokoro"
    else:
        _AUTO_BACKEND_CACHE = "console"
    return _AUTO_BACKEND_CACHE
