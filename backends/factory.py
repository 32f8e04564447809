"""Factory function for creating narration backends."""

import importlib.util
from typing import List

from .base import NarrationBackend


def create_backend(backend_type: str) -> NarrationBackend:
    """Create a narration backend instance.

    Args:
        backend_type: The type of backend to create ('kokoro', 'console', or 'mock')

    Returns:
        An instance of NarrationBackend

    Raises:
        ValueError: If the backend type is unknown
        ImportError: If the required dependencies are not installed
    """
    if backend_type == "kokoro":
        from .kokoro_pytorch import KokoroNarrationBackend

        return KokoroNarrationBackend()
    elif backend_type == "console":
        from .console import ConsoleNarrationBackend

        return ConsoleNarrationBackend()
    elif backend_type == "mock":
        from .mock import MockNarrationBackend

        return MockNarrationBackend(auto_complete=True)
    else:
        raise ValueError(
            f"Unknown backend type: {backend_type}. "
            f"Available backends: {get_available_backends()}"
        )


def get_available_backends() -> List[str]:
    """Get a list of available backend types.

    Returns:
        List of backend type strings that can be used with create_backend()
    """
    backends = ["console", "mock"]  # always available

    # Check for the Kokoro package without importing torch.
    if importlib.util.find_spec("kokoro") is not None:
        backends.insert(0, "kokoro")

    return backends
