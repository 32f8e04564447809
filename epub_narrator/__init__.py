"""Import EPUB containers into sentence-level chapters and narrate them."""

__version__ = "0.1.0"
