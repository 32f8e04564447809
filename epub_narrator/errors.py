from typing import Optional


class NarratorError(Exception):
    """Base class for all errors raised by epub_narrator."""


class ContainerCorruptError(NarratorError):
    """The container could not be opened or read as a zip archive."""


class EntryNotFoundError(NarratorError):
    def __init__(self, path: str):
        super().__init__(f"Entry not found in container: {path}")
        self.path = path


class PackageParseError(NarratorError):
    """The package descriptor is missing, unparsable, or has an empty spine."""


class NavigationParseError(NarratorError):
    pass


class ExtractionError(NarratorError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to extract text from {path}: {reason}")
        self.path = path
        self.reason = reason


class NarrationError(NarratorError):
    """A narration backend refused or failed a request."""


class RecordStoreError(NarratorError):
    def __init__(self, message: str, book_id: Optional[str] = None):
        super().__init__(message)
        self.book_id = book_id
