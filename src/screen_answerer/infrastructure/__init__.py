"""Infrastructure adapters (scratch upload storage)."""

from screen_answerer.infrastructure.uploads import UploadSource, UploadStore

__all__ = ["UploadSource", "UploadStore"]
