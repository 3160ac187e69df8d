"""
Error Taxonomy
==============

Exceptions raised by the core and their HTTP status mapping.

    NotFound            - unknown content hash (404)
    InvalidInput        - malformed upload or out-of-range parameter (400)
    ProcessingFailed    - a transform stage failed (500)
    StorageUnavailable  - content store I/O failure (500)
    CacheUnavailable    - Redis failure; logged by the cache client, never
                          propagated to callers
"""


class CanvasError(Exception):
    """Base class for errors surfaced to the request layer."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"status_code": self.status_code, "message": self.message}


class NotFound(CanvasError):
    """Raised when no original exists for a content hash."""

    status_code = 404


class InvalidInput(CanvasError):
    """Raised for undecodable uploads and invalid transform parameters."""

    status_code = 400


class StorageUnavailable(CanvasError):
    """Raised when the content store cannot be read or written."""

    status_code = 500


class ProcessingFailed(CanvasError):
    """
    Raised when a transform stage fails.

    Attributes:
        stage: Name of the failing stage (load, auto_rotate, fit_resize,
            smart_crop, composite, overlay_text, encode)
    """

    status_code = 500

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"Stage '{stage}' failed: {message}")
        self.stage = stage


class CacheUnavailable(CanvasError):
    """Redis backend unreachable or pool exhausted."""

    status_code = 503
