"""
Error types raised by the workflows and gateways.

`APIError` subclasses carry the HTTP status and the fields merged into the
error envelope; anything else reaching the HTTP boundary becomes a 500.
"""
from typing import Any


class APIError(Exception):
    """An expected workflow outcome that maps to an HTTP error response."""

    status_code = 500

    def __init__(self, error: str, status_code: int = None, **extra: Any):
        super().__init__(error)
        self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_content(self) -> dict:
        return {"success": False, "error": self.error, **self.extra}


class BadRequestError(APIError):
    status_code = 400


class UnauthorizedError(APIError):
    status_code = 401


class NotFoundError(APIError):
    status_code = 404


class ConflictError(APIError):
    status_code = 409


class FaceNotIndexedError(Exception):
    """Rekognition accepted the image but produced no face record."""

    def __init__(self, message: str, reasons=None):
        super().__init__(message)
        self.reasons = list(reasons or [])


class FaceDeletionError(Exception):
    """Rekognition refused to delete a face that is still in the collection."""

    def __init__(self, message: str, reasons=None):
        super().__init__(message)
        self.reasons = list(reasons or [])
