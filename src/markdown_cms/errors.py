"""
Error taxonomy for the markdown API.

Every error raised by the document store carries the HTTP status it maps to,
so the FastAPI exception handler in ``main`` can render the failure envelope
without knowing about individual error types.
"""

from __future__ import annotations


class CMSError(Exception):
    """Base class for failures that are reported to API callers."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CMSError):
    """A required field is missing or a value has an unsupported shape."""

    status_code = 400


class DocumentNotFoundError(CMSError):
    status_code = 404


class DocumentConflictError(CMSError):
    """The sanitized target filename already exists."""

    status_code = 409


class StoreIOError(CMSError):
    """The markdown directory or one of its files could not be read or written."""

    status_code = 500


class DispatchError(Exception):
    """
    A webhook or auto-commit step failed.

    Dispatch failures are logged by the dispatcher and never reach an HTTP
    caller, which is why this does not derive from ``CMSError``.
    """
