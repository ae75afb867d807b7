"""
Labeled failures raised by the file access layer.

Every error carries a message label (e.g. ``DIRECTORY_NOT_EXIST``) and the
arguments used to render it, so callers can translate or serialize them.
"""
from typing import Any, List, Optional


class FileManagerError(Exception):
    """Base class for all file manager failures."""

    status_code = 500

    def __init__(self, label: str, arguments: Optional[List[Any]] = None, message: Optional[str] = None):
        self.label = label
        self.arguments = list(arguments or [])
        detail = message or label
        if self.arguments:
            detail = f"{detail}: {', '.join(str(a) for a in self.arguments)}"
        super().__init__(detail)

    def to_dict(self) -> dict:
        return {
            "id": self.label,
            "code": self.status_code,
            "title": self.label,
            "meta": {"arguments": self.arguments},
        }


class NotFoundError(FileManagerError):
    """Item does not exist where existence was required."""
    status_code = 404


class InvalidPathError(FileManagerError):
    """Path escapes the storage root or contains traversal sequences."""
    status_code = 400


class ForbiddenError(FileManagerError):
    """Restriction, read-only flag, OS permission or callback denial."""
    status_code = 403


class ConflictError(FileManagerError):
    """Target of create/copy/move/rename already exists."""
    status_code = 409


class BackendFailureError(FileManagerError):
    """Underlying filesystem or object-store call reported a failure."""
    status_code = 500


class ConfigurationError(FileManagerError):
    """Required module, setting or credential is missing."""
    status_code = 500


class RangeNotSatisfiableError(FileManagerError):
    status_code = 416

    def __init__(self, total_size: int, header: Optional[str] = None):
        self.total_size = total_size
        self.header = header
        super().__init__("RANGE_NOT_SATISFIABLE", [header] if header else None)

    @property
    def content_range(self) -> str:
        return f"bytes */{self.total_size}"
