"""
Existence, read-only, OS-level and callback permission checks.

Each check comes in two forms: ``has_*``/``is_*`` queries that return a
boolean, and ``check_*`` assertions that raise a labeled error.
"""
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

import structlog

from filemanager.file_access.exceptions import ForbiddenError, InvalidPathError, NotFoundError

if TYPE_CHECKING:
    from filemanager.file_access.base_item import BaseItemModel

logger = structlog.get_logger()

TRAVERSAL_NEEDLES = ("..", "./")


@dataclass
class AuthCallbacks:
    """Optional external authorization predicates, called with the absolute path."""
    has_read_permission: Optional[Callable[[str], bool]] = None
    has_write_permission: Optional[Callable[[str], bool]] = None

    def allows_read(self, path: str) -> bool:
        if self.has_read_permission is None:
            return True
        return self.has_read_permission(path) is not False

    def allows_write(self, path: str) -> bool:
        if self.has_write_permission is None:
            return True
        return self.has_write_permission(path) is not False


class PermissionChecker:
    """Permission checks for items owned by one storage."""

    def __init__(self, storage, auth: Optional[AuthCallbacks] = None):
        self.storage = storage
        self.auth = auth or AuthCallbacks()

    def _read_only(self) -> bool:
        return self.storage.config("security.read_only", False) is not False

    def has_read_permission(self, item: "BaseItemModel") -> bool:
        if not item.is_exists():
            return False
        if not self.storage.has_system_read_permission(item.absolute_path):
            return False
        return self.auth.allows_read(item.absolute_path)

    def has_write_permission(self, item: "BaseItemModel") -> bool:
        if not item.is_exists():
            return False
        if self._read_only():
            return False
        if not self.storage.has_system_write_permission(item.absolute_path):
            return False
        return self.auth.allows_write(item.absolute_path)

    def is_valid_path(self, item: "BaseItemModel") -> bool:
        valid = item.absolute_path.startswith(self.storage.get_root())
        if valid and any(needle in item.relative_path for needle in TRAVERSAL_NEEDLES):
            valid = False
        if not valid:
            logger.info("invalid_path", path=item.absolute_path, storage=self.storage.name)
        return valid

    def check_path(self, item: "BaseItemModel") -> None:
        if not item.is_exists():
            label = "DIRECTORY_NOT_EXIST" if item.is_directory() else "FILE_DOES_NOT_EXIST"
            raise NotFoundError(label, [item.relative_path])
        if not self.is_valid_path(item):
            label = "INVALID_DIRECTORY_PATH" if item.is_directory() else "INVALID_FILE_PATH"
            raise InvalidPathError(label, [item.relative_path])

    def check_read_permission(self, item: "BaseItemModel") -> None:
        if not self.storage.has_system_read_permission(item.absolute_path):
            raise ForbiddenError("NOT_ALLOWED_SYSTEM")
        if not self.auth.allows_read(item.absolute_path):
            raise ForbiddenError("NOT_ALLOWED")

    def check_write_permission(self, item: "BaseItemModel") -> None:
        if self._read_only():
            raise ForbiddenError("NOT_ALLOWED")
        if not self.storage.has_system_write_permission(item.absolute_path):
            raise ForbiddenError("NOT_ALLOWED_SYSTEM")
        if not self.auth.allows_write(item.absolute_path):
            raise ForbiddenError("NOT_ALLOWED")

    def check_restrictions(self, item: "BaseItemModel") -> None:
        engine = self.storage.restrictions
        if not item.is_directory() and not engine.is_allowed_extension(item.relative_path):
            raise ForbiddenError("FORBIDDEN_NAME", [item.relative_path])
        if not engine.is_allowed_pattern(item.get_original_path()):
            raise ForbiddenError("INVALID_FILE_TYPE")
