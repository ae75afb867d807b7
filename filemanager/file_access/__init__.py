"""
File access layer.

Unified item model and storage interface over the local filesystem and
S3-compatible object stores.
"""
from filemanager.file_access.base_item import BaseItemModel, ItemStat
from filemanager.file_access.base_storage import STORAGE_LOCAL_NAME, STORAGE_S3_NAME, BaseStorage
from filemanager.file_access.exceptions import (
    BackendFailureError,
    ConfigurationError,
    ConflictError,
    FileManagerError,
    ForbiddenError,
    InvalidPathError,
    NotFoundError,
    RangeNotSatisfiableError,
)
from filemanager.file_access.item_data import ItemData
from filemanager.file_access.permissions import AuthCallbacks
from filemanager.file_access.registry import StorageRegistry, build_registry, register_storage_class

__all__ = [
    "AuthCallbacks",
    "BackendFailureError",
    "BaseItemModel",
    "BaseStorage",
    "ConfigurationError",
    "ConflictError",
    "FileManagerError",
    "ForbiddenError",
    "InvalidPathError",
    "ItemData",
    "ItemStat",
    "NotFoundError",
    "RangeNotSatisfiableError",
    "STORAGE_LOCAL_NAME",
    "STORAGE_S3_NAME",
    "StorageRegistry",
    "build_registry",
    "register_storage_class",
]
