"""
Storage registry.

Holds one storage instance per backend name. Storages are registered once at
startup and looked up by name afterwards; unknown names fail fast.
"""
from typing import Dict, List, Optional

from filemanager.config import Settings, get_settings
from filemanager.file_access.base_storage import STORAGE_LOCAL_NAME, STORAGE_S3_NAME, BaseStorage
from filemanager.file_access.exceptions import ConfigurationError
from filemanager.file_access.local.storage import LocalStorage
from filemanager.file_access.permissions import AuthCallbacks
from filemanager.file_access.s3.storage import S3Storage
from filemanager.monitoring.logger import configure_logging, log


# Registry of available storage classes
STORAGE_CLASSES: Dict[str, type] = {
    STORAGE_LOCAL_NAME: LocalStorage,
    STORAGE_S3_NAME: S3Storage,
}


def register_storage_class(name: str, storage_class: type) -> None:
    """
    Register a new storage class under ``name``.

    Raises:
        ValueError: If storage_class doesn't inherit from BaseStorage
    """
    if not issubclass(storage_class, BaseStorage):
        raise ValueError(
            f"Storage class must inherit from BaseStorage, got {storage_class}"
        )
    STORAGE_CLASSES[name] = storage_class
    log("INFO", f"Registered storage class: {name}", module="registry")


class StorageRegistry:
    """Name to storage instance lookup, passed explicitly to the operation layer."""

    def __init__(self):
        self._storages: Dict[str, BaseStorage] = {}

    def register(self, storage: BaseStorage, name: Optional[str] = None) -> BaseStorage:
        name = name or storage.name
        if name in self._storages:
            raise ConfigurationError("STORAGE_ALREADY_REGISTERED", [name])
        storage.registry = self
        self._storages[name] = storage
        log("INFO", f"Registered storage instance: {name}", module="registry", storage=name)
        return storage

    def get(self, name: str) -> BaseStorage:
        storage = self._storages.get(name)
        if storage is None:
            raise ConfigurationError(
                "STORAGE_NOT_REGISTERED", [name],
                message=f"Unknown storage '{name}'. Registered storages: {self.names()}",
            )
        return storage

    def names(self) -> List[str]:
        return list(self._storages.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._storages


def build_registry(settings: Optional[Settings] = None, auth: Optional[AuthCallbacks] = None,
                   s3_client=None) -> StorageRegistry:
    """
    Create the storages described by ``settings``.

    The local storage is always created; the S3 storage only when an ``s3``
    section is configured.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    registry = StorageRegistry()
    local_class = STORAGE_CLASSES[STORAGE_LOCAL_NAME]
    registry.register(local_class(settings.local, auth=auth, registry=registry, settings=settings))
    if settings.s3 is not None:
        s3_class = STORAGE_CLASSES[STORAGE_S3_NAME]
        registry.register(s3_class(settings.s3, auth=auth, registry=registry, client=s3_client))
    return registry
