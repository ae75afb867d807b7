# tests/test_registry.py
"""
Tests for the storage registry and API lookup.
"""
import pytest

from filemanager.api import LocalApi, S3Api, get_api
from filemanager.file_access.exceptions import ConfigurationError
from filemanager.file_access.local.storage import LocalStorage
from filemanager.file_access.registry import (
    STORAGE_CLASSES,
    StorageRegistry,
    build_registry,
    register_storage_class,
)
from filemanager.file_access.s3.storage import S3Storage


class TestStorageClasses:
    def test_register_storage_class(self, monkeypatch):
        class CustomStorage(LocalStorage):
            name = "custom"

        monkeypatch.setitem(STORAGE_CLASSES, "custom", LocalStorage)
        register_storage_class("custom", CustomStorage)
        assert STORAGE_CLASSES["custom"] is CustomStorage

    def test_register_invalid_class(self):
        with pytest.raises(ValueError, match="must inherit from BaseStorage"):
            register_storage_class("invalid", dict)


class TestStorageRegistry:
    def test_lookup(self, local_storage):
        registry = StorageRegistry()
        registry.register(local_storage)
        assert registry.get("local") is local_storage
        assert local_storage.registry is registry
        assert "local" in registry
        assert registry.names() == ["local"]

    def test_unknown_storage(self):
        with pytest.raises(ConfigurationError) as exc_info:
            StorageRegistry().get("ftp")
        assert exc_info.value.label == "STORAGE_NOT_REGISTERED"
        assert "ftp" in str(exc_info.value)

    def test_duplicate_registration(self, local_storage, make_local_storage):
        registry = StorageRegistry()
        registry.register(local_storage)
        with pytest.raises(ConfigurationError) as exc_info:
            registry.register(make_local_storage())
        assert exc_info.value.label == "STORAGE_ALREADY_REGISTERED"


class TestBuildRegistry:
    def test_local_only(self, settings):
        registry = build_registry(settings)
        assert registry.names() == ["local"]
        assert isinstance(registry.get("local"), LocalStorage)

    def test_with_s3(self, settings, make_s3_config, s3_client):
        settings.s3 = make_s3_config()
        registry = build_registry(settings, s3_client=s3_client)
        assert registry.names() == ["local", "s3"]
        assert isinstance(registry.get("s3"), S3Storage)

    def test_get_api(self, settings, make_s3_config, s3_client):
        settings.s3 = make_s3_config()
        registry = build_registry(settings, s3_client=s3_client)
        assert isinstance(get_api(registry, "local"), LocalApi)
        assert isinstance(get_api(registry, "s3"), S3Api)

    def test_get_api_unknown(self, settings):
        with pytest.raises(ConfigurationError) as exc_info:
            get_api(build_registry(settings), "ftp")
        assert exc_info.value.label == "STORAGE_NOT_REGISTERED"

    def test_api_for_unregistered_storage(self, settings):
        with pytest.raises(ConfigurationError):
            S3Api(build_registry(settings))


class TestThumbnailStorage:
    def test_thumbnails_on_local_storage(self, local_storage, make_s3_storage):
        registry = StorageRegistry()
        registry.register(local_storage)
        s3_storage = registry.register(make_s3_storage({"images.thumbnail.use_local_storage": True}))

        assert s3_storage.for_thumbnail() is local_storage
        thumb = s3_storage.get_item("/photos/a.png").thumbnail()
        assert thumb.storage is local_storage
        assert thumb.relative_path == "/_thumbs/photos/a.png"
        assert thumb.get_original_path() == "/photos/a.png"

    def test_thumbnails_next_to_original_by_default(self, s3_storage):
        assert s3_storage.for_thumbnail() is s3_storage

    def test_local_storage_without_registry(self, make_s3_storage):
        storage = make_s3_storage({"images.thumbnail.use_local_storage": True})
        with pytest.raises(ConfigurationError) as exc_info:
            storage.for_thumbnail()
        assert exc_info.value.label == "STORAGE_NOT_REGISTERED"
