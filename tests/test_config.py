# tests/test_config.py
"""
Tests for settings loading and dotted config lookup.
"""
import pytest
from pydantic import ValidationError

from filemanager.config import S3StorageConfig, Settings, StorageConfig


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("FM_LOCK_TIMEOUT", raising=False)
        settings = Settings(_env_file=None)
        assert settings.log_level == "INFO"
        assert settings.lock_timeout == 30.0
        assert settings.s3 is None
        assert settings.local.images.thumbnail.dir == "_thumbs"

    def test_nested_env_variables(self, monkeypatch):
        monkeypatch.setenv("FM_LOCAL__UPLOAD__FILE_SIZE_LIMIT", "1024")
        monkeypatch.setenv("FM_LOCAL__SECURITY__READ_ONLY", "true")
        monkeypatch.setenv("FM_S3__CREDENTIALS__BUCKET", "files")
        monkeypatch.setenv("FM_S3__ALLOW_BULK", "false")
        settings = Settings(_env_file=None)
        assert settings.local.upload.file_size_limit == 1024
        assert settings.local.security.read_only is True
        assert settings.s3.credentials.bucket == "files"
        assert settings.s3.allow_bulk is False

    def test_invalid_acl_policy(self):
        with pytest.raises(ValidationError, match="Invalid acl_policy"):
            S3StorageConfig(acl_policy="public")


class TestDottedLookup:
    def test_nested_values(self):
        config = StorageConfig()
        assert config.get("security.read_only") is False
        assert config.get("images.thumbnail.max_width") == 64
        assert config.get("upload.param_name") == "upload"

    def test_missing_and_none_fall_back_to_default(self):
        config = StorageConfig()
        assert config.get("images.main.max_width", 500) == 500
        assert config.get("no.such.key", "fallback") == "fallback"

    def test_without_key_returns_config(self):
        config = StorageConfig()
        assert config.get() is config

    def test_unset_section(self):
        config = S3StorageConfig()
        assert config.get("credentials.bucket", "none") == "none"

    def test_dict_values(self):
        config = S3StorageConfig(credentials={"bucket": "files", "options": {"use_path_style": True}})
        assert config.get("credentials.options.use_path_style") is True


class TestStorageConfigApplication:
    def test_thumbnail_folder_is_hidden(self, local_storage):
        assert "*/_thumbs/*" in local_storage.config("security.patterns.restrictions")
        assert local_storage.get_item("/_thumbs/a.png").is_unrestricted() is False

    def test_custom_thumbnail_folder(self, make_local_storage):
        storage = make_local_storage({"images.thumbnail.dir": ".previews"})
        assert "*/.previews/*" in storage.config("security.patterns.restrictions")

    def test_source_config_is_not_mutated(self, settings, make_local_storage):
        make_local_storage()
        assert "*/_thumbs/*" not in settings.local.security.patterns.restrictions
