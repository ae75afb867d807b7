"""
Configuration management using Pydantic Settings.

Each storage backend reads its own namespaced section (``local`` or ``s3``).
Values are addressed with dotted keys, e.g. ``security.read_only`` or
``images.thumbnail.dir``.
"""
import os
import tempfile
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PolicyConfig(BaseModel):
    """Allow/deny list for extensions or path patterns."""
    policy: str = "DISALLOW_LIST"
    ignore_case: bool = True
    restrictions: List[str] = Field(default_factory=list)


def _default_extensions() -> PolicyConfig:
    return PolicyConfig(
        policy="DISALLOW_LIST",
        ignore_case=True,
        restrictions=[
            "exe", "com", "msi", "bat", "cgi", "pl", "php", "phps", "phtml",
            "php3", "php4", "php5", "php6", "py", "pyc", "sh", "asp", "aspx",
        ],
    )


def _default_patterns() -> PolicyConfig:
    return PolicyConfig(
        policy="DISALLOW_LIST",
        ignore_case=True,
        restrictions=["*/.CDN_ACCESS_LOGS/*", "*/.htaccess", "*/.git/*"],
    )


class SecurityConfig(BaseModel):
    read_only: bool = False
    normalize_filename: bool = True
    extensions: PolicyConfig = Field(default_factory=_default_extensions)
    patterns: PolicyConfig = Field(default_factory=_default_patterns)


class UploadConfig(BaseModel):
    file_size_limit: int = 16_000_000
    min_file_size: int = 1
    max_number_of_files: Optional[int] = None
    overwrite: bool = False
    param_name: str = "upload"


class MainImageConfig(BaseModel):
    auto_orient: bool = True
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    min_width: Optional[int] = None
    min_height: Optional[int] = None


class ThumbnailConfig(BaseModel):
    enabled: bool = True
    cache: bool = True
    dir: str = "_thumbs"
    crop: bool = True
    max_width: int = 64
    max_height: int = 64
    use_local_storage: bool = False


class ImagesConfig(BaseModel):
    main: MainImageConfig = Field(default_factory=MainImageConfig)
    thumbnail: ThumbnailConfig = Field(default_factory=ThumbnailConfig)


class OptionsConfig(BaseModel):
    # Full path to the files root, or a suffix of document_root when server_root is set
    file_root: Optional[str] = None
    server_root: bool = False
    document_root: Optional[str] = None
    # 0 disables the limit
    file_root_size_limit: int = 0
    chars_latin_only: bool = False
    date_format: str = "%d %b %Y %H:%M"


class ViewerConfig(BaseModel):
    absolute_path: bool = True
    preview_url: Optional[str] = None


class StorageConfig(BaseModel):
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    images: ImagesConfig = Field(default_factory=ImagesConfig)
    options: OptionsConfig = Field(default_factory=OptionsConfig)
    viewer: ViewerConfig = Field(default_factory=ViewerConfig)
    mkdir_mode: int = 0o755

    def get(self, key: Optional[str] = None, default: Any = None) -> Any:
        """
        Resolve a dotted key against this config.

        Returns ``default`` when any segment is missing or resolves to None.
        """
        if not key:
            return self
        node: Any = self
        for part in key.split("."):
            if isinstance(node, BaseModel):
                node = getattr(node, part, None)
            elif isinstance(node, dict):
                node = node.get(part)
            else:
                return default
            if node is None:
                return default
        return node


class S3CredentialsConfig(BaseModel):
    region: Optional[str] = None
    bucket: Optional[str] = None
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    default_acl: str = ""
    cdn_hostname: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


class S3StorageConfig(StorageConfig):
    credentials: Optional[S3CredentialsConfig] = None
    acl_policy: Optional[str] = None
    encryption: Optional[str] = None
    # Bulk folder operations cost one request per object
    allow_bulk: bool = True
    root: str = "userfiles"

    @field_validator("acl_policy")
    @classmethod
    def validate_acl_policy(cls, v):
        if v is not None and v not in ("default", "inherit"):
            raise ValueError(f"Invalid acl_policy: {v}. Must be one of ['default', 'inherit']")
        return v


class Settings(BaseSettings):
    """
    Single source of truth for the file manager settings.

    Configuration precedence:
    1. Environment variables (``FM_`` prefix, ``__`` for nesting)
    2. .env file (if exists)
    3. Default values in this class
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FM_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = "INFO"
    lock_dir: str = Field(default_factory=lambda: os.path.join(tempfile.gettempdir(), "filemanager-locks"))
    lock_timeout: float = 30.0
    local: StorageConfig = Field(default_factory=StorageConfig)
    s3: Optional[S3StorageConfig] = None


@lru_cache()
def get_settings() -> Settings:
    return Settings()
