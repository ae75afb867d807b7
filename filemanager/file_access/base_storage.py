"""
Base interface for storage backends.

All backends (local filesystem, S3) implement this interface. A storage owns
its root path, a private copy of its configuration and the restriction and
permission engines used by the items it creates.
"""
import mimetypes
import posixpath
import re
import unicodedata
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, BinaryIO, Dict, Iterable, List, Optional

import structlog

from filemanager.config import StorageConfig
from filemanager.file_access.base_item import BaseItemModel, ItemStat
from filemanager.file_access.exceptions import ConfigurationError
from filemanager.file_access.paths import PathResolver, clean_path, subtract_path
from filemanager.file_access.permissions import AuthCallbacks, PermissionChecker
from filemanager.file_access.restrictions import RestrictionEngine, RestrictionPolicy
from filemanager.file_access.streaming import STREAM_CHUNK_SIZE, FileStream

if TYPE_CHECKING:
    from filemanager.file_access.images import ImageProcessor
    from filemanager.file_access.registry import StorageRegistry
    from filemanager.file_access.upload import UploadHandler

logger = structlog.get_logger()

STORAGE_LOCAL_NAME = "local"
STORAGE_S3_NAME = "s3"

# Dots plus control characters and space (\x00..\x20)
_TRIM_CHARS = "." + "".join(chr(code) for code in range(0x21))

IMAGE_MIME_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/bmp",
    "image/svg+xml",
)


def empty_summary() -> Dict[str, int]:
    return {"size": 0, "files": 0, "folders": 0}


class BaseStorage(ABC):
    """
    Abstract storage backend.

    Subclasses set ``name`` and ``item_class`` and implement the
    filesystem-shaped operation set. Mutating operations return True on
    success and False when the backend reported a failure.
    """

    name: str = ""
    item_class: type = BaseItemModel

    def __init__(self, config: StorageConfig, auth: Optional[AuthCallbacks] = None,
                 registry: Optional["StorageRegistry"] = None):
        self.registry = registry
        self.set_config(config)
        self.permissions = PermissionChecker(self, auth)
        self.resolver = PathResolver("/")
        self._images: Optional["ImageProcessor"] = None

    # Configuration

    def set_config(self, config: StorageConfig) -> None:
        self._config = config.model_copy(deep=True)
        patterns = self._config.security.patterns
        # Keep thumbnails folder out of listings
        if patterns.policy == RestrictionPolicy.DISALLOW_LIST.value:
            pattern = self.build_path_pattern(self._config.images.thumbnail.dir, is_dir=True)
            if pattern not in patterns.restrictions:
                patterns.restrictions.append(pattern)
        self.restrictions = RestrictionEngine(self._config.security.extensions, patterns)

    def config(self, key: Optional[str] = None, default: Any = None) -> Any:
        return self._config.get(key, default)

    def build_path_pattern(self, path: str, is_dir: bool = False) -> str:
        """Turn a path into a ``security.patterns.restrictions`` entry."""
        return clean_path("*/" + path + ("/*" if is_dir else ""))

    # Roots

    def get_root(self) -> str:
        return self.resolver.root

    def get_dynamic_root(self) -> str:
        return self.resolver.dynamic_root

    def get_relative_path(self, path: str) -> str:
        return subtract_path(path, self.get_root())

    @abstractmethod
    def set_root(self, path: str, make_dir: bool = False, **kwargs) -> None:
        """Override the configured storage root."""

    # Collaborators

    def for_thumbnail(self) -> "BaseStorage":
        """Storage that keeps image thumbnails."""
        if self.config("images.thumbnail.use_local_storage", False) and self.name != STORAGE_LOCAL_NAME:
            if self.registry is None:
                raise ConfigurationError("STORAGE_NOT_REGISTERED", [STORAGE_LOCAL_NAME])
            return self.registry.get(STORAGE_LOCAL_NAME)
        return self

    @property
    def images(self) -> "ImageProcessor":
        if self._images is None:
            from filemanager.file_access.images import ImageProcessor
            self._images = ImageProcessor(self)
        return self._images

    def get_item(self, path: str, is_thumbnail: bool = False, stat: Optional[ItemStat] = None) -> BaseItemModel:
        return self.item_class(self, path, is_thumbnail=is_thumbnail, stat=stat)

    def init_uploader(self, model: BaseItemModel) -> "UploadHandler":
        from filemanager.file_access.upload import UploadHandler
        return UploadHandler(model, self)

    # Helpers

    def normalize_string(self, value: str, allowed: Iterable[str] = ()) -> str:
        """Clean a string to be used as a file or folder name."""
        if self.config("security.normalize_filename", False):
            # Drop path information, dots and control characters around the name
            value = posixpath.basename(value.replace("\\", "/"))
            value = value.strip(_TRIM_CHARS)
            value = value.translate({ord(" "): "_", ord("'"): "_", ord("/"): None, ord("\\"): None})

        if self.config("options.chars_latin_only", False):
            value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
            allow = "".join(re.escape(ch) for ch in allowed)
            value = re.sub(rf"[^{allow}_a-zA-Z0-9]", "", value)
        return value

    def is_image_mime_type(self, mime: Optional[str]) -> bool:
        return mime in IMAGE_MIME_TYPES

    @staticmethod
    def guess_mime_type(name: str) -> str:
        """MIME type from the file name alone."""
        mime, _ = mimetypes.guess_type(name)
        return mime or "application/octet-stream"

    def get_mime_type(self, path: str) -> str:
        return self.guess_mime_type(path)

    def get_root_total_size(self) -> int:
        return self.get_dir_summary("/")["size"]

    # Backend operations

    @abstractmethod
    def stat(self, absolute_path: str) -> ItemStat:
        """Query existence and type of a backend path."""

    @abstractmethod
    def has_system_read_permission(self, path: str) -> bool:
        ...

    @abstractmethod
    def has_system_write_permission(self, path: str) -> bool:
        ...

    @abstractmethod
    def list_children(self, directory: BaseItemModel) -> List[BaseItemModel]:
        """Immediate children of a folder item, unfiltered."""

    @abstractmethod
    def create_folder(self, target: BaseItemModel, prototype: Optional[BaseItemModel] = None,
                      options: Optional[Dict[str, Any]] = None) -> bool:
        """
        Create the folder ``target``.

        Args:
            target: Folder item to create
            prototype: Item whose attributes (ACL) the new folder inherits
            options: Backend-specific creation options

        Returns:
            True if the folder was created, False on a backend failure
        """

    @abstractmethod
    def copy_recursive(self, source: BaseItemModel, target: BaseItemModel) -> bool:
        """
        Copy a file or a whole folder tree.

        Args:
            source: Existing item to copy
            target: Destination item, which must not exist yet

        Returns:
            True if every entry was copied
        """

    @abstractmethod
    def rename_recursive(self, source: BaseItemModel, target: BaseItemModel) -> bool:
        """
        Move a file or a whole folder tree to ``target``.

        Returns:
            True if the source no longer exists and the target holds its content
        """

    @abstractmethod
    def unlink_recursive(self, target: BaseItemModel) -> bool:
        """
        Delete a file, or a folder with everything below it.

        Returns:
            True if the item was removed
        """

    @abstractmethod
    def read_file(self, path: str, range_header: Optional[str] = None,
                  chunk_size: int = STREAM_CHUNK_SIZE) -> FileStream:
        """
        Stream file content, honoring a single byte-range request.

        Args:
            path: Absolute path of the file
            range_header: Raw ``Range`` header value, if any
            chunk_size: Size of the yielded chunks

        Returns:
            FileStream with status 200, or 206 for a satisfiable range

        Raises:
            RangeNotSatisfiableError: If the range lies outside the file
        """

    @abstractmethod
    def get_file_size(self, path: str) -> int:
        ...

    @abstractmethod
    def get_dir_summary(self, directory: str, result: Optional[Dict[str, int]] = None) -> Dict[str, int]:
        """Policy-filtered ``{size, files, folders}`` totals below ``directory``."""

    @abstractmethod
    def read_bytes(self, item: BaseItemModel) -> bytes:
        ...

    @abstractmethod
    def write_stream(self, item: BaseItemModel, stream: BinaryIO, content_type: Optional[str] = None) -> bool:
        """
        Store the content of ``stream`` at ``item``, replacing any existing file.

        Args:
            item: File item to write
            stream: Binary stream read until exhausted
            content_type: MIME type recorded by backends that keep one

        Returns:
            True on success, False on a backend failure

        Raises:
            BackendFailureError: If the item is locked by another writer for too long
        """
