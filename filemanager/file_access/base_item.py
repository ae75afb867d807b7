"""
Backend-independent item model.

An item is one addressable file or folder. Existence, type and the
descriptive snapshot are computed on construction or on ``reset_stats``
and are never refreshed automatically: after any mutation the caller must
call ``reset_stats`` before reading ``get_data`` again.
"""
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog

from filemanager.file_access.item_data import ItemData
from filemanager.file_access.paths import basename, clean_path, normalize_relative_path, parent_path

if TYPE_CHECKING:
    from filemanager.file_access.base_storage import BaseStorage

logger = structlog.get_logger()


@dataclass(frozen=True)
class ItemStat:
    """Raw backend status of a path."""
    exists: bool
    is_dir: bool
    size: Optional[int] = None
    mtime: Optional[int] = None
    content_type: Optional[str] = None


class BaseItemModel:
    """
    File or folder addressed by a storage-root-relative path.

    Thumbnail items are built on the storage that keeps thumbnails, which
    may differ from the storage of the original image.
    """

    def __init__(self, storage: "BaseStorage", path: str, is_thumbnail: bool = False,
                 stat: Optional[ItemStat] = None, thumbnail_dir: Optional[str] = None):
        self.storage = storage
        self._is_thumbnail = is_thumbnail
        self.thumbnail_dir = thumbnail_dir or storage.config("images.thumbnail.dir", "_thumbs")
        self.relative_path = ""
        self.absolute_path = ""
        self._is_exists = False
        self._is_dir = False
        self._stat: Optional[ItemStat] = None
        self._data: Optional[ItemData] = None
        self._parent: Optional["BaseItemModel"] = None
        self._thumbnail: Optional["BaseItemModel"] = None
        self.reset_stats(path, stat=stat)

    def __repr__(self):
        return f"<{type(self).__name__} {self.storage.name}:{self.relative_path}>"

    @property
    def is_thumbnail(self) -> bool:
        return self._is_thumbnail

    def reset_stats(self, path: Optional[str] = None, stat: Optional[ItemStat] = None) -> "BaseItemModel":
        """Re-derive paths (when ``path`` is given) and re-query the backend."""
        if path is not None:
            self.relative_path = normalize_relative_path(path)
            self.absolute_path = self.storage.resolver.absolute(self.relative_path)
            self._parent = None
            self._thumbnail = None

        self._stat = stat if stat is not None else self.storage.stat(self.absolute_path)
        self._is_exists = self._stat.exists
        if self._is_exists:
            self._is_dir = self._stat.is_dir
            if self._is_dir and not self.relative_path.endswith("/"):
                self.relative_path += "/"
                self.absolute_path = self.storage.resolver.absolute(self.relative_path)
        else:
            # Non-existing items are typed by the trailing slash convention
            self._is_dir = self.relative_path.endswith("/")
        self._data = None
        return self

    def is_directory(self) -> bool:
        return self._is_dir

    def is_exists(self) -> bool:
        return self._is_exists

    def is_root(self) -> bool:
        root = self.storage.get_root()
        if self._is_thumbnail:
            # Plain concatenation keeps URI schemes such as s3:// intact
            root = root.rstrip("/") + "/" + self.thumbnail_dir.strip("/")
        return root.rstrip("/") == self.absolute_path.rstrip("/")

    def _spawn(self, path: str, is_thumbnail: Optional[bool] = None) -> "BaseItemModel":
        return type(self)(
            self.storage,
            path,
            is_thumbnail=self._is_thumbnail if is_thumbnail is None else is_thumbnail,
            thumbnail_dir=self.thumbnail_dir,
        )

    def closest(self) -> Optional["BaseItemModel"]:
        """Parent folder item, or None for the root."""
        if self.is_root():
            return None
        if self._parent is None:
            self._parent = self._spawn(parent_path(self.relative_path))
        return self._parent

    def thumbnail(self) -> "BaseItemModel":
        if self._thumbnail is None:
            from filemanager.file_access.factory import create_thumbnail_model
            self._thumbnail = create_thumbnail_model(self)
        return self._thumbnail

    def get_dynamic_path(self) -> str:
        return self.storage.resolver.dynamic(self.relative_path)

    def get_thumbnail_path(self) -> str:
        if self._is_thumbnail:
            return self.relative_path
        return clean_path("/" + self.thumbnail_dir + "/" + self.relative_path)

    def get_original_path(self) -> str:
        path = self.relative_path
        if not self._is_thumbnail:
            return path
        thumb_root = "/" + self.thumbnail_dir.strip("/")
        if path.startswith(thumb_root):
            path = path[len(thumb_root):]
        return path

    def get_mime_type(self) -> str:
        if self._stat is not None and self._stat.content_type:
            return self._stat.content_type
        return self.storage.get_mime_type(self.absolute_path)

    def is_image_file(self) -> bool:
        if self._is_dir or not self._is_exists:
            return False
        return self.storage.is_image_mime_type(self.get_mime_type())

    # Restrictions

    def is_allowed_extension(self) -> bool:
        return self.storage.restrictions.is_allowed_extension(self.relative_path, self._is_dir)

    def is_allowed_pattern(self) -> bool:
        return self.storage.restrictions.is_allowed_pattern(self.get_original_path())

    def is_unrestricted(self) -> bool:
        return self.storage.restrictions.is_unrestricted(self.relative_path, self.get_original_path(), self._is_dir)

    # Permissions

    def has_read_permission(self) -> bool:
        return self.storage.permissions.has_read_permission(self)

    def has_write_permission(self) -> bool:
        return self.storage.permissions.has_write_permission(self)

    def is_valid_path(self) -> bool:
        return self.storage.permissions.is_valid_path(self)

    def check_path(self) -> None:
        self.storage.permissions.check_path(self)

    def check_read_permission(self) -> None:
        self.storage.permissions.check_read_permission(self)

    def check_write_permission(self) -> None:
        self.storage.permissions.check_write_permission(self)

    def check_restrictions(self) -> None:
        self.storage.permissions.check_restrictions(self)

    # Mutations

    def remove(self) -> bool:
        return self.storage.unlink_recursive(self)

    def create_thumbnail(self) -> None:
        """Generate the thumbnail image. Silently does nothing when a precondition fails."""
        if not self.has_read_permission():
            return
        if not self.storage.config("images.thumbnail.enabled", False):
            return

        model_thumb = self.thumbnail()
        model_target = model_thumb.closest()
        model_existent = model_target
        while not model_existent.is_root() and not model_existent.is_exists():
            model_existent = model_existent.closest()
        if not model_existent.is_exists():
            # Thumbnails root is created on demand inside the storage root
            model_existent = model_thumb.storage.get_item("/")

        if not model_existent.has_write_permission():
            return

        logger.info("generating_thumbnail", path=model_thumb.absolute_path)
        if not model_target.is_exists():
            model_thumb.storage.create_folder(model_target)

        self.storage.images.create_thumbnail(self, model_thumb)
        model_thumb.reset_stats()

    # Snapshot

    def _file_size(self) -> int:
        return self.storage.get_file_size(self.absolute_path)

    def _image_dimensions(self) -> Dict[str, Any]:
        return {}

    def compile_data(self) -> ItemData:
        is_image = self.is_image_file()
        is_readable = self.has_read_permission()
        size = 0
        if not self._is_dir and is_readable:
            size = self._file_size()

        image_data: Dict[str, Any] = {}
        if is_image:
            image_data.update({
                "is_thumbnail": self._is_thumbnail,
                "path_original": self.get_original_path(),
                "path_thumbnail": self.get_thumbnail_path(),
            })
            if is_readable:
                image_data.update(self._image_dimensions())

        mtime = self._stat.mtime if self._is_exists and self._stat else None
        return ItemData(
            relative_path=self.relative_path,
            absolute_path=self.absolute_path,
            dynamic_path=self.get_dynamic_path(),
            is_directory=self._is_dir,
            is_exists=self._is_exists,
            is_root=self.is_root(),
            is_image=is_image,
            is_readable=is_readable,
            is_writable=self.has_write_permission(),
            time_created=mtime,
            time_modified=mtime,
            basename=basename(self.absolute_path),
            size=size,
            image_data=image_data,
        )

    def get_data(self) -> ItemData:
        if self._data is None:
            self._data = self.compile_data()
        return self._data
