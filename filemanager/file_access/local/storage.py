"""
Local filesystem storage.

Works with local directories and any network share mounted at a local path.

Config keys used:
    options.file_root       full path to the files root (or a suffix of
                            ``options.document_root`` when ``options.server_root``)
    options.document_root   publicly served base folder, defaults to the CWD
    mkdir_mode              mode for new folders
"""
import hashlib
import os
import pathlib
import shutil
import urllib.request
from typing import Any, BinaryIO, Dict, List, Optional

import structlog
from filelock import FileLock, Timeout

from filemanager.config import Settings, StorageConfig, get_settings
from filemanager.file_access.archive import zip_directory
from filemanager.file_access.base_item import BaseItemModel, ItemStat
from filemanager.file_access.base_storage import STORAGE_LOCAL_NAME, BaseStorage, empty_summary
from filemanager.file_access.exceptions import BackendFailureError
from filemanager.file_access.local.item_model import LocalItemModel
from filemanager.file_access.paths import PathResolver, clean_path, subtract_path
from filemanager.file_access.permissions import AuthCallbacks
from filemanager.file_access.streaming import STREAM_CHUNK_SIZE, FileStream, iter_chunks, parse_range

if os.name == "posix":
    import fcntl
else:
    fcntl = None

logger = structlog.get_logger()

DEFAULT_DIR = "userfiles"


class LocalStorage(BaseStorage):
    """Storage backed by a directory tree on the local filesystem."""

    name = STORAGE_LOCAL_NAME
    item_class = LocalItemModel

    def __init__(self, config: StorageConfig, auth: Optional[AuthCallbacks] = None,
                 registry=None, settings: Optional[Settings] = None):
        super().__init__(config, auth=auth, registry=registry)
        settings = settings or get_settings()
        self.lock_dir = settings.lock_dir
        self.lock_timeout = settings.lock_timeout
        self.document_root = ""
        self._set_defaults()

    def _set_defaults(self) -> None:
        file_root = self.config("options.file_root")
        document_root = self.config("options.document_root") or os.getcwd()
        if file_root:
            if self.config("options.server_root", False):
                storage_root = document_root + "/" + file_root
            else:
                document_root = file_root
                storage_root = file_root
        else:
            storage_root = document_root + "/" + DEFAULT_DIR

        self.document_root = clean_path(document_root)
        storage_root = clean_path(storage_root + "/")
        self.resolver = PathResolver(storage_root, subtract_path(storage_root, self.document_root))
        logger.info("local_storage_root", storage_root=storage_root,
                    document_root=self.document_root, dynamic_root=self.resolver.dynamic_root)

    def set_root(self, path: str, make_dir: bool = False, relative_to_document_root: Optional[bool] = None,
                 **kwargs) -> None:
        """
        Override the storage root.

        The root is only changed when ``relative_to_document_root`` is a
        bool; ``make_dir`` creates the root folder when missing.
        """
        if isinstance(relative_to_document_root, bool):
            storage_root = path + "/"
            if relative_to_document_root:
                storage_root = self.document_root + "/" + storage_root
            storage_root = clean_path(storage_root)
            self.resolver = PathResolver(storage_root, subtract_path(storage_root, self.document_root))

        logger.info("local_storage_root_overridden", storage_root=self.get_root(),
                    dynamic_root=self.get_dynamic_root())

        if make_dir and not os.path.exists(self.get_root()):
            logger.info("local_create_root", path=self.get_root())
            os.makedirs(self.get_root(), self.config("mkdir_mode", 0o755), exist_ok=True)

    # Status

    def stat(self, absolute_path: str) -> ItemStat:
        try:
            st = os.stat(absolute_path)
        except (OSError, ValueError):
            # Dangling symlinks still exist as entries
            if os.path.islink(absolute_path.rstrip("/")):
                return ItemStat(exists=True, is_dir=False, size=0)
            return ItemStat(exists=False, is_dir=False)
        is_dir = os.path.isdir(absolute_path)
        return ItemStat(exists=True, is_dir=is_dir, size=None if is_dir else st.st_size, mtime=int(st.st_mtime))

    def has_system_read_permission(self, path: str) -> bool:
        return os.access(path, os.R_OK)

    def has_system_write_permission(self, path: str) -> bool:
        # Creating an entry in a POSIX folder needs both write and execute bits
        if os.path.isdir(path) and os.name == "posix":
            return os.access(path, os.W_OK) and os.access(path, os.X_OK)
        return os.access(path, os.W_OK)

    def list_children(self, directory: BaseItemModel) -> List[BaseItemModel]:
        base = directory.relative_path.rstrip("/") + "/"
        with os.scandir(directory.absolute_path) as entries:
            names = sorted(entry.name for entry in entries)
        return [self.get_item(base + name) for name in names]

    # Mutations

    def create_folder(self, target: BaseItemModel, prototype: Optional[BaseItemModel] = None,
                      options: Optional[Dict[str, Any]] = None) -> bool:
        options = {"recursive": True, "mode": self.config("mkdir_mode", 0o755), **(options or {})}
        path = target.absolute_path
        try:
            if options["recursive"]:
                os.makedirs(path, options["mode"])
            else:
                os.mkdir(path, options["mode"])
            logger.info("local_mkdir", path=path)
            return True
        except OSError as exc:
            logger.error("local_mkdir_failed", path=path, error=str(exc))
            return False

    def copy_recursive(self, source: BaseItemModel, target: BaseItemModel) -> bool:
        """
        Copy a file, a symlink or a folder tree.

        A failing child makes the result False but the remaining children are
        still copied.

        Args:
            source: Item to copy
            target: Destination item; may lie inside ``source``

        Returns:
            True if every entry was copied
        """
        source_path = source.absolute_path.rstrip("/")
        target_path = target.absolute_path.rstrip("/")
        try:
            if os.path.islink(source_path):
                os.symlink(os.readlink(source_path), target_path)
                return True
            if os.path.isfile(source_path):
                shutil.copyfile(source_path, target_path)
                return True
            # Listed before creating the target, which may lie inside the source
            names = sorted(os.listdir(source_path))
            if not os.path.isdir(target_path) and not self.create_folder(target):
                return False
        except OSError as exc:
            logger.error("local_copy_failed", source=source_path, target=target_path, error=str(exc))
            return False

        flag = True
        source_base = source.relative_path.rstrip("/") + "/"
        target_base = target.relative_path.rstrip("/") + "/"
        for name in names:
            item_source = self.get_item(source_base + name)
            item_target = self.get_item(target_base + name)
            flag = self.copy_recursive(item_source, item_target) and flag
        return flag

    def rename_recursive(self, source: BaseItemModel, target: BaseItemModel) -> bool:
        # The filesystem moves the whole subtree in one call
        try:
            os.rename(source.absolute_path.rstrip("/"), target.absolute_path.rstrip("/"))
            return True
        except OSError as exc:
            logger.error("local_rename_failed", source=source.absolute_path,
                         target=target.absolute_path, error=str(exc))
            return False

    def unlink_recursive(self, target: BaseItemModel) -> bool:
        target_path = target.absolute_path.rstrip("/") or "/"
        if os.path.islink(target_path) or not os.path.isdir(target_path):
            try:
                os.unlink(target_path)
                return True
            except OSError as exc:
                logger.error("local_unlink_failed", path=target_path, error=str(exc))
                return False

        try:
            names = os.listdir(target_path)
        except OSError as exc:
            logger.error("local_unlink_opendir_failed", path=target_path, error=str(exc))
            return False

        base = target.relative_path.rstrip("/") + "/"
        for name in names:
            self.unlink_recursive(self.get_item(base + name))
        try:
            os.rmdir(target_path)
            return True
        except OSError as exc:
            logger.error("local_rmdir_failed", path=target_path, error=str(exc))
            return False

    def _lock_for(self, path: str) -> FileLock:
        os.makedirs(self.lock_dir, exist_ok=True)
        digest = hashlib.sha1(path.encode("utf-8")).hexdigest()
        return FileLock(os.path.join(self.lock_dir, f"{digest}.lock"), timeout=self.lock_timeout)

    def write_stream(self, item: BaseItemModel, stream: BinaryIO, content_type: Optional[str] = None) -> bool:
        """
        Write ``stream`` to ``item`` while holding its lock file.

        Raises:
            BackendFailureError: If the lock is not acquired within ``lock_timeout`` seconds
        """
        path = item.absolute_path
        lock = self._lock_for(path)
        try:
            with lock:
                with open(path, "wb") as handle:
                    shutil.copyfileobj(stream, handle, STREAM_CHUNK_SIZE)
            logger.info("local_write", path=path)
            return True
        except Timeout:
            logger.error("local_write_lock_timeout", path=path, timeout=self.lock_timeout)
            raise BackendFailureError("ERROR_WRITING_FILE", [item.relative_path],
                                      message=f"Failed to acquire file lock within {self.lock_timeout}s")
        except OSError as exc:
            logger.error("local_write_failed", path=path, error=str(exc))
            return False

    def zip_file(self, source: str, destination: str, include_folder: bool = False) -> bool:
        return zip_directory(source, destination, include_folder)

    # Reading

    def read_bytes(self, item: BaseItemModel) -> bytes:
        with open(item.absolute_path, "rb") as handle:
            return handle.read()

    def read_file(self, path: str, range_header: Optional[str] = None,
                  chunk_size: int = STREAM_CHUNK_SIZE) -> FileStream:
        file_size = self.get_file_size(path)
        byte_range = parse_range(range_header, file_size)
        handle = open(path, "rb")
        if byte_range is not None:
            handle.seek(byte_range.start)
            length = byte_range.length
        else:
            length = file_size
        return FileStream(
            chunks=iter_chunks(handle, length, chunk_size),
            total_size=file_size,
            mime_type=self.get_mime_type(path),
            filename=os.path.basename(path.rstrip("/")),
            byte_range=byte_range,
            on_close=handle.close,
        )

    def get_file_size(self, path: str) -> int:
        """
        Size of a file in bytes.

        Waits for any ``write_stream`` on the same path to finish, then seeks
        to the end under a shared lock. Falls back to a ``file://``
        content-length probe and finally to ``stat``.

        Args:
            path: Absolute path of the file

        Returns:
            Size in bytes

        Raises:
            BackendFailureError: If the write lock is not released within
                ``lock_timeout`` seconds
        """
        try:
            with self._lock_for(path):
                with open(path, "rb") as handle:
                    if fcntl is not None:
                        fcntl.flock(handle.fileno(), fcntl.LOCK_SH)
                    try:
                        return handle.seek(0, os.SEEK_END)
                    finally:
                        if fcntl is not None:
                            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except Timeout:
            logger.error("local_size_lock_timeout", path=path, timeout=self.lock_timeout)
            raise BackendFailureError("ERROR_READING_FILE", [path],
                                      message=f"Failed to acquire file lock within {self.lock_timeout}s")
        except OSError as exc:
            logger.warning("local_size_seek_failed", path=path, error=str(exc))

        try:
            with urllib.request.urlopen(pathlib.Path(path).as_uri()) as response:
                length = response.headers.get("Content-Length")
                if length is not None and length.isdigit():
                    return int(length)
        except (OSError, ValueError) as exc:
            logger.warning("local_size_probe_failed", path=path, error=str(exc))

        return os.path.getsize(path)

    def get_dir_summary(self, directory: str, result: Optional[Dict[str, int]] = None) -> Dict[str, int]:
        if result is None:
            result = empty_summary()
        model_dir = self.get_item(directory)
        try:
            names = sorted(os.listdir(model_dir.absolute_path))
        except OSError:
            # Unreadable folders are skipped
            return result

        base = model_dir.relative_path.rstrip("/") + "/"
        for name in names:
            model = self.get_item(base + name)
            if not (model.has_read_permission() and model.is_unrestricted()):
                continue
            if model.is_directory():
                result["folders"] += 1
                self.get_dir_summary(model.relative_path, result)
            else:
                result["files"] += 1
                result["size"] += self.get_file_size(model.absolute_path)
        return result
