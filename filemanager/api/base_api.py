"""
Operation layer shared by the storage-specific APIs.

Each action takes plain arguments, validates the involved items, calls the
storage and returns JSON API dicts (or a FileStream for content). Events are
dispatched only after an action succeeded.
"""
import io
import os
import tempfile
import uuid
import zipfile
from typing import Any, Dict, Iterable, List, Optional, Tuple

from filemanager.file_access.archive import ZipArchive
from filemanager.file_access.base_item import BaseItemModel
from filemanager.file_access.events import (
    AfterFileExtractEvent,
    AfterFileUploadEvent,
    AfterFolderCreateEvent,
    AfterFolderReadEvent,
    AfterFolderSeekEvent,
    AfterItemCopyEvent,
    AfterItemDeleteEvent,
    AfterItemDownloadEvent,
    AfterItemMoveEvent,
    AfterItemRenameEvent,
    EventDispatcher,
)
from filemanager.file_access.exceptions import (
    BackendFailureError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from filemanager.file_access.paths import basename, clean_path
from filemanager.file_access.registry import StorageRegistry
from filemanager.file_access.streaming import DOWNLOAD_CHUNK_SIZE, FileStream
from filemanager.file_access.upload import UploadedFile
from filemanager.monitoring.context import set_request_context
from filemanager.monitoring.errors import record_error
from filemanager.monitoring.logger import log


class BaseApi:
    """Backend-agnostic file manager actions bound to one registered storage."""

    storage_name = ""
    # Exceptions raised by the backend client that map to ERROR_SERVER
    backend_errors: Tuple[type, ...] = (OSError,)
    # Thumbnails of copied/moved items are only transferred into existing folders
    require_thumbnail_parent = True

    def __init__(self, registry: StorageRegistry, dispatcher: Optional[EventDispatcher] = None,
                 request_id: Optional[str] = None):
        self.registry = registry
        self.storage = registry.get(self.storage_name)
        self.dispatcher = dispatcher or EventDispatcher()
        set_request_context(request_id=request_id, storage=self.storage_name)

    def _log(self, message: str, level: str = "INFO", **kwargs) -> None:
        log(level, message, module="api", storage=self.storage_name, **kwargs)

    def _item(self, path: Optional[str]) -> BaseItemModel:
        return self.storage.get_item(path or "/")

    def _json(self, model: BaseItemModel) -> Dict[str, Any]:
        return model.get_data().format_json_api(self.storage.config("options.date_format"))

    def _refresh(self, model: BaseItemModel) -> Dict[str, Any]:
        return model.reset_stats().get_data().format_json_api(self.storage.config("options.date_format"))

    @staticmethod
    def _ensure_not_root(model: BaseItemModel) -> None:
        if model.is_directory() and model.is_root():
            raise ForbiddenError("NOT_ALLOWED")

    @staticmethod
    def _ensure_absent(model: BaseItemModel) -> None:
        if model.is_exists():
            label = "DIRECTORY_ALREADY_EXISTS" if model.is_directory() else "FILE_ALREADY_EXISTS"
            raise ConflictError(label, [model.relative_path])

    def _check_bulk(self, model: BaseItemModel) -> None:
        """Hook for backends that restrict folder-wide operations."""

    def _shared_options(self) -> Dict[str, Any]:
        return {}

    # Actions

    def initiate(self) -> Dict[str, Any]:
        """Configuration options that affect the client side."""
        config = self.storage.config
        shared_config = {
            "security": {
                "read_only": config("security.read_only"),
                "extensions": {
                    "policy": config("security.extensions.policy"),
                    "ignore_case": config("security.extensions.ignore_case"),
                    "restrictions": list(config("security.extensions.restrictions", [])),
                },
            },
            "upload": {
                "file_size_limit": config("upload.file_size_limit"),
                "param_name": config("upload.param_name"),
            },
            "viewer": {
                "absolute_path": config("viewer.absolute_path"),
                "preview_url": config("viewer.preview_url"),
            },
        }
        options = self._shared_options()
        if options:
            shared_config["options"] = options
        return {"id": "/", "type": "initiate", "attributes": {"config": shared_config}}

    def read_folder(self, path: str) -> List[Dict[str, Any]]:
        """
        List the unrestricted children of the folder ``path``.

        Returns:
            JSON API resources, one per visible child

        Raises:
            NotFoundError: If ``path`` is missing or is a file
            BackendFailureError: If the folder cannot be listed
        """
        model = self._item(path)
        self._log(f'opening folder "{model.absolute_path}"')
        model.check_path()
        model.check_read_permission()
        model.check_restrictions()
        if not model.is_directory():
            raise NotFoundError("DIRECTORY_NOT_EXIST", [model.relative_path])

        try:
            children = self.storage.list_children(model)
        except self.backend_errors as exc:
            raise BackendFailureError("UNABLE_TO_OPEN_DIRECTORY", [model.relative_path]) from exc

        files_paths = []
        response = []
        for item in children:
            if item.is_unrestricted():
                files_paths.append(item.absolute_path)
                response.append(self._json(item))

        self.dispatcher.dispatch(AfterFolderReadEvent(model.get_data(), files_paths))
        return response

    def _seek(self, model: BaseItemModel, needle: str, found: List[BaseItemModel]) -> None:
        try:
            children = self.storage.list_children(model)
        except self.backend_errors as exc:
            self._log(f'skipping unreadable folder "{model.absolute_path}": {exc}', level="WARNING")
            return
        for item in children:
            if basename(item.relative_path).lower().startswith(needle) and item.is_unrestricted():
                found.append(item)
            if item.is_directory() and item.is_unrestricted() and item.has_read_permission():
                self._seek(item, needle, found)

    def seek_folder(self, path: str, string: str) -> List[Dict[str, Any]]:
        """Case-insensitive name-prefix search below ``path``."""
        model = self._item(path)
        self._log(f'search for "{string}" in "{model.absolute_path}" folder')
        model.check_path()
        model.check_read_permission()
        model.check_restrictions()

        found: List[BaseItemModel] = []
        self._seek(model, (string or "").lower(), found)
        files_paths = [item.absolute_path for item in found]
        response = [self._json(item) for item in found]

        self.dispatcher.dispatch(AfterFolderSeekEvent(model.get_data(), string, files_paths))
        return response

    def get_info(self, path: str) -> Dict[str, Any]:
        model = self._item(path)
        self._log(f'opening file "{model.absolute_path}"')
        model.check_path()
        model.check_read_permission()
        model.check_restrictions()
        return self._json(model)

    def upload(self, path: str, files: Iterable[UploadedFile]) -> List[Dict[str, Any]]:
        """
        Store uploaded files into the folder ``path``.

        Files are handled independently. Rejected files are reported as error
        entries; when no file was stored the first error is raised.

        Args:
            path: Destination folder
            files: Uploaded files, each with a name and a binary stream

        Returns:
            One entry per file: a JSON API resource, or an error dict
        """
        model = self._item(path)
        self._log(f'uploading to "{model.absolute_path}"')
        model.check_path()
        model.check_write_permission()

        results = self.storage.init_uploader(model).post(files)
        if not results:
            raise BackendFailureError("ERROR_UPLOADING_FILE")
        if not any(result.ok for result in results):
            raise results[0].error

        response = []
        for result in results:
            if result.ok:
                response.append(self._json(result.item))
                self.dispatcher.dispatch(AfterFileUploadEvent(result.item.get_data()))
            else:
                response.append(result.error.to_dict())
        return response

    def add_folder(self, path: str, name: str) -> Dict[str, Any]:
        """
        Create the folder ``name`` inside ``path``.

        Args:
            path: Parent folder
            name: New folder name, normalized before use

        Returns:
            JSON API resource of the new folder

        Raises:
            ConflictError: If the folder already exists
            BackendFailureError: If the storage refuses to create it
        """
        model_target = self._item(path)
        model_target.check_path()
        model_target.check_write_permission()

        dir_name = self.storage.normalize_string(name.strip("/")) + "/"
        model = self._item(clean_path("/" + model_target.relative_path + "/" + dir_name))
        self._log(f'adding folder "{model.absolute_path}"')
        model.check_restrictions()

        if model.is_exists() and model.is_directory():
            raise ConflictError("DIRECTORY_ALREADY_EXISTS", [name])
        if not self.storage.create_folder(model, model_target):
            raise BackendFailureError("UNABLE_TO_CREATE_DIRECTORY", [name])

        response = self._refresh(model)
        self.dispatcher.dispatch(AfterFolderCreateEvent(model.get_data()))
        return response

    def rename(self, old: str, new: str) -> Dict[str, Any]:
        """
        Rename ``old`` in place to ``new``; its thumbnail follows.

        Raises:
            ForbiddenError: If ``new`` contains a slash or ``old`` is the root
            ConflictError: If an item named ``new`` already exists
        """
        model_old = self._item(old)
        suffix = "/" if model_old.is_directory() else ""
        if "/" in new:
            raise ForbiddenError("FORBIDDEN_CHAR_SLASH")
        self._ensure_not_root(model_old)
        self._check_bulk(model_old)

        model_new = self._item(model_old.closest().relative_path + new + suffix)
        self._log(f'moving "{model_old.absolute_path}" to "{model_new.absolute_path}"')
        model_old.check_path()
        model_old.check_write_permission()
        model_old.check_restrictions()
        model_new.check_restrictions()

        thumb_old = model_old.thumbnail()
        thumb_new = model_new.thumbnail()
        if thumb_old.is_exists():
            thumb_old.check_write_permission()
        self._ensure_absent(model_new)

        if not self.storage.rename_recursive(model_old, model_new):
            label = "ERROR_RENAMING_DIRECTORY" if model_old.is_directory() else "ERROR_RENAMING_FILE"
            raise BackendFailureError(label, [model_old.relative_path, model_new.relative_path])
        self._log(f'renamed "{model_old.absolute_path}" to "{model_new.absolute_path}"')
        if thumb_old.is_exists():
            thumb_old.storage.rename_recursive(thumb_old, thumb_new)

        response = self._refresh(model_new)
        model_old.reset_stats()
        self.dispatcher.dispatch(AfterItemRenameEvent(model_new.get_data(), model_old.get_data()))
        return response

    def _transfer_models(self, source: str, target: str) -> Tuple[BaseItemModel, BaseItemModel, BaseItemModel]:
        model_source = self._item(source)
        model_target = self._item(target)
        suffix = "/" if model_source.is_directory() else ""
        name = basename(model_source.absolute_path) + suffix
        model_new = self._item(model_target.relative_path.rstrip("/") + "/" + name)
        if not model_target.is_directory():
            raise NotFoundError("DIRECTORY_NOT_EXIST", [model_target.relative_path])
        self._ensure_not_root(model_source)
        if model_source.is_directory() and model_target.relative_path.startswith(model_source.relative_path):
            raise ForbiddenError("NOT_ALLOWED", [model_target.relative_path])
        self._check_bulk(model_source)
        return model_source, model_target, model_new

    def _thumbnail_parent_ready(self, thumb_new: BaseItemModel) -> bool:
        return not self.require_thumbnail_parent or thumb_new.closest().is_exists()

    def copy(self, source: str, target: str) -> Dict[str, Any]:
        """
        Copy ``source`` into the folder ``target``.

        Args:
            source: File or folder to copy
            target: Existing destination folder

        Returns:
            JSON API resource of the copy

        Raises:
            NotFoundError: If ``target`` is not a folder
            ForbiddenError: If ``source`` is the root or ``target`` lies inside it
            ConflictError: If ``target`` already holds an item of that name
            BackendFailureError: If the storage copy failed
        """
        model_source, model_target, model_new = self._transfer_models(source, target)
        self._log(f'copying "{model_source.absolute_path}" to "{model_new.absolute_path}"')

        model_source.check_path()
        model_source.check_read_permission()
        model_source.check_restrictions()
        model_target.check_path()
        model_target.check_write_permission()
        model_new.check_restrictions()
        self._ensure_absent(model_new)

        thumb_old = model_source.thumbnail()
        thumb_new = model_new.thumbnail()
        if thumb_old.is_exists():
            thumb_old.check_read_permission()
            if self.require_thumbnail_parent and thumb_new.closest().is_exists():
                thumb_new.closest().check_write_permission()

        if not self.storage.copy_recursive(model_source, model_new):
            name = basename(model_source.absolute_path)
            label = "ERROR_COPYING_DIRECTORY" if model_source.is_directory() else "ERROR_COPYING_FILE"
            raise BackendFailureError(label, [name, model_target.relative_path])
        self._log(f'copied "{model_source.absolute_path}" to "{model_new.absolute_path}"')
        if thumb_old.is_exists() and self._thumbnail_parent_ready(thumb_new):
            thumb_old.storage.copy_recursive(thumb_old, thumb_new)

        response = self._refresh(model_new)
        self.dispatcher.dispatch(AfterItemCopyEvent(model_new.get_data(), model_source.get_data()))
        return response

    def move(self, old: str, new: str) -> Dict[str, Any]:
        """Move ``old`` into the folder ``new``. Same checks as ``copy``."""
        model_source, model_target, model_new = self._transfer_models(old, new)
        self._log(f'moving "{model_source.absolute_path}" to "{model_new.absolute_path}"')

        model_source.check_path()
        model_source.check_write_permission()
        model_source.check_restrictions()
        model_target.check_path()
        model_target.check_write_permission()
        model_new.check_restrictions()
        self._ensure_absent(model_new)

        thumb_old = model_source.thumbnail()
        thumb_new = model_new.thumbnail()
        if thumb_old.is_exists():
            thumb_old.check_write_permission()
            if self.require_thumbnail_parent and thumb_new.closest().is_exists():
                thumb_new.closest().check_write_permission()

        if not self.storage.rename_recursive(model_source, model_new):
            name = basename(model_source.absolute_path)
            label = "ERROR_MOVING_DIRECTORY" if model_source.is_directory() else "ERROR_MOVING_FILE"
            raise BackendFailureError(label, [name, model_target.relative_path])
        self._log(f'moved "{model_source.absolute_path}" to "{model_new.absolute_path}"')
        if thumb_old.is_exists():
            if self._thumbnail_parent_ready(thumb_new):
                thumb_old.storage.rename_recursive(thumb_old, thumb_new)
            else:
                thumb_old.remove()

        response = self._refresh(model_new)
        model_source.reset_stats()
        self.dispatcher.dispatch(AfterItemMoveEvent(model_new.get_data(), model_source.get_data()))
        return response

    def save_file(self, path: str, content: Any) -> Dict[str, Any]:
        """
        Replace the content of an existing file.

        Raises:
            ForbiddenError: If ``path`` is a folder
            BackendFailureError: If the write failed
        """
        model = self._item(path)
        self._log(f'saving file "{model.absolute_path}"')
        model.check_path()
        model.check_write_permission()
        model.check_restrictions()
        if model.is_directory():
            raise ForbiddenError("FORBIDDEN_ACTION_DIR")

        data = content.encode("utf-8") if isinstance(content, str) else bytes(content or b"")
        if not self.storage.write_stream(model, io.BytesIO(data), content_type=model.get_mime_type()):
            raise BackendFailureError("ERROR_SAVING_FILE")
        self._log(f'saved "{model.absolute_path}"')
        return self._refresh(model)

    def read_file(self, path: str, range_header: Optional[str] = None) -> FileStream:
        model = self._item(path)
        self._log(f'reading file "{model.absolute_path}"')
        model.check_path()
        model.check_read_permission()
        model.check_restrictions()
        if model.is_directory():
            raise ForbiddenError("FORBIDDEN_ACTION_DIR")

        stream = self.storage.read_file(model.absolute_path, range_header)
        stream.filename = None
        stream.extra_headers["Content-Disposition"] = "inline"
        return stream

    def get_image(self, path: str, thumbnail: bool = False, range_header: Optional[str] = None) -> FileStream:
        """
        Stream an image, or its thumbnail when ``thumbnail`` is set.

        The image itself is validated before any thumbnail is generated.
        Formats without thumbnail support are served as is.

        Args:
            path: Image file
            thumbnail: Serve the thumbnail, creating it on demand
            range_header: Raw ``Range`` header value, if any

        Returns:
            Inline FileStream

        Raises:
            ForbiddenError: If ``path`` is a folder
            InvalidPathError: If ``path`` escapes the storage root
        """
        model_image = self._item(path)
        self._log(f'loading image "{model_image.absolute_path}"')
        if model_image.is_directory():
            raise ForbiddenError("FORBIDDEN_ACTION_DIR")

        model_image.check_path()
        model_image.check_read_permission()
        model_image.check_restrictions()

        model = model_image
        if thumbnail and self.storage.config("images.thumbnail.enabled", False):
            model_thumb = model_image.thumbnail()
            if not model_thumb.is_exists() or self.storage.config("images.thumbnail.cache") is False:
                model_image.create_thumbnail()
            # Formats without thumbnail support are served as is
            if model_thumb.is_exists():
                model = model_thumb
                model.check_path()
                model.check_read_permission()
                model.check_restrictions()

        stream = model.storage.read_file(model.absolute_path, range_header)
        stream.filename = None
        stream.extra_headers["Content-Disposition"] = "inline"
        return stream

    def delete(self, path: str) -> Dict[str, Any]:
        """Remove a file or folder and its thumbnail."""
        model = self._item(path)
        self._log(f'deleting "{model.absolute_path}"')
        model.check_path()
        model.check_write_permission()
        model.check_restrictions()
        self._ensure_not_root(model)

        model_thumb = model.thumbnail()
        if model_thumb.is_exists():
            model_thumb.check_write_permission()

        if not model.remove():
            label = "ERROR_DELETING_DIRECTORY" if model.is_directory() else "ERROR_DELETING_FILE"
            raise BackendFailureError(label, [model.relative_path])
        self._log(f'deleted "{model.absolute_path}"')
        if model_thumb.is_exists():
            model_thumb.remove()

        response = self._refresh(model)
        self.dispatcher.dispatch(AfterItemDeleteEvent(model.get_data()))
        return response

    def _prepare_download(self, model: BaseItemModel, range_header: Optional[str]) -> FileStream:
        """Content stream for ``download``; backends override it for folders."""
        if model.is_directory():
            raise ForbiddenError("FORBIDDEN_ACTION_DIR")
        return self.storage.read_file(model.absolute_path, range_header, chunk_size=DOWNLOAD_CHUNK_SIZE)

    def download(self, path: str, range_header: Optional[str] = None) -> FileStream:
        """
        Stream ``path`` as an attachment.

        Raises:
            ForbiddenError: For the root, or for folders the backend cannot pack
        """
        model = self._item(path)
        self._log(f'downloading "{model.absolute_path}"')
        model.check_path()
        model.check_read_permission()
        model.check_restrictions()
        self._ensure_not_root(model)

        stream = self._prepare_download(model, range_header)
        stream.extra_headers.update({
            "Content-Description": "File Transfer",
            "Pragma": "public",
            "Expires": "0",
            "Cache-Control": "must-revalidate, post-check=0, pre-check=0",
        })

        self.dispatcher.dispatch(AfterItemDownloadEvent(model.get_data()))
        self._log(f'downloaded "{model.absolute_path}"')
        return stream

    def summarize(self) -> Dict[str, Any]:
        """Size, file and folder totals of the whole storage, with the configured size limit."""
        path = "/"
        attributes = {"size": 0, "files": 0, "folders": 0}
        try:
            self.storage.get_dir_summary(path, attributes)
        except self.backend_errors as exc:
            record_error("api", "summarize", f"Summary failed: {exc}", label="ERROR_SERVER", storage=self.storage_name)
            raise BackendFailureError("ERROR_SERVER") from exc
        attributes["size_limit"] = self.storage.config("options.file_root_size_limit")
        return {"id": path, "type": "summary", "attributes": attributes}

    def _open_archive_copy(self, model: BaseItemModel) -> Tuple[str, bool]:
        """Local path of the archive and whether it is a temporary copy."""
        return model.absolute_path, False

    def extract(self, source: str, target: str) -> List[Dict[str, Any]]:
        """
        Unpack a zip archive into the folder ``target``.

        Folders are created first, then files are written into them.
        Restricted entries and entries resolving outside ``target`` are
        skipped.

        Returns:
            JSON API resources of the top-level extracted items

        Raises:
            ForbiddenError: If ``source`` is a folder
            BackendFailureError: If the archive cannot be read
        """
        model_source = self._item(source)
        model_target = self._item(target)
        self._log(f'extracting "{model_source.absolute_path}" to "{model_target.absolute_path}"')
        model_source.check_path()
        model_target.check_path()
        model_source.check_read_permission()
        model_target.check_write_permission()
        model_source.check_restrictions()
        model_target.check_restrictions()
        if model_source.is_directory():
            raise ForbiddenError("FORBIDDEN_ACTION_DIR")

        archive_path, is_temp = self._open_archive_copy(model_source)
        file_names: List[str] = []
        root_names: List[str] = []
        base = model_target.relative_path.rstrip("/") + "/"

        def track_root(name: str) -> None:
            root_name = name[:name.index("/") + 1] if "/" in name else name
            if root_name not in root_names:
                root_names.append(root_name)

        try:
            with ZipArchive(archive_path) as archive:
                entries = archive.entries()
                for entry in entries:
                    model = self._item(base + entry.name)
                    if not model.is_valid_path():
                        self._log(f'skipping archive entry "{entry.name}" outside the target', level="WARNING")
                        continue
                    if not (entry.is_dir and model.is_unrestricted()):
                        continue
                    if model.is_exists() or self.storage.create_folder(model, model_target):
                        track_root(entry.name)

                for entry in entries:
                    model = self._item(base + entry.name)
                    if entry.is_dir or not (model.is_valid_path() and model.is_unrestricted()):
                        continue
                    parent = model.closest()
                    if not parent.is_exists() and not self.storage.create_folder(parent, model_target):
                        continue
                    mime = self.storage.guess_mime_type(entry.name)
                    with archive.open_entry(entry.name) as src:
                        written = self.storage.write_stream(model, src, content_type=mime)
                    if written:
                        file_names.append(model.absolute_path)
                        track_root(entry.name)
        except (zipfile.BadZipFile, OSError) as exc:
            raise BackendFailureError("ERROR_EXTRACTING_FILE", [model_source.relative_path]) from exc
        finally:
            if is_temp and os.path.exists(archive_path):
                os.unlink(archive_path)

        response = [self._json(self._item(base + name)) for name in root_names]
        self.dispatcher.dispatch(AfterFileExtractEvent(model_source.get_data(), file_names))
        return response


def make_temp_path(suffix: str = "") -> str:
    return os.path.join(tempfile.gettempdir(), "fm-" + uuid.uuid4().hex + suffix)


def remove_on_close(stream: FileStream, path: str) -> FileStream:
    """Delete the temporary file ``path`` once ``stream`` is closed."""
    close_handle = stream.on_close

    def _cleanup():
        try:
            if close_handle is not None:
                close_handle()
        finally:
            if os.path.exists(path):
                os.unlink(path)

    stream.on_close = _cleanup
    return stream
