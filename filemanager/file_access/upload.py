"""
Upload handler: validates incoming files and stores them through a storage.

Each file in a batch is validated and stored independently; the first
failing check rejects that file only. Nothing is written for a rejected file.
"""
import os
import re
from dataclasses import dataclass
from typing import BinaryIO, Iterable, List, Optional

import structlog

from filemanager.file_access.base_item import BaseItemModel
from filemanager.file_access.exceptions import BackendFailureError, FileManagerError, ForbiddenError

logger = structlog.get_logger()

IMAGE_NAME_RE = re.compile(r"\.(gif|jpe?g|png)$", re.IGNORECASE)
_UPCOUNT_RE = re.compile(r"(?:(?: \(([\d]+)\))?(\.[^.]+))?$")


def _megabytes(value: int) -> str:
    return f"{round(value / 1000 / 1000, 2)} Mb"


def upcount_name(name: str) -> str:
    """``photo.jpg`` -> ``photo (1).jpg``, ``photo (1).jpg`` -> ``photo (2).jpg``."""
    def _replace(match):
        index = int(match.group(1)) + 1 if match.group(1) else 1
        ext = match.group(2) or ""
        return f" ({index}){ext}"
    return _UPCOUNT_RE.sub(_replace, name, count=1)


@dataclass
class UploadedFile:
    """Incoming file content; ``size`` is measured from the stream when omitted."""
    name: str
    stream: BinaryIO
    size: Optional[int] = None
    content_type: Optional[str] = None

    def measure(self) -> int:
        if self.size is None:
            position = self.stream.tell()
            self.stream.seek(0, os.SEEK_END)
            self.size = self.stream.tell() - position
            self.stream.seek(position)
        return self.size


@dataclass
class UploadResult:
    name: str
    item: Optional[BaseItemModel] = None
    error: Optional[FileManagerError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class UploadHandler:
    """Stores uploaded files into the folder item ``model``."""

    def __init__(self, model: BaseItemModel, storage):
        self.model = model
        self.storage = storage
        self.max_file_size = storage.config("upload.file_size_limit")
        self.min_file_size = storage.config("upload.min_file_size")
        self.max_number_of_files = storage.config("upload.max_number_of_files")
        self.root_size_limit = storage.config("options.file_root_size_limit", 0)

    def _target(self, name: str) -> BaseItemModel:
        return self.storage.get_item(self.model.relative_path.rstrip("/") + "/" + name)

    def trim_file_name(self, name: str) -> str:
        return self.storage.normalize_string(name, [".", "-"])

    def get_unique_filename(self, name: str) -> str:
        if self.storage.config("upload.overwrite", False):
            return name
        while self._target(name).is_exists():
            name = upcount_name(name)
        return name

    def count_file_objects(self) -> int:
        return sum(1 for child in self.storage.list_children(self.model) if not child.is_directory())

    def validate(self, file: UploadedFile, name: str) -> None:
        """Raise the first failing check as a labeled error."""
        target = self._target(name)
        if not target.is_allowed_extension():
            raise ForbiddenError("INVALID_FILE_TYPE")
        if not target.is_allowed_pattern():
            raise ForbiddenError("FORBIDDEN_NAME", [target.relative_path])

        file_size = file.measure()
        if self.root_size_limit and self.root_size_limit > 0:
            if file_size + self.storage.get_root_total_size() > self.root_size_limit:
                raise ForbiddenError("STORAGE_SIZE_EXCEED", [_megabytes(self.root_size_limit)])

        if self.max_file_size and file_size > self.max_file_size:
            raise ForbiddenError("UPLOAD_FILES_SMALLER_THAN", [_megabytes(self.max_file_size)])
        if self.min_file_size and file_size < self.min_file_size:
            raise ForbiddenError("UPLOAD_FILE_TOO_SMALL")

        if (
            isinstance(self.max_number_of_files, int)
            and self.count_file_objects() >= self.max_number_of_files
            and not target.is_exists()
        ):
            raise ForbiddenError("MAX_NUMBER_OF_FILES_EXCEEDED")

        self._validate_dimensions(file, name)

    def _validate_dimensions(self, file: UploadedFile, name: str) -> None:
        max_width = self.storage.config("images.main.max_width")
        max_height = self.storage.config("images.main.max_height")
        min_width = self.storage.config("images.main.min_width")
        min_height = self.storage.config("images.main.min_height")
        if not (max_width or max_height or min_width or min_height) or not IMAGE_NAME_RE.search(name):
            return

        info = self.storage.images.inspect(file.stream)
        if info is None:
            return
        width, height, orientation = info
        # Checks apply to the auto-rotated image
        if self.storage.config("images.main.auto_orient", False) and orientation >= 5:
            width, height = height, width

        if max_width and width > max_width:
            raise ForbiddenError("IMAGE_MAX_WIDTH", [max_width])
        if max_height and height > max_height:
            raise ForbiddenError("IMAGE_MAX_HEIGHT", [max_height])
        if min_width and width < min_width:
            raise ForbiddenError("IMAGE_MIN_WIDTH", [min_width])
        if min_height and height < min_height:
            raise ForbiddenError("IMAGE_MIN_HEIGHT", [min_height])

    def handle_file(self, file: UploadedFile) -> BaseItemModel:
        name = self.get_unique_filename(self.trim_file_name(file.name))
        self.validate(file, name)

        target = self._target(name)
        mime = file.content_type or self.storage.guess_mime_type(name)
        stream = file.stream
        if self.storage.is_image_mime_type(mime):
            stream = self.storage.images.prepare_main_image(stream, mime)

        if not self.storage.write_stream(target, stream, content_type=mime):
            raise BackendFailureError("ERROR_UPLOADING_FILE", [name])
        target.reset_stats()
        logger.info("file_uploaded", path=target.absolute_path, size=file.size)

        if target.is_image_file():
            target.create_thumbnail()
        return target

    def post(self, files: Iterable[UploadedFile]) -> List[UploadResult]:
        results = []
        for file in files:
            try:
                results.append(UploadResult(name=file.name, item=self.handle_file(file)))
            except FileManagerError as exc:
                logger.info("file_upload_rejected", name=file.name, label=exc.label)
                results.append(UploadResult(name=file.name, error=exc))
        return results
