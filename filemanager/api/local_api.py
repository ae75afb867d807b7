import os
from typing import Optional

from filemanager.api.base_api import BaseApi, make_temp_path, remove_on_close
from filemanager.file_access.base_item import BaseItemModel
from filemanager.file_access.base_storage import STORAGE_LOCAL_NAME
from filemanager.file_access.exceptions import BackendFailureError
from filemanager.file_access.paths import basename
from filemanager.file_access.streaming import DOWNLOAD_CHUNK_SIZE, FileStream


class LocalApi(BaseApi):
    """Actions over the local filesystem storage."""

    storage_name = STORAGE_LOCAL_NAME

    def _prepare_download(self, model: BaseItemModel, range_header: Optional[str]) -> FileStream:
        if not model.is_directory():
            return super()._prepare_download(model, range_header)

        # Folders are packed into a temporary archive
        archive_path = make_temp_path(".zip")
        if not self.storage.zip_file(model.absolute_path, archive_path):
            raise BackendFailureError("ERROR_CREATING_ARCHIVE", [model.relative_path])
        self._log(f'packed "{model.absolute_path}" into "{archive_path}"')
        try:
            stream = self.storage.read_file(archive_path, range_header, chunk_size=DOWNLOAD_CHUNK_SIZE)
        except Exception:
            os.unlink(archive_path)
            raise
        remove_on_close(stream, archive_path)
        stream.filename = basename(model.absolute_path) + ".zip"
        stream.mime_type = "application/zip"
        return stream
