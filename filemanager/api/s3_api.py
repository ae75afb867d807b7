from typing import Any, Dict, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from filemanager.api.base_api import BaseApi, make_temp_path
from filemanager.file_access.base_item import BaseItemModel
from filemanager.file_access.base_storage import STORAGE_S3_NAME
from filemanager.file_access.exceptions import ForbiddenError
from filemanager.file_access.streaming import DOWNLOAD_CHUNK_SIZE


class S3Api(BaseApi):
    """
    Actions over an S3 bucket.

    Folder operations fan out into one request per object, so they can be
    switched off with ``allow_bulk``. Folders are never offered as downloads.
    """

    storage_name = STORAGE_S3_NAME
    backend_errors = (OSError, ClientError, BotoCoreError)
    require_thumbnail_parent = False

    def _shared_options(self) -> Dict[str, Any]:
        return {"allow_folder_download": False}

    def _check_bulk(self, model: BaseItemModel) -> None:
        if model.is_directory() and not self.storage.config("allow_bulk", True):
            raise ForbiddenError("FORBIDDEN_ACTION_DIR")

    def _open_archive_copy(self, model: BaseItemModel) -> Tuple[str, bool]:
        archive_path = make_temp_path(".zip")
        stream = self.storage.read_file(model.absolute_path, chunk_size=DOWNLOAD_CHUNK_SIZE)
        with open(archive_path, "wb") as handle:
            for chunk in stream:
                handle.write(chunk)
        return archive_path, True
