from filemanager.file_access.s3.helper import S3StorageHelper
from filemanager.file_access.s3.item_model import S3ItemModel
from filemanager.file_access.s3.storage import S3Storage

__all__ = ["S3ItemModel", "S3Storage", "S3StorageHelper"]
