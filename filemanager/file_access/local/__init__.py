from filemanager.file_access.local.item_model import LocalItemModel
from filemanager.file_access.local.storage import LocalStorage

__all__ = ["LocalItemModel", "LocalStorage"]
