from typing import Any, Dict

from filemanager.file_access.base_item import BaseItemModel


class LocalItemModel(BaseItemModel):
    """Item stored on the local filesystem."""

    def _image_dimensions(self) -> Dict[str, Any]:
        return self.storage.images.get_dimensions(self.absolute_path)
