"""
Thumbnail model factory.

Thumbnails live either next to their originals or on the local storage,
depending on ``images.thumbnail.use_local_storage``.
"""
from filemanager.file_access.base_item import BaseItemModel


def create_thumbnail_model(item: BaseItemModel) -> BaseItemModel:
    storage = item.storage.for_thumbnail()
    return storage.item_class(
        storage,
        item.get_thumbnail_path(),
        is_thumbnail=True,
        thumbnail_dir=item.thumbnail_dir,
    )
