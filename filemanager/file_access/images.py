"""
Image collaborator backed by Pillow: dimensions, orientation and thumbnails.

Thumbnail failures never abort the operation that triggered them.
"""
import io
from typing import Any, BinaryIO, Dict, Optional, Tuple

import structlog
from PIL import Image, ImageOps

from filemanager.file_access.exceptions import FileManagerError

logger = structlog.get_logger()

EXIF_ORIENTATION = 0x0112

_FORMATS_BY_MIME = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/bmp": "BMP",
}


class ImageProcessor:
    """Image operations configured from one storage's ``images`` section."""

    def __init__(self, storage):
        self.storage = storage

    def get_dimensions(self, path: str) -> Dict[str, Any]:
        """Width and height of a local image file; empty when unreadable."""
        try:
            with Image.open(path) as img:
                width, height = img.size
            return {"width": width, "height": height}
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.debug("image_dimensions_unavailable", path=path, error=str(exc))
            return {}

    def inspect(self, stream: BinaryIO) -> Optional[Tuple[int, int, int]]:
        """
        Read ``(width, height, orientation)`` from an image stream.

        Returns None for content Pillow cannot decode. The stream position
        is restored.
        """
        position = stream.tell()
        try:
            with Image.open(stream) as img:
                width, height = img.size
                orientation = img.getexif().get(EXIF_ORIENTATION, 1) or 1
            return width, height, int(orientation)
        except (OSError, ValueError, Image.DecompressionBombError):
            return None
        finally:
            stream.seek(position)

    def prepare_main_image(self, stream: BinaryIO, mime: str) -> BinaryIO:
        """Apply ``images.main`` auto-orientation and max size before storing an upload."""
        image_format = _FORMATS_BY_MIME.get(mime)
        if image_format is None:
            return stream
        auto_orient = self.storage.config("images.main.auto_orient", False)
        max_width = self.storage.config("images.main.max_width")
        max_height = self.storage.config("images.main.max_height")
        info = self.inspect(stream)
        if info is None:
            return stream
        width, height, orientation = info
        needs_orient = auto_orient and orientation > 1
        needs_resize = (max_width and width > max_width) or (max_height and height > max_height)
        if not (needs_orient or needs_resize):
            return stream

        with Image.open(stream) as img:
            if needs_orient:
                img = ImageOps.exif_transpose(img)
            if needs_resize:
                img.thumbnail((max_width or img.width, max_height or img.height))
            out = io.BytesIO()
            img.save(out, format=image_format)
        out.seek(0)
        return out

    def create_thumbnail(self, source, target) -> bool:
        """Render ``source`` into the thumbnail item ``target``."""
        max_width = self.storage.config("images.thumbnail.max_width", 64)
        max_height = self.storage.config("images.thumbnail.max_height", 64)
        crop = self.storage.config("images.thumbnail.crop", True)
        mime = source.get_mime_type()
        image_format = _FORMATS_BY_MIME.get(mime)
        if image_format is None:
            logger.info("thumbnail_unsupported_format", path=source.absolute_path, mime=mime)
            return False

        try:
            data = source.storage.read_bytes(source)
            with Image.open(io.BytesIO(data)) as img:
                img = ImageOps.exif_transpose(img)
                if crop:
                    img = ImageOps.fit(img, (max_width, max_height))
                else:
                    img.thumbnail((max_width, max_height))
                out = io.BytesIO()
                img.save(out, format=image_format)
            out.seek(0)
            return target.storage.write_stream(target, out, content_type=mime)
        except (OSError, ValueError, Image.DecompressionBombError, FileManagerError) as exc:
            logger.warning("thumbnail_failed", source=source.absolute_path,
                           target=target.absolute_path, error=str(exc))
            return False
