"""
Immutable descriptive snapshot of an item, used to build responses.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

TYPE_FILE = "file"
TYPE_FOLDER = "folder"


@dataclass(frozen=True)
class ItemData:
    """Point-in-time metadata for a file or folder."""
    relative_path: str
    absolute_path: str
    dynamic_path: str
    is_directory: bool
    is_exists: bool
    is_root: bool
    is_image: bool = False
    is_readable: bool = False
    is_writable: bool = False
    time_created: Optional[int] = None
    time_modified: Optional[int] = None
    basename: str = ""
    size: int = 0
    image_data: Dict[str, Any] = field(default_factory=dict)

    def format_date(self, date_format: str) -> str:
        if self.time_modified is None:
            return ""
        return datetime.fromtimestamp(self.time_modified).strftime(date_format)

    def format_json_api(self, date_format: str = "%d %b %Y %H:%M") -> Dict[str, Any]:
        """Render the snapshot as a JSON API resource object."""
        # Creation time is not tracked separately from modification time
        date_formatted = self.format_date(date_format)
        attributes: Dict[str, Any] = {
            "name": self.basename,
            "path": self.dynamic_path,
            "readable": int(self.is_readable),
            "writable": int(self.is_writable),
            "created": date_formatted,
            "modified": date_formatted,
            "timestamp": self.time_modified,
        }
        if not self.is_directory:
            attributes["size"] = self.size
            attributes["width"] = self.image_data.get("width", 0)
            attributes["height"] = self.image_data.get("height", 0)
        return {
            "id": self.relative_path,
            "type": TYPE_FOLDER if self.is_directory else TYPE_FILE,
            "attributes": attributes,
        }
