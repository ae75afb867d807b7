"""
Zip archive collaborator: enumerate and extract entries, pack folders.
"""
import os
import zipfile
from dataclasses import dataclass
from typing import BinaryIO, List, Optional

import structlog

logger = structlog.get_logger()

PLACEHOLDER_NAME = "fm.txt"
PLACEHOLDER_TEXT = "This archive has been generated by the file manager."


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    is_dir: bool


class ZipArchive:
    """
    Thin wrapper around ``zipfile.ZipFile``.

    Usage:
        with ZipArchive(path) as archive:
            for entry in archive.entries():
                ...
    """

    def __init__(self, path: str):
        self.path = path
        self._zip: Optional[zipfile.ZipFile] = None

    def open(self) -> "ZipArchive":
        self._zip = zipfile.ZipFile(self.path, "r")
        return self

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def __enter__(self) -> "ZipArchive":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def entries(self) -> List[ArchiveEntry]:
        return [ArchiveEntry(name=info.filename, is_dir=info.is_dir()) for info in self._zip.infolist()]

    def open_entry(self, name: str) -> BinaryIO:
        return self._zip.open(name, "r")


def zip_directory(source: str, destination: str, include_folder: bool = False) -> bool:
    """Pack a file or a folder tree into a new archive at ``destination``."""
    if not os.path.exists(source):
        return False
    source = os.path.realpath(source).replace("\\", "/")
    prefix = os.path.basename(source) + "/" if include_folder else ""
    try:
        with zipfile.ZipFile(destination, "w", zipfile.ZIP_DEFLATED) as zf:
            if os.path.isdir(source):
                # Avoids an empty archive for empty folders
                zf.writestr(PLACEHOLDER_NAME, PLACEHOLDER_TEXT)
                for current, dirs, files in os.walk(source):
                    dirs.sort()
                    rel_dir = os.path.relpath(current, source).replace("\\", "/")
                    rel_dir = "" if rel_dir == "." else rel_dir + "/"
                    if rel_dir:
                        zf.writestr(zipfile.ZipInfo(prefix + rel_dir), "")
                    for name in sorted(files):
                        zf.write(os.path.join(current, name), prefix + rel_dir + name)
            else:
                zf.write(source, prefix + os.path.basename(source))
        return True
    except OSError as exc:
        logger.error("zip_directory_failed", source=source, destination=destination, error=str(exc))
        return False
