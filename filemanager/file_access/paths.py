"""
Path normalization and root-relative path arithmetic.

All paths handled here use forward slashes. Relative paths start with ``/``
and directories end with ``/``.
"""
import posixpath
import re
from typing import Optional

_MULTI_SLASH = re.compile(r"/+")


def clean_path(path: str) -> str:
    """Convert backslashes to slashes and collapse repeated slashes."""
    path = path.replace("\\", "/")
    return _MULTI_SLASH.sub("/", path)


def subtract_path(full_path: str, sub_path: str) -> str:
    """
    Strip ``sub_path`` from the start of ``full_path``.

    Returns an empty string when ``full_path`` does not start with
    ``sub_path``, even if ``sub_path`` occurs later in the string.
    """
    if not sub_path or not full_path.startswith(sub_path):
        return ""
    rest = full_path[len(sub_path):]
    return clean_path("/" + rest) if rest else ""


def normalize_relative_path(path: str, is_dir: Optional[bool] = None) -> str:
    """
    Produce the canonical relative form of a user-supplied path.

    A leading slash is always present. When ``is_dir`` is True a trailing
    slash is enforced; when False it is stripped; None keeps the caller's
    convention.
    """
    path = clean_path("/" + (path or ""))
    if is_dir is True and not path.endswith("/"):
        path += "/"
    elif is_dir is False and path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return path


def parent_path(path: str) -> str:
    """Relative path of the folder holding ``path``, slash-terminated."""
    trimmed = path.rstrip("/")
    parent = posixpath.dirname(trimmed) if trimmed else "/"
    return clean_path(parent + "/")


def basename(path: str) -> str:
    return posixpath.basename(path.rstrip("/"))


def extension(path: str) -> str:
    """File extension without the leading dot, empty when there is none."""
    name = basename(path)
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1]


class PathResolver:
    """
    Computes relative, absolute and dynamic path forms for one storage root.

    ``root`` is the backend-addressable root (a filesystem path or an
    ``s3://bucket/prefix/`` URI); ``dynamic_root`` is the publicly reachable
    base used for URL construction.
    """

    def __init__(self, root: str, dynamic_root: str = ""):
        self.root = root
        self.dynamic_root = dynamic_root

    def absolute(self, relative_path: str) -> str:
        return self.root.rstrip("/") + relative_path

    def relative(self, absolute_path: str) -> str:
        return subtract_path(absolute_path, self.root)

    def dynamic(self, relative_path: str) -> str:
        return clean_path(self.dynamic_root + "/" + relative_path)

    def is_root(self, absolute_path: str, root: Optional[str] = None) -> bool:
        root = self.root if root is None else root
        return root.rstrip("/") == absolute_path.rstrip("/")

    def is_inside_root(self, absolute_path: str) -> bool:
        return absolute_path.startswith(self.root) or absolute_path.rstrip("/") == self.root.rstrip("/")
