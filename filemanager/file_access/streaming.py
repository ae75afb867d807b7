"""
Byte-range parsing and bounded-chunk streaming.
"""
import re
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Dict, Iterator, Optional

from filemanager.file_access.exceptions import RangeNotSatisfiableError

# Chunk size for inline preview and media streaming
STREAM_CHUNK_SIZE = 8 * 1024
# Chunk size for full downloads
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

_RANGE_RE = re.compile(r"bytes=(\d+)-(\d+)?")


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte range within a resource of ``total_size`` bytes."""
    start: int
    end: int
    total_size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total_size}"


def parse_range(header: Optional[str], total_size: int) -> Optional[ByteRange]:
    """
    Parse a ``bytes=start-end`` or ``bytes=start-`` header.

    Returns None when no header is given. Raises RangeNotSatisfiableError
    when the header is unparsable, start > end, or start is beyond the end
    of the resource. An end past the resource is clamped to the last byte.
    """
    if not header:
        return None
    match = _RANGE_RE.search(header)
    if not match:
        raise RangeNotSatisfiableError(total_size, header)
    start = int(match.group(1))
    if match.group(2) is not None:
        end = int(match.group(2))
        if start > end:
            raise RangeNotSatisfiableError(total_size, header)
    else:
        end = total_size - 1
    if start >= total_size:
        raise RangeNotSatisfiableError(total_size, header)
    return ByteRange(start=start, end=min(end, total_size - 1), total_size=total_size)


def iter_chunks(handle: BinaryIO, length: int, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield at most ``length`` bytes from ``handle`` in bounded chunks."""
    position = 0
    while position < length:
        chunk = handle.read(min(length - position, chunk_size))
        if not chunk:
            break
        position += len(chunk)
        yield chunk


@dataclass
class FileStream:
    """
    Lazily produced file content plus the headers a transport layer needs.

    ``chunks`` is consumed once; ``on_close`` releases backend resources.
    """
    chunks: Iterator[bytes]
    total_size: int
    mime_type: str = "application/octet-stream"
    filename: Optional[str] = None
    byte_range: Optional[ByteRange] = None
    on_close: Optional[Callable[[], None]] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return self.byte_range is not None

    @property
    def status_code(self) -> int:
        return 206 if self.partial else 200

    @property
    def content_length(self) -> int:
        return self.byte_range.length if self.byte_range else self.total_size

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": self.mime_type,
            "Content-Transfer-Encoding": "binary",
            "Content-Length": str(self.content_length),
        }
        if self.byte_range:
            headers["Content-Range"] = self.byte_range.content_range
            headers["Accept-Ranges"] = "bytes"
        if self.filename:
            headers["Content-Disposition"] = f'attachment; filename="{self.filename}"'
        headers.update(self.extra_headers)
        return headers

    def __iter__(self) -> Iterator[bytes]:
        try:
            yield from self.chunks
        finally:
            self.close()

    def read(self) -> bytes:
        return b"".join(self)

    def close(self) -> None:
        if self.on_close is not None:
            callback, self.on_close = self.on_close, None
            callback()
