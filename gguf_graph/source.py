"""
Random-access byte sources and lazy tensor data views.

A source is the cursor used while decoding: it is acquired at the start of a
parse, scanned forward through the header, metadata and tensor descriptors,
then seeked per tensor, and finally closed. Tensor data views created through
slice() do not depend on that cursor. Each view holds its own handle on the
original resource (the caller's buffer, or the file path), so it can still be
resolved after the source has been closed.
"""

import os
from typing import Any, Union

from .errors import GGUFFileError, GGUFTruncatedError


PathType = Union[str, 'os.PathLike[str]']


# ============================================================================
# Lazy Data Views
# ============================================================================

class TensorData:
    """
    Lazy reference to a byte range of the original resource.

    Nothing is read until tobytes() or memoryview() is called. Two views are
    equal when they point at the same range of the same named resource.
    """

    def __init__(self, source_name: str, offset: int, length: int):
        self.source_name = source_name
        self.offset = offset
        self.length = length

    def tobytes(self) -> bytes:
        return bytes(self.memoryview())

    def memoryview(self) -> memoryview:
        raise NotImplementedError

    def __len__(self) -> int:
        return self.length

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, TensorData):
            return NotImplemented
        return (self.source_name, self.offset, self.length) == \
            (other.source_name, other.offset, other.length)

    def __hash__(self) -> int:
        return hash((self.source_name, self.offset, self.length))

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(source={self.source_name!r}, "
                f"offset={self.offset}, length={self.length})")


class BufferView(TensorData):
    """Zero-copy view into an in-memory buffer."""

    def __init__(self, buffer: Any, source_name: str, offset: int, length: int):
        super().__init__(source_name, offset, length)
        self._buffer = buffer

    def memoryview(self) -> memoryview:
        return memoryview(self._buffer).cast('B')[self.offset:self.offset + self.length]


class FileView(TensorData):
    """View into a file on disk; the file is re-opened each time the view is resolved."""

    def __init__(self, path: str, offset: int, length: int):
        super().__init__(path, offset, length)
        self.path = path

    def tobytes(self) -> bytes:
        with open(self.path, 'rb') as f:
            f.seek(self.offset)
            data = f.read(self.length)
        if len(data) < self.length:
            raise GGUFTruncatedError(
                f"Unexpected end of file '{self.path}' at position {self.offset}: "
                f"expected to read {self.length} bytes of tensor data, "
                f"only {len(data)} bytes available",
                position=self.offset,
            )
        return data

    def memoryview(self) -> memoryview:
        return memoryview(self.tobytes())


# ============================================================================
# Byte Sources
# ============================================================================

class BaseSource:
    """
    Cursor interface shared by in-memory and file sources.

    Subclasses provide _read_raw(), _view(), length, position and seek().
    Positions past the end are allowed; reading there raises GGUFTruncatedError.
    """

    name = '<source>'

    @property
    def length(self) -> int:
        raise NotImplementedError

    @property
    def position(self) -> int:
        raise NotImplementedError

    @property
    def remaining(self) -> int:
        return max(0, self.length - self.position)

    @property
    def closed(self) -> bool:
        return False

    def seek(self, position: int) -> None:
        raise NotImplementedError

    def skip(self, count: int) -> None:
        self.seek(self.position + count)

    def peek(self, count: int) -> bytes:
        """Return up to count bytes without moving the cursor."""
        position = self.position
        data = self._read_raw(count)
        self.seek(position)
        return data

    def read(self, count: int, what: str = 'data') -> bytes:
        """
        Read exactly count bytes and advance the cursor.

        Args:
            count: Number of bytes to read
            what: Description of the field being read, used in error messages

        Raises:
            GGUFTruncatedError: If fewer than count bytes remain
        """
        position = self.position
        data = self._read_raw(count)
        if len(data) < count:
            raise GGUFTruncatedError(
                f"Unexpected end of file '{self.name}' at position {position}: "
                f"expected to read {count} bytes for {what}, only {len(data)} bytes available",
                position=position,
            )
        return data

    def slice(self, count: int) -> TensorData:
        """
        Return a lazy view of the next count bytes and advance past them.

        Raises:
            GGUFTruncatedError: If the range runs past the end of the source
        """
        position = self.position
        if position + count > self.length:
            raise GGUFTruncatedError(
                f"Unexpected end of file '{self.name}' at position {position}: "
                f"expected {count} bytes of tensor data, only {self.remaining} bytes available",
                position=position,
            )
        view = self._view(position, count)
        self.seek(position + count)
        return view

    def close(self) -> None:
        pass

    def _read_raw(self, count: int) -> bytes:
        raise NotImplementedError

    def _view(self, offset: int, length: int) -> TensorData:
        raise NotImplementedError

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return None


class ByteSource(BaseSource):
    """
    Source over any object supporting the buffer protocol (bytes, bytearray,
    memoryview, mmap).

    Views returned by slice() keep a reference to the original buffer object,
    not to this cursor.
    """

    def __init__(self, buffer: Any, name: str = '<memory>'):
        self.name = name
        self._buffer = buffer
        self._data = memoryview(buffer).cast('B')
        self._position = 0

    @property
    def length(self) -> int:
        return len(self._data)

    @property
    def position(self) -> int:
        return self._position

    @property
    def closed(self) -> bool:
        return self._data is None

    def seek(self, position: int) -> None:
        if position < 0:
            raise ValueError(f"Negative seek position {position}")
        self._position = position

    def close(self) -> None:
        if self._data is not None:
            self._data.release()
            self._data = None

    def _read_raw(self, count: int) -> bytes:
        if self._data is None:
            raise GGUFFileError(f"Source '{self.name}' is closed")
        start = min(self._position, len(self._data))
        data = self._data[start:start + count].tobytes()
        self._position += len(data)
        return data

    def _view(self, offset: int, length: int) -> TensorData:
        return BufferView(self._buffer, self.name, offset, length)


class FileSource(BaseSource):
    """
    Source over a file opened in binary read mode.

    Raises:
        FileNotFoundError: If the path doesn't exist
    """

    def __init__(self, path: PathType):
        self.path = os.fspath(path)
        self.name = self.path
        self.file = open(self.path, 'rb')
        self._length = os.fstat(self.file.fileno()).st_size

    @property
    def length(self) -> int:
        return self._length

    @property
    def position(self) -> int:
        return self.file.tell()

    @property
    def closed(self) -> bool:
        return self.file.closed

    def seek(self, position: int) -> None:
        if position < 0:
            raise ValueError(f"Negative seek position {position}")
        self.file.seek(position)

    def close(self) -> None:
        self.file.close()

    def _read_raw(self, count: int) -> bytes:
        return self.file.read(count)

    def _view(self, offset: int, length: int) -> TensorData:
        return FileView(self.path, offset, length)


def open_source(target: Any, name: str = '<memory>') -> BaseSource:
    """
    Wrap target in a byte source.

    Args:
        target: An existing source, a filesystem path, or a buffer-protocol object
        name: Name used in error messages for in-memory buffers

    Returns:
        A source positioned at offset 0 (existing sources are returned as-is)
    """
    if isinstance(target, BaseSource):
        return target
    if isinstance(target, (str, os.PathLike)):
        return FileSource(target)
    return ByteSource(target, name=name)
