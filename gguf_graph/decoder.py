"""
Typed little-endian value decoding for GGUF metadata.

BinaryDecoder reads fixed-width scalars, length-prefixed strings and
recursively typed arrays from a byte source. The set of value types is
closed: any type code outside GGUFValueType is a hard failure.
"""

import struct
from typing import Any, Callable, Dict, List, Tuple

from .config import DEFAULT_CONFIG, ReaderConfig
from .errors import GGUFInvalidTypeError, GGUFParseError
from .source import BaseSource


# ============================================================================
# Type Enumerations
# ============================================================================

class GGUFValueType:
    """Metadata value types in GGUF format."""
    UINT8 = 0
    INT8 = 1
    UINT16 = 2
    INT16 = 3
    UINT32 = 4
    INT32 = 5
    FLOAT32 = 6
    BOOL = 7
    STRING = 8
    ARRAY = 9
    UINT64 = 10
    INT64 = 11
    FLOAT64 = 12


# Maps scalar value types to (struct_format, size_in_bytes)
SCALAR_FORMATS: Dict[int, Tuple[str, int]] = {
    GGUFValueType.UINT8: ('<B', 1),
    GGUFValueType.INT8: ('<b', 1),
    GGUFValueType.UINT16: ('<H', 2),
    GGUFValueType.INT16: ('<h', 2),
    GGUFValueType.UINT32: ('<I', 4),
    GGUFValueType.INT32: ('<i', 4),
    GGUFValueType.UINT64: ('<Q', 8),
    GGUFValueType.INT64: ('<q', 8),
    GGUFValueType.FLOAT32: ('<f', 4),
    GGUFValueType.FLOAT64: ('<d', 8),
    GGUFValueType.BOOL: ('<B', 1),
}

# Smallest encoding of one element, used to bound declared array counts.
# A string is at least its u64 length; an array at least its u32 type + u64 count.
MIN_ELEMENT_SIZES: Dict[int, int] = {
    **{value_type: size for value_type, (_, size) in SCALAR_FORMATS.items()},
    GGUFValueType.STRING: 8,
    GGUFValueType.ARRAY: 12,
}


def value_type_name(value_type: int) -> str:
    for name, code in vars(GGUFValueType).items():
        if name.isupper() and code == value_type:
            return name
    return str(value_type)


# Field descriptions for truncation messages, e.g. "uint32 value"
SCALAR_LABELS: Dict[int, str] = {
    value_type: f"{value_type_name(value_type).lower()} value" for value_type in SCALAR_FORMATS
}


# ============================================================================
# BinaryDecoder
# ============================================================================

class BinaryDecoder:
    """
    Decoder for the primitive encodings used by GGUF.

    Usage:
        decoder = BinaryDecoder(ByteSource(data))
        name = decoder.string()
        value = decoder.value(decoder.u32())
    """

    def __init__(self, source: BaseSource, config: ReaderConfig = DEFAULT_CONFIG):
        self.source = source
        self.config = config
        self._dispatch: Dict[int, Callable[[], Any]] = {
            GGUFValueType.UINT8: self.u8,
            GGUFValueType.INT8: self.i8,
            GGUFValueType.UINT16: self.u16,
            GGUFValueType.INT16: self.i16,
            GGUFValueType.UINT32: self.u32,
            GGUFValueType.INT32: self.i32,
            GGUFValueType.UINT64: self.u64,
            GGUFValueType.INT64: self.i64,
            GGUFValueType.FLOAT32: self.f32,
            GGUFValueType.FLOAT64: self.f64,
            GGUFValueType.BOOL: self.boolean,
            GGUFValueType.STRING: self.string,
            GGUFValueType.ARRAY: self.array,
        }

    @property
    def position(self) -> int:
        return self.source.position

    def _unpack(self, value_type: int) -> Any:
        fmt, size = SCALAR_FORMATS[value_type]
        data = self.source.read(size, what=SCALAR_LABELS[value_type])
        return struct.unpack(fmt, data)[0]

    def u8(self) -> int:
        return self._unpack(GGUFValueType.UINT8)

    def i8(self) -> int:
        return self._unpack(GGUFValueType.INT8)

    def u16(self) -> int:
        return self._unpack(GGUFValueType.UINT16)

    def i16(self) -> int:
        return self._unpack(GGUFValueType.INT16)

    def u32(self) -> int:
        return self._unpack(GGUFValueType.UINT32)

    def i32(self) -> int:
        return self._unpack(GGUFValueType.INT32)

    def u64(self) -> int:
        return self._unpack(GGUFValueType.UINT64)

    def i64(self) -> int:
        return self._unpack(GGUFValueType.INT64)

    def f32(self) -> float:
        return self._unpack(GGUFValueType.FLOAT32)

    def f64(self) -> float:
        return self._unpack(GGUFValueType.FLOAT64)

    def boolean(self) -> bool:
        return self._unpack(GGUFValueType.BOOL) != 0

    def string(self) -> str:
        """
        Read a length-prefixed UTF-8 string.

        GGUF strings are encoded as:
        - uint64: length of the string in bytes
        - bytes: UTF-8 encoded string data

        Raises:
            GGUFTruncatedError: If the source ends before the string is fully read
            GGUFParseError: If the length exceeds the configured maximum or the
                bytes aren't valid UTF-8
        """
        position = self.position
        length = self.u64()

        limit = self.config.max_string_length
        if length > limit:
            raise GGUFParseError(
                f"Invalid string length in file '{self.source.name}' at position {position}: "
                f"length {length} exceeds maximum allowed length {limit}"
            )
        if length == 0:
            return ""

        data = self.source.read(length, what='string data')
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise GGUFParseError(
                f"Invalid UTF-8 string in file '{self.source.name}' at position {position}: {e}"
            ) from e

    def array(self) -> List[Any]:
        """
        Read an array value.

        GGUF arrays are encoded as:
        - uint32: element type code
        - uint64: number of elements
        - elements: values of the element type, which may itself be ARRAY

        Raises:
            GGUFInvalidTypeError: If the element type is not a valid GGUF type
            GGUFParseError: If the declared count can't fit in the remaining bytes
        """
        position = self.position
        element_type = self.u32()
        count = self.u64()

        if element_type not in self._dispatch:
            raise self._invalid_type(element_type, position)

        needed = count * MIN_ELEMENT_SIZES[element_type]
        if needed > self.source.remaining:
            raise GGUFParseError(
                f"Invalid array length in file '{self.source.name}' at position {position}: "
                f"{count} elements of type {value_type_name(element_type)} need at least "
                f"{needed} bytes, only {self.source.remaining} bytes remaining"
            )

        read = self._dispatch[element_type]
        return [read() for _ in range(count)]

    def value(self, value_type: int) -> Any:
        """
        Read a single value of the given type.

        Returns:
            int for integer types, float for FLOAT32/FLOAT64, bool for BOOL,
            str for STRING and a (possibly nested) list for ARRAY

        Raises:
            GGUFInvalidTypeError: If value_type is not a valid GGUF type
        """
        read = self._dispatch.get(value_type)
        if read is None:
            raise self._invalid_type(value_type, self.position)
        return read()

    def _invalid_type(self, value_type: int, position: int) -> GGUFInvalidTypeError:
        return GGUFInvalidTypeError(
            f"Invalid metadata type in file '{self.source.name}' at position {position}: "
            f"type code {value_type} is not a valid GGUF type",
            value_type=value_type,
        )
