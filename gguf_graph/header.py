"""
Header, metadata and tensor-descriptor parsing.

The GGUF layout read here:
- 4 bytes: magic number ("GGUF" in ASCII)
- uint32: version
- uint64: tensor_count
- uint64: metadata_kv_count
- metadata_kv_count x (string key, uint32 value type, value)
- tensor_count x (string name, uint32 n_dims, uint64[n_dims] dims,
  uint32 type, uint64 offset)
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from .decoder import BinaryDecoder
from .detector import GGUF_MAGIC
from .errors import GGUFInvalidMagicError, GGUFInvalidTypeError, GGUFParseError, GGUFVersionError
from .source import TensorData

logger = logging.getLogger(__name__)

MIN_VERSION = 2
LATEST_VERSION = 3


# ============================================================================
# Parsed Records
# ============================================================================

@dataclass(frozen=True)
class Header:
    magic: bytes
    version: int
    tensor_count: int
    metadata_count: int


@dataclass(frozen=True)
class MetadataEntry:
    name: str
    value_type: int
    value: Any


@dataclass(frozen=True)
class TensorDescriptor:
    """
    One entry of the tensor-info table.

    byte_length and data are filled in by the TensorDataLocator. data stays
    None when the container has no payload section.
    """
    name: str
    dimensions: Tuple[int, ...]
    ggml_type: int
    offset: int
    byte_length: Optional[int] = None
    data: Optional[TensorData] = None

    @property
    def n_elements(self) -> int:
        count = 1
        for dim in self.dimensions:
            count *= dim
        return count


# ============================================================================
# HeaderParser
# ============================================================================

class HeaderParser:
    """Sequential reader for everything that precedes the tensor payload."""

    def __init__(self, decoder: BinaryDecoder):
        self.decoder = decoder

    @property
    def _name(self) -> str:
        return self.decoder.source.name

    def read_header(self) -> Header:
        """
        Read and validate the fixed header.

        Raises:
            GGUFInvalidMagicError: If the magic number doesn't match GGUF format
            GGUFVersionError: If the version is older than 2
            GGUFTruncatedError: If the source ends before the header is fully read
        """
        source = self.decoder.source
        position = source.position

        magic = source.read(4, what='magic number')
        if magic != GGUF_MAGIC:
            raise GGUFInvalidMagicError(
                f"Invalid GGUF magic number in file '{self._name}' at position {position}: "
                f"expected {GGUF_MAGIC!r}, got {magic!r}",
                magic=magic,
            )

        version = self.decoder.u32()
        if version < MIN_VERSION:
            raise GGUFVersionError(
                f"Unsupported GGUF version {version} in file '{self._name}': "
                f"version {MIN_VERSION} or newer is required",
                version=version,
            )
        if version > LATEST_VERSION:
            logger.warning("GGUF version %d in '%s' is newer than %d; reading it as version %d",
                           version, self._name, LATEST_VERSION, LATEST_VERSION)

        tensor_count = self.decoder.u64()
        metadata_count = self.decoder.u64()
        logger.debug("GGUF v%d header: %d tensors, %d metadata entries",
                     version, tensor_count, metadata_count)

        return Header(
            magic=magic,
            version=version,
            tensor_count=tensor_count,
            metadata_count=metadata_count,
        )

    def read_metadata(self, count: int) -> List[MetadataEntry]:
        """
        Read count key/value entries in file order.

        Raises:
            GGUFInvalidTypeError: If an entry uses an invalid value type
            GGUFParseError: If a value can't be decoded
            GGUFTruncatedError: If the source ends before all entries are read
        """
        entries = []
        for _ in range(count):
            position = self.decoder.position
            name = self.decoder.string()
            value_type = self.decoder.u32()
            try:
                value = self.decoder.value(value_type)
            except GGUFInvalidTypeError as e:
                raise GGUFInvalidTypeError(
                    f"Invalid type for metadata key '{name}' in file '{self._name}' "
                    f"at position {position}: {e}",
                    value_type=e.value_type,
                ) from e
            except RecursionError as e:
                raise GGUFParseError(
                    f"Array nesting too deep for metadata key '{name}' in file '{self._name}' "
                    f"at position {position}"
                ) from e
            entries.append(MetadataEntry(name=name, value_type=value_type, value=value))
        return entries

    def read_tensor_infos(self, count: int) -> List[TensorDescriptor]:
        """
        Read count tensor descriptors in file order.

        Type codes aren't validated here; the locator and assembler reject
        codes missing from the quantization registry.
        """
        tensors = []
        for _ in range(count):
            name = self.decoder.string()
            n_dims = self.decoder.u32()
            dimensions = tuple(self.decoder.u64() for _ in range(n_dims))
            ggml_type = self.decoder.u32()
            offset = self.decoder.u64()
            tensors.append(TensorDescriptor(
                name=name,
                dimensions=dimensions,
                ggml_type=ggml_type,
                offset=offset,
            ))
        return tensors

    def parse(self) -> Tuple[Header, List[MetadataEntry], List[TensorDescriptor]]:
        """Read the header, then all metadata, then all tensor descriptors."""
        header = self.read_header()
        metadata = self.read_metadata(header.metadata_count)
        tensors = self.read_tensor_infos(header.tensor_count)
        return header, metadata, tensors
