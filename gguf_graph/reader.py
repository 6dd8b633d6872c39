"""
GGUF Reader - parse GGUF (GPT-Generated Unified Format) containers into a
model object graph.

This module ties the pieces together: it opens a byte source, checks the
signature, decodes header, metadata and tensor descriptors, locates tensor
payloads and assembles the Model.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .config import DEFAULT_CONFIG, ReaderConfig
from .decoder import BinaryDecoder
from .detector import matches
from .errors import GGUFFileError, GGUFInvalidMagicError, GGUFParseError
from .graph import GraphAssembler, Model
from .header import Header, HeaderParser, MetadataEntry, TensorDescriptor
from .locator import TensorDataLocator
from .source import BaseSource, open_source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GGUFContent:
    """Everything decoded from one container, before graph assembly."""
    format: str
    header: Header
    metadata: Tuple[MetadataEntry, ...]
    tensors: Tuple[TensorDescriptor, ...]
    alignment: int
    payload_base: int


def decode(source: BaseSource, config: ReaderConfig = DEFAULT_CONFIG) -> GGUFContent:
    """
    Decode header, metadata and tensor descriptors from source and locate
    tensor payloads.

    The source is read from its current position, which must be the start
    of the container.

    Raises:
        GGUFInvalidMagicError: If the source isn't a GGUF container
        GGUFVersionError: If the version is older than 2
        GGUFFileError: For any other structural failure
    """
    decoder = BinaryDecoder(source, config)
    header, metadata, tensors = HeaderParser(decoder).parse()
    names = set()
    for tensor in tensors:
        if tensor.name in names:
            raise GGUFParseError(f"Duplicate tensor name '{tensor.name}' in file '{source.name}'")
        names.add(tensor.name)
    alignment, payload_base, tensors = TensorDataLocator(source, config).locate(metadata, tensors)
    return GGUFContent(
        format=f"GGUF v{header.version}",
        header=header,
        metadata=tuple(metadata),
        tensors=tuple(tensors),
        alignment=alignment,
        payload_base=payload_base,
    )


class GGUFReader:
    """
    Reader for GGUF (GPT-Generated Unified Format) containers.

    The target may be a filesystem path, an in-memory buffer or an existing
    byte source. Entering the context parses the container; the underlying
    source is released before __enter__ returns, and tensor data views remain
    usable afterwards.

    Usage:
        with GGUFReader('model.gguf') as reader:
            model = reader.model
            metadata = reader.get_metadata()
            data = reader.get_tensor_data('token_embd.weight')
    """

    def __init__(self, target: Any, config: Optional[ReaderConfig] = None):
        """
        Initialize the GGUF reader.

        Args:
            target: Path, buffer or byte source holding the container
            config: Parse options, DEFAULT_CONFIG when omitted
        """
        self.target = target
        self.config = config or DEFAULT_CONFIG
        self.content: Optional[GGUFContent] = None
        self.model: Optional[Model] = None
        self.metadata: Dict[str, Any] = {}
        self._tensors: Dict[str, TensorDescriptor] = {}

    @property
    def name(self) -> str:
        if isinstance(self.target, BaseSource):
            return self.target.name
        if isinstance(self.target, (bytes, bytearray, memoryview)):
            return '<memory>'
        return str(self.target)

    def __enter__(self):
        self.read()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return None

    def read(self) -> Model:
        """
        Parse the container and build its Model.

        Results are published on the reader only when the whole parse
        succeeds.

        Raises:
            GGUFFileError: If the file doesn't exist or parsing fails
        """
        try:
            source = open_source(self.target)
        except FileNotFoundError:
            raise GGUFFileError(f"File not found: '{self.name}'") from None

        start = source.position
        try:
            if not matches(source):
                raise GGUFInvalidMagicError(
                    f"File '{source.name}' is not a GGUF container",
                    magic=source.peek(4),
                )
            content = decode(source, self.config)
            model = GraphAssembler(self.config).assemble(content.format, content.metadata, content.tensors)
        finally:
            if not source.closed:
                source.seek(start)
            source.close()

        self.content = content
        self.model = model
        self.metadata = {entry.name: entry.value for entry in content.metadata}
        self._tensors = {tensor.name: tensor for tensor in content.tensors}
        logger.debug("Parsed '%s': %d metadata entries, %d tensors, %d layers",
                     source.name, len(content.metadata), len(content.tensors), len(model.layers))
        return model

    def get_metadata(self) -> Dict[str, Any]:
        """Return all metadata as a dictionary."""
        return self.metadata

    def get_metadata_value(self, key: str) -> Any:
        """
        Return a specific metadata value by key.

        Raises:
            KeyError: If the key doesn't exist in metadata
        """
        return self.metadata[key]

    def list_tensors(self) -> List[str]:
        return list(self._tensors)

    def get_tensor_info(self, name: str) -> TensorDescriptor:
        """
        Return the descriptor (shape, type, offset, data view) of a tensor.

        Raises:
            KeyError: If the tensor name doesn't exist
        """
        try:
            return self._tensors[name]
        except KeyError:
            raise KeyError(f"Tensor '{name}' not found") from None

    def get_tensor_data(self, name: str) -> bytes:
        """
        Return raw tensor data as bytes.

        Raises:
            KeyError: If the tensor name doesn't exist
            GGUFParseError: If the container has no payload for the tensor
            GGUFTruncatedError: If the file shrank since it was parsed
        """
        info = self.get_tensor_info(name)
        if info.data is None:
            raise GGUFParseError(f"No data available for tensor '{name}' in file '{self.name}'")
        return info.data.tobytes()

    def get_tensor_count(self) -> int:
        return len(self._tensors)

    def get_version(self) -> int:
        if self.content is None:
            return 0
        return self.content.header.version


def open_model(target: Any, config: Optional[ReaderConfig] = None) -> Model:
    """Parse target (path, buffer or byte source) and return its Model."""
    return GGUFReader(target, config).read()


class ModelFactory:
    """Match-then-open entry point for callers handling several formats."""

    def __init__(self, config: Optional[ReaderConfig] = None):
        self.config = config or DEFAULT_CONFIG

    def match(self, target: Any) -> bool:
        """
        Return True if target looks like a GGUF container.

        Never raises for foreign or short input; a path that can't be opened
        doesn't match.
        """
        if isinstance(target, BaseSource):
            return matches(target)
        try:
            source = open_source(target)
        except (OSError, TypeError):
            return False
        with source:
            return matches(source)

    def open(self, target: Any) -> Model:
        return open_model(target, self.config)
