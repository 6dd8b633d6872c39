"""
Tensor payload location.

After the descriptor table the cursor is padded up to the container's
alignment; that position is the payload base. Each tensor's bytes live at
payload base + its relative offset and are exposed as a lazy view.
"""

import dataclasses
import logging
from typing import Any, Dict, List, Sequence, Tuple

from . import quantization
from .config import DEFAULT_CONFIG, ReaderConfig
from .errors import GGUFParseError
from .header import MetadataEntry, TensorDescriptor
from .source import BaseSource

logger = logging.getLogger(__name__)

ALIGNMENT_KEY = 'general.alignment'


def aligned(position: int, alignment: int) -> int:
    """First multiple of alignment at or after position."""
    pad = position % alignment
    if pad:
        return position + alignment - pad
    return position


class TensorDataLocator:

    def __init__(self, source: BaseSource, config: ReaderConfig = DEFAULT_CONFIG):
        self.source = source
        self.config = config

    def alignment(self, metadata: Sequence[MetadataEntry]) -> int:
        """
        Payload alignment declared by the metadata, or the configured default.

        Raises:
            GGUFParseError: If 'general.alignment' isn't a non-negative integer
        """
        values: Dict[str, Any] = {entry.name: entry.value for entry in metadata}
        value = values.get(ALIGNMENT_KEY)
        if value is None or value == 0:
            return self.config.default_alignment
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise GGUFParseError(
                f"Invalid {ALIGNMENT_KEY} value {value!r} in file '{self.source.name}'"
            )
        return value

    def locate(self, metadata: Sequence[MetadataEntry],
               tensors: Sequence[TensorDescriptor]) -> Tuple[int, int, List[TensorDescriptor]]:
        """
        Pad to the payload section and resolve every tensor's byte range.

        Must be called with the cursor at the end of the descriptor table.
        Tensors are visited in descriptor order with an explicit seek each,
        since relative offsets need not be increasing.

        Returns:
            (alignment, payload_base, descriptors) where descriptors carry
            byte_length and data when the payload section is present

        Raises:
            GGUFQuantizationError: If a tensor type is missing from the registry
            GGUFTruncatedError: If a tensor's range runs past the end of the source
        """
        alignment = self.alignment(metadata)
        payload_base = aligned(self.source.position, alignment)
        self.source.seek(payload_base)
        logger.debug("Tensor payload of '%s' starts at %d (alignment %d)",
                     self.source.name, payload_base, alignment)

        if payload_base >= self.source.length:
            if tensors:
                logger.warning("'%s' ends before its tensor payload at %d; "
                               "tensor data will not be available",
                               self.source.name, payload_base)
            return alignment, payload_base, list(tensors)

        resolved = []
        for tensor in tensors:
            resolved.append(self._resolve(tensor, payload_base))
        return alignment, payload_base, resolved

    def _resolve(self, tensor: TensorDescriptor, payload_base: int) -> TensorDescriptor:
        length = quantization.byte_length(tensor.n_elements, tensor.ggml_type)
        self.source.seek(payload_base + tensor.offset)
        data = self.source.slice(length)
        return dataclasses.replace(tensor, byte_length=length, data=data)

