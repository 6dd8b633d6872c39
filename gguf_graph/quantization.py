"""
Tensor data types and their packed sizes.

Block-quantized types store a fixed number of elements per block; byte
lengths are computed from block size and bytes per block, never by unpacking.
"""

from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional

from .errors import GGUFQuantizationError


# ============================================================================
# Type Enumerations
# ============================================================================

class GGMLType:
    """Tensor data types in GGML/GGUF format."""
    F32 = 0
    F16 = 1
    Q4_0 = 2
    Q4_1 = 3
    Q5_0 = 6
    Q5_1 = 7
    Q8_0 = 8
    Q8_1 = 9
    Q2_K = 10
    Q3_K = 11
    Q4_K = 12
    Q5_K = 13
    Q6_K = 14
    Q8_K = 15
    I8 = 16
    I16 = 17
    I32 = 18


class QuantType(NamedTuple):
    block_size: int
    type_size: int
    dtype: str


QK_K = 256

# block_size: number of elements per block
# type_size: bytes per block
# dtype: element kind once unpacked, 'packed' for block-quantized data
QUANT_TYPES: Mapping[int, QuantType] = MappingProxyType({
    GGMLType.F32: QuantType(1, 4, 'float32'),
    GGMLType.F16: QuantType(1, 2, 'float16'),

    GGMLType.Q4_0: QuantType(32, 2 + 16, 'packed'),
    GGMLType.Q4_1: QuantType(32, 2 + 2 + 16, 'packed'),
    GGMLType.Q5_0: QuantType(32, 2 + 4 + 16, 'packed'),
    GGMLType.Q5_1: QuantType(32, 2 + 2 + 4 + 16, 'packed'),
    GGMLType.Q8_0: QuantType(32, 2 + 32, 'packed'),
    GGMLType.Q8_1: QuantType(32, 4 + 4 + 32, 'packed'),

    GGMLType.Q2_K: QuantType(QK_K, 2 + 2 + QK_K // 16 + QK_K // 4, 'packed'),
    GGMLType.Q3_K: QuantType(QK_K, 2 + QK_K // 4 + QK_K // 8 + 12, 'packed'),
    GGMLType.Q4_K: QuantType(QK_K, 2 + 2 + QK_K // 2 + 12, 'packed'),
    GGMLType.Q5_K: QuantType(QK_K, 2 + 2 + QK_K // 2 + QK_K // 8 + 12, 'packed'),
    GGMLType.Q6_K: QuantType(QK_K, 2 + QK_K // 2 + QK_K // 4 + QK_K // 16, 'packed'),
    GGMLType.Q8_K: QuantType(QK_K, 4 + QK_K + QK_K // 8, 'packed'),

    GGMLType.I8: QuantType(1, 1, 'int8'),
    GGMLType.I16: QuantType(1, 2, 'int16'),
    GGMLType.I32: QuantType(1, 4, 'int32'),
})

# Types whose bytes are a flat numeric array with no quantization label
UNQUANTIZED_TYPES = frozenset({GGMLType.F32, GGMLType.F16})

_TYPE_NAMES: Mapping[int, str] = MappingProxyType({
    code: name for name, code in vars(GGMLType).items() if name.isupper()
})


def lookup(ggml_type: int) -> QuantType:
    """
    Return the registry entry for a tensor type.

    Raises:
        GGUFQuantizationError: If the type code is not in the registry
    """
    try:
        return QUANT_TYPES[ggml_type]
    except KeyError:
        raise GGUFQuantizationError(
            f"Unsupported tensor quantization type {ggml_type}",
            ggml_type=ggml_type,
        ) from None


def type_name(ggml_type: int) -> str:
    lookup(ggml_type)
    return _TYPE_NAMES[ggml_type]


def byte_length(n_elements: int, ggml_type: int) -> int:
    """
    Size in bytes of n_elements stored as ggml_type.

    Computed as floor(n_elements * type_size / block_size).
    """
    info = lookup(ggml_type)
    return n_elements * info.type_size // info.block_size


def quantization_label(ggml_type: int) -> Optional[str]:
    """
    Label for block-packed types, e.g. 'q4_k'.

    Returns None for F32 and F16, whose bytes are plain floats.
    """
    if ggml_type in UNQUANTIZED_TYPES:
        return None
    return type_name(ggml_type).lower()
