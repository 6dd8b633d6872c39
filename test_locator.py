"""
Tests for TensorDataLocator: alignment, payload base and tensor byte ranges.
"""

import struct

import pytest
from hypothesis import given, strategies as st

from create_demo_gguf import build_gguf, encode_header, encode_tensor_info, tensor_size
from gguf_graph import (
    BinaryDecoder,
    ByteSource,
    GGMLType,
    GGUFParseError,
    GGUFQuantizationError,
    GGUFTruncatedError,
    GGUFValueType,
    HeaderParser,
    MetadataEntry,
    QUANT_TYPES,
    ReaderConfig,
    TensorDataLocator,
)
from gguf_graph.locator import aligned


def locate(content: bytes, config: ReaderConfig = ReaderConfig()):
    source = ByteSource(content, name='test.gguf')
    _, metadata, tensors = HeaderParser(BinaryDecoder(source, config)).parse()
    return TensorDataLocator(source, config).locate(metadata, tensors)


def alignment_entry(alignment: int):
    return ('general.alignment', GGUFValueType.UINT32, alignment)


# ============================================================================
# Alignment
# ============================================================================

@pytest.mark.parametrize('position, alignment, expected', [
    (0, 32, 0),
    (1, 32, 32),
    (32, 32, 32),
    (33, 32, 64),
    (100, 1, 100),
    (100, 64, 128),
])
def test_aligned(position, alignment, expected):
    assert aligned(position, alignment) == expected


def test_alignment_default():
    locator = TensorDataLocator(ByteSource(b''))
    assert locator.alignment([]) == 32


def test_alignment_from_metadata():
    locator = TensorDataLocator(ByteSource(b''))
    assert locator.alignment([MetadataEntry('general.alignment', GGUFValueType.UINT32, 64)]) == 64


def test_alignment_zero_falls_back_to_default():
    locator = TensorDataLocator(ByteSource(b''), ReaderConfig(default_alignment=16))
    assert locator.alignment([MetadataEntry('general.alignment', GGUFValueType.UINT32, 0)]) == 16


@pytest.mark.parametrize('value', ['32', 1.5, True, -8])
def test_alignment_invalid(value):
    locator = TensorDataLocator(ByteSource(b''))
    with pytest.raises(GGUFParseError):
        locator.alignment([MetadataEntry('general.alignment', GGUFValueType.STRING, value)])


@given(
    alignment=st.sampled_from([1, 16, 32, 64]),
    name_length=st.integers(min_value=1, max_value=40),
)
def test_property_payload_base_is_aligned(alignment, name_length):
    """Whatever the table length, the payload base lands on the alignment."""
    name = 'l.' + 'x' * name_length
    data = struct.pack('<2f', 1.0, 2.0)
    content = build_gguf([alignment_entry(alignment)], [(name, [2], GGMLType.F32, data)])
    _, payload_base, tensors = locate(content)
    assert payload_base % alignment == 0
    assert tensors[0].data.tobytes() == data


# ============================================================================
# Tensor Ranges
# ============================================================================

def test_locate_resolves_ranges():
    first = struct.pack('<6f', *range(6))
    second = b'\x01' * tensor_size([64], GGMLType.Q8_0)
    content = build_gguf(
        [alignment_entry(32)],
        [('a.weight', [2, 3], GGMLType.F32, first), ('b.weight', [64], GGMLType.Q8_0, second)],
    )
    alignment, payload_base, tensors = locate(content)
    assert alignment == 32
    assert tensors[0].byte_length == 24
    assert tensors[0].data.offset == payload_base
    assert tensors[0].data.tobytes() == first
    assert tensors[1].byte_length == 68
    assert tensors[1].data.offset == payload_base + 32
    assert tensors[1].data.tobytes() == second


def test_locate_non_monotonic_offsets():
    """Descriptors keep read order even when offsets run backwards."""
    first = b'\xaa' * 8
    second = b'\xbb' * 8
    content = build_gguf(
        [],
        [('a.weight', [2], GGMLType.F32, first), ('b.weight', [2], GGMLType.F32, second)],
        offsets=[32, 0],
    )
    _, _, tensors = locate(content)
    assert [tensor.name for tensor in tensors] == ['a.weight', 'b.weight']
    assert tensors[0].data.tobytes() == first
    assert tensors[1].data.tobytes() == second


def test_locate_scalar_tensor():
    data = struct.pack('<f', 3.5)
    _, _, tensors = locate(build_gguf([], [('s.value', [], GGMLType.F32, data)]))
    assert tensors[0].byte_length == 4
    assert tensors[0].data.tobytes() == data


def test_locate_missing_payload_is_tolerated(caplog):
    """A container that ends at the descriptor table keeps metadata-only tensors."""
    content = build_gguf([], [('a.weight', [4], GGMLType.F32, b'\x00' * 16)], include_payload=False)
    with caplog.at_level('WARNING', logger='gguf_graph.locator'):
        _, payload_base, tensors = locate(content)
    assert payload_base >= len(content)
    assert tensors[0].data is None
    assert tensors[0].byte_length is None
    assert 'tensor data will not be available' in caplog.text


def test_locate_tensor_past_end():
    content = build_gguf([], [('a.weight', [4], GGMLType.F32, b'\x00' * 16)])
    with pytest.raises(GGUFTruncatedError):
        locate(content[:-4])


def test_locate_unknown_quantization():
    content = encode_header(3, 1, 0) + encode_tensor_info('a.weight', [32], 4, 0)
    content += b'\x00' * (64 - len(content) % 32 + 64)
    with pytest.raises(GGUFQuantizationError) as exc_info:
        locate(content)
    assert exc_info.value.ggml_type == 4


# ============================================================================
# Per-Type Byte Lengths
# ============================================================================

@pytest.mark.parametrize('ggml_type', sorted(QUANT_TYPES))
def test_locate_every_registered_type(ggml_type):
    """Every registered type resolves to exactly one block's worth of bytes."""
    info = QUANT_TYPES[ggml_type]
    data = bytes(range(256)) * (info.type_size // 256 + 1)
    data = data[:info.type_size]
    content = build_gguf([], [('t.weight', [info.block_size], ggml_type, data)])
    _, _, tensors = locate(content)
    assert tensors[0].byte_length == info.type_size
    assert tensors[0].data.tobytes() == data


@pytest.mark.parametrize('dims', [[8], [4, 2], [2, 2, 2], [1, 2, 2, 2]])
def test_locate_dimension_counts(dims):
    data = bytes(range(8 * 4))
    _, _, tensors = locate(build_gguf([], [('t.weight', dims, GGMLType.I32, data)]))
    assert tensors[0].dimensions == tuple(dims)
    assert tensors[0].data.tobytes() == data
