"""
Tests for GGUFReader and the top-level entry points.

These run whole containers through detection, decoding, payload location and
graph assembly.
"""

import dataclasses
import struct

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from create_demo_gguf import build_gguf, create_demo_gguf, encode_header
from gguf_graph import (
    ByteSource,
    GGMLType,
    GGUFFileError,
    GGUFInvalidMagicError,
    GGUFInvalidTypeError,
    GGUFParseError,
    GGUFQuantizationError,
    GGUFReader,
    GGUFTensorNameError,
    GGUFTruncatedError,
    GGUFValueType,
    GGUFVersionError,
    ModelFactory,
    ReaderConfig,
    decode,
    open_model,
)


SIX_FLOATS = struct.pack('<6f', 1.0, 2.0, 3.0, 4.0, 5.0, 6.0)


@pytest.fixture
def demo_path(tmp_path):
    path = tmp_path / 'demo.gguf'
    create_demo_gguf(str(path))
    return path


# ============================================================================
# Exceptions
# ============================================================================

@pytest.mark.parametrize('error', [
    GGUFInvalidMagicError,
    GGUFVersionError,
    GGUFParseError,
    GGUFTruncatedError,
    GGUFInvalidTypeError,
    GGUFQuantizationError,
    GGUFTensorNameError,
])
def test_exception_hierarchy(error):
    assert issubclass(error, GGUFFileError)
    assert issubclass(GGUFFileError, Exception)


# ============================================================================
# Round Trip
# ============================================================================

def test_minimal_container():
    content = build_gguf(
        [('general.architecture', GGUFValueType.STRING, 'test')],
        [('layer0.weight', [2, 3], GGMLType.F32, SIX_FLOATS)],
    )
    model = open_model(content)

    assert model.format == 'GGUF v3'
    assert list(model.layers) == ['layer0']
    weight = model.layers['layer0'].weights['weight']
    assert weight.dimensions == (2, 3)

    value = model.graphs[0].nodes[0].type.nodes[0].inputs[0].value[0]
    assert value.type.data_type == 'float32'
    assert value.type.shape.dimensions == (2, 3)
    assert value.quantization is None
    assert value.initializer.values == SIX_FLOATS
    assert value.initializer.to_numpy().size == 6


@pytest.mark.parametrize('version', [2, 3])
def test_supported_versions(version):
    content = build_gguf([], [('a.weight', [2], GGMLType.F32, b'\x00' * 8)], version=version)
    with GGUFReader(content) as reader:
        assert reader.get_version() == version
        assert reader.model.format == f'GGUF v{version}'


@pytest.mark.parametrize('version', [0, 1])
def test_old_versions_rejected(version):
    with pytest.raises(GGUFVersionError):
        open_model(encode_header(version, 0, 0))


def test_newer_version_parsed_with_warning(caplog):
    content = build_gguf([], [], version=4)
    with caplog.at_level('WARNING'):
        model = open_model(content)
    assert model.format == 'GGUF v4'
    assert 'newer than 3' in caplog.text


def test_unknown_quantization_type():
    content = build_gguf([], [('a.weight', [32], 4, b'\x00' * 32)])
    with pytest.raises(GGUFQuantizationError) as exc_info:
        open_model(content)
    assert exc_info.value.ggml_type == 4


def test_unknown_quantization_type_without_payload():
    content = build_gguf([], [('a.weight', [32], 4, b'\x00' * 32)], include_payload=False)
    with pytest.raises(GGUFQuantizationError):
        open_model(content)


def test_undotted_tensor_name():
    content = build_gguf([], [('output', [2], GGMLType.F32, b'\x00' * 8)])
    with pytest.raises(GGUFTensorNameError):
        open_model(content)


def test_duplicate_tensor_name():
    tensors = [('a.weight', [2], GGMLType.F32, b'\x00' * 8)] * 2
    with pytest.raises(GGUFParseError, match='Duplicate tensor name'):
        open_model(build_gguf([], tensors))


@pytest.mark.parametrize('content', [b'', b'GGU', b'GGML' + b'\x00' * 20, b'\x00' * 64])
def test_invalid_magic(content):
    with pytest.raises(GGUFInvalidMagicError):
        open_model(content)


def test_truncated_metadata():
    content = build_gguf([('general.name', GGUFValueType.STRING, 'truncated model')],
                         include_payload=False)
    with pytest.raises(GGUFTruncatedError):
        open_model(content[:-5])


def test_missing_payload_keeps_metadata():
    content = build_gguf(
        [('general.architecture', GGUFValueType.STRING, 'llama')],
        [('a.weight', [4], GGMLType.F32, b'\x00' * 16)],
        include_payload=False,
    )
    with GGUFReader(content) as reader:
        assert reader.list_tensors() == ['a.weight']
        assert reader.get_tensor_info('a.weight').data is None
        with pytest.raises(GGUFParseError):
            reader.get_tensor_data('a.weight')


@settings(max_examples=25, suppress_health_check=[HealthCheck.too_slow])
@given(
    names=st.lists(
        st.from_regex(r'[a-z]{1,4}(\.[a-z0-9]{1,3}){1,3}', fullmatch=True),
        min_size=1, max_size=6, unique=True,
    ),
)
def test_property_parse_is_deterministic(names):
    """Parsing the same bytes twice yields equal models."""
    tensors = [(name, [2], GGMLType.F32, struct.pack('<2f', i, -i)) for i, name in enumerate(names)]
    content = build_gguf([('general.architecture', GGUFValueType.STRING, 'x')], tensors)
    first = open_model(content)
    second = open_model(content)
    assert first == second
    assert sum(len(layer.weights) for layer in first.layers.values()) == len(names)


# ============================================================================
# Files and Views
# ============================================================================

def test_demo_file(demo_path):
    with GGUFReader(demo_path) as reader:
        model = reader.model
        assert model.name == 'Demo Model v1.0'
        assert model.metadata['author'] == 'gguf-graph'
        assert reader.get_tensor_count() == 10
        assert reader.get_metadata_value('llama.block_count') == 2

    root, tokenizer = model.graphs[0].nodes
    assert root.type_name == 'llama'
    assert tokenizer.type_name == 'tokenizer'
    tokens = dict((a.name, a.value) for a in tokenizer.attributes)['ggml.tokens']
    assert tokens == ['<unk>', '<s>', '</s>', 'hello']
    assert [node.name for node in root.type.nodes] == ['token_embd', 'output_norm', 'blk']


def test_views_remain_valid_after_close(demo_path):
    reader = GGUFReader(str(demo_path))
    reader.read()
    info = reader.get_tensor_info('blk.1.attn_q.weight')
    assert info.byte_length == 64 * 64 * 18 // 32
    assert reader.get_tensor_data('blk.1.attn_q.weight') == b'\x00' * info.byte_length
    assert len(reader.get_tensor_data('token_embd.weight')) == 64 * 4 * 4


def test_buffer_views_after_close():
    buffer = bytearray(build_gguf([], [('a.weight', [6], GGMLType.F32, SIX_FLOATS)]))
    source = ByteSource(buffer, name='buffer.gguf')
    model = open_model(source)
    assert source.closed
    tensor = model.layers['a'].weights['weight']
    assert tensor.data.source_name == 'buffer.gguf'
    assert tensor.data.tobytes() == SIX_FLOATS


def test_missing_file(tmp_path):
    missing = tmp_path / 'missing.gguf'
    with pytest.raises(GGUFFileError, match='File not found'):
        GGUFReader(str(missing)).read()


def test_source_closed_after_failure():
    source = ByteSource(b'NOPE' + b'\x00' * 20)
    with pytest.raises(GGUFInvalidMagicError):
        open_model(source)
    assert source.closed


def test_source_returned_to_start_offset():
    content = build_gguf([], [('a.weight', [6], GGMLType.F32, SIX_FLOATS)])
    source = ByteSource(b'\x00' * 32 + content)
    source.seek(32)
    model = open_model(source)
    assert source.position == 32
    assert model.layers['a'].weights['weight'].data.tobytes() == SIX_FLOATS


def test_source_returned_to_start_offset_after_failure():
    source = ByteSource(b'\x00' * 8 + b'NOPE' + b'\x00' * 20)
    source.seek(8)
    with pytest.raises(GGUFInvalidMagicError):
        open_model(source)
    assert source.position == 8


def test_model_is_read_only():
    content = build_gguf(
        [('general.author', GGUFValueType.STRING, 'x'),
         ('general.architecture', GGUFValueType.STRING, 'llama'),
         ('llama.block_count', GGUFValueType.UINT32, 1)],
        [('a.weight', [2], GGMLType.F32, b'\x00' * 8)],
    )
    model = open_model(content)
    with pytest.raises(TypeError):
        model.metadata['injected'] = 1
    with pytest.raises(TypeError):
        model.layers['b'] = model.layers['a']
    with pytest.raises(TypeError):
        model.layers['a'].weights['bias'] = None
    with pytest.raises(TypeError):
        del model.layers['a'].weights['weight']
    with pytest.raises(dataclasses.FrozenInstanceError):
        model.name = 'renamed'
    assert model.metadata == {'author': 'x'}
    assert list(model.layers['a'].weights) == ['weight']


def test_failed_read_publishes_nothing():
    reader = GGUFReader(encode_header(3, 1, 0))
    with pytest.raises(GGUFTruncatedError):
        reader.read()
    assert reader.model is None
    assert reader.get_metadata() == {}
    assert reader.get_version() == 0


# ============================================================================
# Accessors
# ============================================================================

def test_accessors():
    content = build_gguf(
        [
            ('general.architecture', GGUFValueType.STRING, 'llama'),
            ('llama.context_length', GGUFValueType.UINT32, 4096),
        ],
        [
            ('b.weight', [6], GGMLType.F32, SIX_FLOATS),
            ('a.weight', [2], GGMLType.F16, b'\x00\x3c\x00\x40'),
        ],
    )
    reader = GGUFReader(content)
    assert reader.name == '<memory>'
    reader.read()

    assert reader.get_metadata() == {'general.architecture': 'llama', 'llama.context_length': 4096}
    assert reader.get_metadata_value('llama.context_length') == 4096
    with pytest.raises(KeyError):
        reader.get_metadata_value('missing')

    assert reader.list_tensors() == ['b.weight', 'a.weight']
    assert reader.get_tensor_info('a.weight').ggml_type == GGMLType.F16
    assert reader.get_tensor_data('b.weight') == SIX_FLOATS
    with pytest.raises(KeyError, match='not found'):
        reader.get_tensor_info('c.weight')


def test_decode_reports_alignment_and_payload_base():
    content = build_gguf(
        [('general.alignment', GGUFValueType.UINT32, 64)],
        [('a.weight', [2], GGMLType.F32, b'\x00' * 8)],
    )
    decoded = decode(ByteSource(content))
    assert decoded.alignment == 64
    assert decoded.payload_base % 64 == 0
    assert decoded.tensors[0].data.offset == decoded.payload_base


def test_reader_config_nest_layers():
    tensors = [(f'blk.{i}.{p}.weight', [2], GGMLType.F32, b'\x00' * 8)
               for i in range(2) for p in ('q', 'k')]
    content = build_gguf([], tensors)
    nested = open_model(content)
    flat = open_model(content, ReaderConfig(nest_layers=False))
    assert [node.name for node in nested.graphs[0].nodes[0].type.nodes] == ['blk']
    assert len(flat.graphs[0].nodes[0].type.nodes) == 4


def test_reader_config_validation():
    with pytest.raises(ValueError):
        ReaderConfig(default_alignment=0)
    with pytest.raises(ValueError):
        ReaderConfig(max_string_length=-1)


# ============================================================================
# ModelFactory
# ============================================================================

def test_factory_match(demo_path, tmp_path):
    factory = ModelFactory()
    assert factory.match(str(demo_path))
    assert factory.match(build_gguf())
    assert not factory.match(b'')
    assert not factory.match(b'GGML')
    assert not factory.match(str(tmp_path / 'missing.gguf'))
    assert not factory.match(object())


def test_factory_match_leaves_source_open():
    source = ByteSource(build_gguf())
    assert ModelFactory().match(source)
    assert not source.closed
    assert source.position == 0


def test_factory_open(demo_path):
    model = ModelFactory().open(demo_path)
    assert model.format == 'GGUF v3'
    assert len(model.layers) == 10
