#!/usr/bin/env python3
"""
Create GGUF containers for tests and demos.

The encode_* helpers write the GGUF wire format directly with struct, and
build_gguf() assembles a complete container. Run as a script to write a small
llama-style demo file that `gguf-graph` can inspect.
"""

import struct
import sys
from typing import Any, List, Optional, Sequence, Tuple

from gguf_graph.decoder import SCALAR_FORMATS, GGUFValueType
from gguf_graph.quantization import QUANT_TYPES, GGMLType


GGUF_MAGIC = b'GGUF'

# (name, dims, ggml_type, data)
TensorSpec = Tuple[str, Sequence[int], int, bytes]


def encode_string(value: str) -> bytes:
    data = value.encode('utf-8')
    return struct.pack('<Q', len(data)) + data


def encode_value(value_type: int, value: Any) -> bytes:
    """
    Encode a metadata value.

    ARRAY values are given as (element_type, elements); elements of a nested
    ARRAY are themselves (element_type, elements) pairs.
    """
    if value_type == GGUFValueType.STRING:
        return encode_string(value)
    if value_type == GGUFValueType.ARRAY:
        element_type, elements = value
        result = struct.pack('<I', element_type) + struct.pack('<Q', len(elements))
        for element in elements:
            result += encode_value(element_type, element)
        return result
    fmt, _ = SCALAR_FORMATS[value_type]
    if value_type == GGUFValueType.BOOL:
        value = int(value)
    return struct.pack(fmt, value)


def encode_metadata(metadata: Sequence[Tuple[str, int, Any]]) -> bytes:
    result = b''
    for key, value_type, value in metadata:
        result += encode_string(key)
        result += struct.pack('<I', value_type)
        result += encode_value(value_type, value)
    return result


def encode_tensor_info(name: str, dims: Sequence[int], ggml_type: int, offset: int) -> bytes:
    result = encode_string(name)
    result += struct.pack('<I', len(dims))
    for dim in dims:
        result += struct.pack('<Q', dim)
    result += struct.pack('<I', ggml_type)
    result += struct.pack('<Q', offset)
    return result


def encode_header(version: int, tensor_count: int, metadata_count: int) -> bytes:
    return GGUF_MAGIC + struct.pack('<IQQ', version, tensor_count, metadata_count)


def pad_to(position: int, alignment: int) -> int:
    return (alignment - (position % alignment)) % alignment


def tensor_size(dims: Sequence[int], ggml_type: int) -> int:
    info = QUANT_TYPES[ggml_type]
    count = 1
    for dim in dims:
        count *= dim
    return count * info.type_size // info.block_size


def build_gguf(metadata: Sequence[Tuple[str, int, Any]] = (),
               tensors: Sequence[TensorSpec] = (),
               version: int = 3,
               offsets: Optional[Sequence[int]] = None,
               include_payload: bool = True) -> bytes:
    """
    Build a complete GGUF container.

    Tensor data is laid out in order, each tensor starting on the alignment
    boundary, unless explicit relative offsets are given. The alignment is
    taken from a 'general.alignment' metadata entry, 32 otherwise.

    Args:
        metadata: (key, value_type, value) entries
        tensors: (name, dims, ggml_type, data) entries
        version: Header version
        offsets: Relative offsets overriding the sequential layout
        include_payload: Stop after the descriptor table when False
    """
    alignment = 32
    for key, _, value in metadata:
        if key == 'general.alignment' and value:
            alignment = value

    if offsets is None:
        offsets = []
        current = 0
        for _, _, _, data in tensors:
            offsets.append(current)
            current += len(data)
            current += pad_to(current, alignment)

    content = encode_header(version, len(tensors), len(metadata))
    content += encode_metadata(metadata)
    for (name, dims, ggml_type, _), offset in zip(tensors, offsets):
        content += encode_tensor_info(name, dims, ggml_type, offset)

    if not include_payload:
        return content

    content += b'\x00' * pad_to(len(content), alignment)
    payload = bytearray()
    for (_, _, _, data), offset in zip(tensors, offsets):
        if len(payload) < offset + len(data):
            payload += b'\x00' * (offset + len(data) - len(payload))
        payload[offset:offset + len(data)] = data
    return content + bytes(payload)


def create_demo_gguf(filepath: str) -> bytes:
    """
    Write a demo GGUF file with llama-style metadata, tokenizer entries and
    a mix of float and quantized tensors.
    """
    metadata = [
        ('general.architecture', GGUFValueType.STRING, 'llama'),
        ('general.name', GGUFValueType.STRING, 'Demo Model v1.0'),
        ('general.author', GGUFValueType.STRING, 'gguf-graph'),
        ('general.file_type', GGUFValueType.UINT32, 1),
        ('general.alignment', GGUFValueType.UINT32, 32),
        ('llama.context_length', GGUFValueType.UINT32, 2048),
        ('llama.embedding_length', GGUFValueType.UINT32, 64),
        ('llama.block_count', GGUFValueType.UINT32, 2),
        ('tokenizer.ggml.model', GGUFValueType.STRING, 'llama'),
        ('tokenizer.ggml.tokens', GGUFValueType.ARRAY,
         (GGUFValueType.STRING, ['<unk>', '<s>', '</s>', 'hello'])),
    ]

    tensors: List[TensorSpec] = [
        ('token_embd.weight', [64, 4], GGMLType.F32, b'\x00' * tensor_size([64, 4], GGMLType.F32)),
        ('output_norm.weight', [64], GGMLType.F32, b'\x00' * tensor_size([64], GGMLType.F32)),
    ]
    for block in range(2):
        for param, ggml_type in (('attn_q', GGMLType.Q4_0), ('attn_k', GGMLType.Q4_0),
                                 ('ffn_up', GGMLType.Q8_0), ('attn_norm', GGMLType.F16)):
            dims = [64] if param == 'attn_norm' else [64, 64]
            tensors.append((f'blk.{block}.{param}.weight', dims, ggml_type,
                            b'\x00' * tensor_size(dims, ggml_type)))

    content = build_gguf(metadata, tensors)
    with open(filepath, 'wb') as f:
        f.write(content)

    print(f"Created demo GGUF file: {filepath}")
    print(f"  File size: {len(content):,} bytes")
    print(f"  Metadata entries: {len(metadata)}")
    print(f"  Tensors: {len(tensors)}")
    return content


if __name__ == '__main__':
    create_demo_gguf(sys.argv[1] if len(sys.argv) > 1 else 'demo_model.gguf')
