"""
gguf-graph - decode GGUF model containers into a model object graph.

Usage:
    from gguf_graph import open_model

    model = open_model('model.gguf')
    for node in model.graphs[0].nodes:
        print(node.type_name)
"""

from .config import DEFAULT_CONFIG, ReaderConfig
from .decoder import BinaryDecoder, GGUFValueType
from .detector import GGUF_MAGIC, matches
from .errors import (
    GGUFFileError,
    GGUFInvalidMagicError,
    GGUFInvalidTypeError,
    GGUFParseError,
    GGUFQuantizationError,
    GGUFTensorNameError,
    GGUFTruncatedError,
    GGUFVersionError,
)
from .graph import (
    Argument,
    Attribute,
    Graph,
    GraphAssembler,
    Layer,
    Model,
    Node,
    Tensor,
    TensorShape,
    TensorType,
    Value,
)
from .header import Header, HeaderParser, MetadataEntry, TensorDescriptor
from .locator import TensorDataLocator
from .quantization import QUANT_TYPES, GGMLType, QuantType
from .reader import GGUFContent, GGUFReader, ModelFactory, decode, open_model
from .source import BufferView, ByteSource, FileSource, FileView, TensorData

__version__ = '0.1.0'

__all__ = [
    'Argument',
    'Attribute',
    'BinaryDecoder',
    'BufferView',
    'ByteSource',
    'DEFAULT_CONFIG',
    'FileSource',
    'FileView',
    'GGMLType',
    'GGUFContent',
    'GGUFFileError',
    'GGUFInvalidMagicError',
    'GGUFInvalidTypeError',
    'GGUFParseError',
    'GGUFQuantizationError',
    'GGUFReader',
    'GGUFTensorNameError',
    'GGUFTruncatedError',
    'GGUFValueType',
    'GGUFVersionError',
    'GGUF_MAGIC',
    'Graph',
    'GraphAssembler',
    'Header',
    'HeaderParser',
    'Layer',
    'MetadataEntry',
    'Model',
    'ModelFactory',
    'Node',
    'QUANT_TYPES',
    'QuantType',
    'ReaderConfig',
    'Tensor',
    'TensorData',
    'TensorDataLocator',
    'TensorDescriptor',
    'TensorShape',
    'TensorType',
    'Value',
    'decode',
    'matches',
    'open_model',
]
