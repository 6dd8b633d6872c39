"""
Model object graph and its assembly from decoded GGUF content.

GraphAssembler groups tensors into layers by dotted name, routes metadata
entries to the model, the model layer or the tokenizer layer, and builds the
consumer-facing Model / Graph / Node / Value / Attribute objects.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from . import quantization
from .config import DEFAULT_CONFIG, ReaderConfig
from .errors import GGUFTensorNameError
from .header import MetadataEntry, TensorDescriptor
from .source import TensorData

# Mappings on returned objects are read-only proxies over private dicts
EMPTY_MAPPING: Mapping[str, Any] = MappingProxyType({})


def read_only(mapping: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only copy of mapping, keeping its order."""
    return MappingProxyType(OrderedDict(mapping))


# ============================================================================
# Consumer Object Model
# ============================================================================

@dataclass(frozen=True)
class TensorShape:
    dimensions: Tuple[int, ...]

    def __str__(self) -> str:
        return '[' + ','.join(str(dim) for dim in self.dimensions) + ']'


@dataclass(frozen=True)
class TensorType:
    data_type: str
    shape: TensorShape

    def __str__(self) -> str:
        return (self.data_type or '?') + str(self.shape)


# Unpacked element kinds and their little-endian numpy dtypes
NUMPY_DTYPES: Dict[str, str] = {
    'float32': '<f4',
    'float16': '<f2',
    'int8': 'i1',
    'int16': '<i2',
    'int32': '<i4',
}


@dataclass(frozen=True)
class Tensor:
    """
    Tensor as seen by a consumer.

    quantization is None for F32/F16 and the lower-cased type name otherwise.
    data is the lazy byte range in the original resource, or None when the
    container has no payload section. Block-packed bytes are never decoded.
    """
    type: TensorType
    quantization: Optional[str] = None
    encoding: Optional[str] = None
    data: Optional[TensorData] = None

    @property
    def values(self) -> Optional[bytes]:
        """Raw little-endian bytes for unpacked kinds, None otherwise."""
        if self.encoding is None or self.data is None:
            return None
        return self.data.tobytes()

    def to_numpy(self) -> np.ndarray:
        """
        Numpy view of an unpacked tensor.

        The array has the reversed GGUF dimensions (slowest-varying first).
        In-memory sources are viewed without copying.

        Raises:
            ValueError: If the tensor is block-packed or has no data
        """
        if self.encoding is None:
            raise ValueError(f"Tensor of type {self.type} is block-packed and can't be viewed as an array")
        if self.data is None:
            raise ValueError(f"Tensor of type {self.type} has no data")
        array = np.frombuffer(self.data.memoryview(), dtype=NUMPY_DTYPES[self.type.data_type])
        return array.reshape(tuple(reversed(self.type.shape.dimensions)))

    @classmethod
    def from_descriptor(cls, descriptor: TensorDescriptor) -> 'Tensor':
        info = quantization.lookup(descriptor.ggml_type)
        tensor_type = TensorType(info.dtype, TensorShape(descriptor.dimensions))
        encoding = '<' if info.dtype in NUMPY_DTYPES else None
        return cls(
            type=tensor_type,
            quantization=quantization.quantization_label(descriptor.ggml_type),
            encoding=encoding,
            data=descriptor.data,
        )


@dataclass(frozen=True)
class Value:
    name: str
    type: TensorType
    quantization: Optional[str]
    initializer: Tensor


@dataclass(frozen=True)
class Argument:
    name: str
    value: Tuple[Value, ...]


@dataclass(frozen=True)
class Attribute:
    name: str
    value: Any


@dataclass(frozen=True)
class Graph:
    name: str
    nodes: Tuple['Node', ...] = ()
    inputs: Tuple[Argument, ...] = ()
    outputs: Tuple[Argument, ...] = ()


@dataclass(frozen=True)
class Node:
    """
    A layer of the model.

    type is either a plain type name or, for layers that contain other
    layers, the Graph of those children.
    """
    name: str
    type: Union[str, Graph]
    inputs: Tuple[Argument, ...] = ()
    outputs: Tuple[Argument, ...] = ()
    attributes: Tuple[Attribute, ...] = ()

    @property
    def type_name(self) -> str:
        if isinstance(self.type, Graph):
            return self.type.name
        return self.type


@dataclass(frozen=True)
class Model:
    format: str
    name: Optional[str] = None
    description: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: EMPTY_MAPPING)
    graphs: Tuple[Graph, ...] = ()
    layers: Mapping[str, 'Layer'] = field(default_factory=lambda: EMPTY_MAPPING)


# ============================================================================
# Layers
# ============================================================================

@dataclass(frozen=True)
class Layer:
    """Intermediate grouping of tensors or metadata, before nodes are built."""
    name: str
    type: str
    weights: Mapping[str, TensorDescriptor] = field(default_factory=lambda: EMPTY_MAPPING)
    metadata: Mapping[str, Any] = field(default_factory=lambda: EMPTY_MAPPING)
    layers: Tuple['Layer', ...] = ()


def split_name(name: str) -> Tuple[str, str]:
    """
    Split a dotted name at its last '.' into (prefix, suffix).

    Raises:
        GGUFTensorNameError: If the name has no '.'
    """
    prefix, dot, suffix = name.rpartition('.')
    if not dot:
        raise GGUFTensorNameError(
            f"Tensor name '{name}' has no '.' separating layer and parameter",
            name=name,
        )
    return prefix, suffix


def group_layers(tensors: Sequence[TensorDescriptor]) -> Mapping[str, Layer]:
    """Group tensors into weight layers keyed by name prefix, in first-seen order."""
    weights: Dict[str, Dict[str, TensorDescriptor]] = OrderedDict()
    for tensor in tensors:
        key, param = split_name(tensor.name)
        weights.setdefault(key, OrderedDict())[param] = tensor
    return read_only(OrderedDict(
        (key, Layer(name=key, type='weights', weights=read_only(params)))
        for key, params in weights.items()
    ))


# ============================================================================
# Metadata Routing
# ============================================================================

class _Routing:
    """Destinations filled while routing metadata entries."""

    def __init__(self, architecture: str):
        self.architecture = architecture
        self.name: Optional[str] = None
        self.description: Optional[str] = None
        self.metadata: Dict[str, Any] = OrderedDict()
        self.model_attributes: Dict[str, Any] = OrderedDict()
        self.tokenizer_attributes: Dict[str, Any] = OrderedDict()


Predicate = Callable[[str, _Routing], bool]
Handler = Callable[[_Routing, str, Any], None]

TOKENIZER_PREFIX = 'tokenizer.'
UNKNOWN_ARCHITECTURE = '?'


def _named(*names: str) -> Predicate:
    return lambda name, routing: name in names


def _prefixed(prefix: str) -> Predicate:
    return lambda name, routing: name.startswith(prefix)


def _architecture_prefixed(name: str, routing: _Routing) -> bool:
    return name.startswith(routing.architecture + '.')


def _set_name(routing: _Routing, name: str, value: Any) -> None:
    routing.name = value


def _set_description(routing: _Routing, name: str, value: Any) -> None:
    routing.description = value


def _model_metadata_as(key: str) -> Handler:
    def handler(routing: _Routing, name: str, value: Any) -> None:
        routing.metadata[key] = value
    return handler


def _discard(routing: _Routing, name: str, value: Any) -> None:
    pass


def _tokenizer_attribute(routing: _Routing, name: str, value: Any) -> None:
    routing.tokenizer_attributes[name[len(TOKENIZER_PREFIX):]] = value


def _model_attribute(routing: _Routing, name: str, value: Any) -> None:
    routing.model_attributes[name] = value


def _model_metadata(routing: _Routing, name: str, value: Any) -> None:
    routing.metadata[name] = value


# First match wins
METADATA_ROUTES: Tuple[Tuple[Predicate, Handler], ...] = (
    (_named('general.name'), _set_name),
    (_named('general.architecture'), _discard),  # resolved before routing
    (_named('general.description'), _set_description),
    (_named('general.author'), _model_metadata_as('author')),
    (_named('general.license'), _model_metadata_as('license')),
    (_named('general.file_type', 'general.quantization_version'), _discard),
    (_prefixed(TOKENIZER_PREFIX), _tokenizer_attribute),
    (_architecture_prefixed, _model_attribute),
    (lambda name, routing: True, _model_metadata),
)


def route_metadata(metadata: Sequence[MetadataEntry]) -> _Routing:
    """Send each metadata entry to its destination, in read order."""
    architecture = UNKNOWN_ARCHITECTURE
    for entry in metadata:
        if entry.name == 'general.architecture':
            architecture = str(entry.value)
    routing = _Routing(architecture)
    for entry in metadata:
        for predicate, handler in METADATA_ROUTES:
            if predicate(entry.name, routing):
                handler(routing, entry.name, entry.value)
                break
    return routing


# ============================================================================
# GraphAssembler
# ============================================================================

class GraphAssembler:
    """
    Build a Model from decoded metadata and tensor descriptors.

    Usage:
        model = GraphAssembler(config).assemble('GGUF v3', metadata, tensors)
    """

    def __init__(self, config: ReaderConfig = DEFAULT_CONFIG):
        self.config = config

    def assemble(self, model_format: str, metadata: Sequence[MetadataEntry],
                 tensors: Sequence[TensorDescriptor]) -> Model:
        """
        Raises:
            GGUFTensorNameError: If a tensor name has no '.'
            GGUFQuantizationError: If a tensor type is missing from the registry
        """
        layers = group_layers(tensors)
        routing = route_metadata(metadata)

        model_layer = Layer(
            name='',
            type=routing.architecture,
            metadata=read_only(routing.model_attributes),
            layers=tuple(layers.values()),
        )
        graph_layers = [model_layer]
        if routing.tokenizer_attributes:
            graph_layers.append(Layer(
                name='',
                type='tokenizer',
                metadata=read_only(routing.tokenizer_attributes),
            ))

        graph = Graph(name='', nodes=tuple(self._node(layer) for layer in graph_layers))
        return Model(
            format=model_format,
            name=routing.name,
            description=routing.description,
            metadata=read_only(routing.metadata),
            graphs=(graph,),
            layers=layers,
        )

    def _node(self, layer: Layer) -> Node:
        if layer.layers:
            node_type: Union[str, Graph] = Graph(
                name=layer.type,
                nodes=self._nodes([(child.name, child) for child in layer.layers]),
            )
        else:
            node_type = layer.type
        return Node(
            name=layer.name,
            type=node_type,
            inputs=self._inputs(layer),
            attributes=tuple(Attribute(name, value) for name, value in layer.metadata.items()),
        )

    def _inputs(self, layer: Layer) -> Tuple[Argument, ...]:
        inputs = []
        for param, descriptor in layer.weights.items():
            tensor = Tensor.from_descriptor(descriptor)
            value = Value(descriptor.name, tensor.type, tensor.quantization, tensor)
            inputs.append(Argument(param, (value,)))
        return tuple(inputs)

    def _nodes(self, entries: List[Tuple[str, Layer]], prefix: str = '') -> Tuple[Node, ...]:
        """
        Nodes for (local name, layer) pairs.

        With nest_layers set, local names sharing a leading dotted component
        are collected into a sub-graph node, recursively.
        """
        if not self.config.nest_layers:
            return tuple(self._node(layer) for _, layer in entries)

        groups: Dict[str, List[Tuple[str, Layer]]] = OrderedDict()
        for local, layer in entries:
            head, dot, rest = local.partition('.')
            key = head if dot else local
            groups.setdefault(key, []).append((rest if dot else '', layer))

        nodes = []
        for head, members in groups.items():
            nested = [(rest, layer) for rest, layer in members if rest]
            if len(members) < 2 or len(nested) < 2:
                nodes.extend(self._node(layer) for _, layer in members)
                continue
            group_name = prefix + head
            children = [self._node(layer) for rest, layer in members if not rest]
            children.extend(self._nodes(nested, group_name + '.'))
            nodes.append(Node(name=group_name, type=Graph(name=group_name, nodes=tuple(children))))
        return tuple(nodes)
