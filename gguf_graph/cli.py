"""
Command-line inspection of GGUF containers.

    gguf-graph model.gguf
    gguf-graph model.gguf --tensors --no-nest -v
"""

import argparse
import logging
import sys
from typing import Any, List, Optional, TextIO

from .config import ReaderConfig
from .errors import GGUFFileError
from .graph import Graph, Model, Node
from .reader import GGUFReader

logger = logging.getLogger(__name__)


def format_value(value: Any, limit: int = 50) -> str:
    """Short display form of a metadata value; long lists and strings are cut."""
    if isinstance(value, list) and len(value) > 3:
        return f"[{format_value(value[0])}, {format_value(value[1])}, ... ({len(value)} items)]"
    text = str(value)
    if len(text) > limit:
        return text[:limit - 3] + "..."
    return text


def print_model(model: Model, out: TextIO, show_tensors: bool = False) -> None:
    out.write(f"Format: {model.format}\n")
    if model.name is not None:
        out.write(f"Name: {model.name}\n")
    if model.description is not None:
        out.write(f"Description: {format_value(model.description)}\n")
    out.write(f"Layers: {len(model.layers)}\n")

    if model.metadata:
        out.write("Metadata:\n")
        for key, value in model.metadata.items():
            out.write(f"  {key}: {format_value(value)}\n")

    for graph in model.graphs:
        out.write("Graph:\n")
        _print_nodes(graph, out, 1, show_tensors)


def _print_nodes(graph: Graph, out: TextIO, depth: int, show_tensors: bool) -> None:
    for node in graph.nodes:
        _print_node(node, out, depth, show_tensors)


def _print_node(node: Node, out: TextIO, depth: int, show_tensors: bool) -> None:
    indent = '  ' * depth
    if not node.name or node.name == node.type_name:
        label = node.type_name
    else:
        label = f"{node.type_name} {node.name}"
    out.write(f"{indent}{label}\n")
    for attribute in node.attributes:
        out.write(f"{indent}  @{attribute.name} = {format_value(attribute.value)}\n")
    if show_tensors:
        for argument in node.inputs:
            for value in argument.value:
                quant = f" ({value.quantization})" if value.quantization else ''
                out.write(f"{indent}  {argument.name}: {value.name} {value.type}{quant}\n")
    if isinstance(node.type, Graph):
        _print_nodes(node.type, out, depth + 1, show_tensors)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='gguf-graph',
        description='Print the model graph stored in a GGUF file.',
    )
    parser.add_argument('path', help='GGUF file to inspect')
    parser.add_argument('--tensors', action='store_true', help='list tensors of every layer')
    parser.add_argument('--no-nest', action='store_true', help="don't group dotted layer names")
    parser.add_argument('-v', '--verbose', action='store_true', help='enable debug logging')
    return parser


def main(argv: Optional[List[str]] = None, out: Optional[TextIO] = None) -> int:
    args = build_parser().parse_args(argv)
    out = out or sys.stdout

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    config = ReaderConfig(nest_layers=not args.no_nest)
    try:
        with GGUFReader(args.path, config) as reader:
            print_model(reader.model, out, show_tensors=args.tensors)
    except GGUFFileError as e:
        logger.error("%s", e)
        return 1
    except OSError as e:
        logger.error("Cannot read '%s': %s", args.path, e.strerror or e)
        return 1
    return 0
