"""Signature sniffing for GGUF containers."""

from .source import BaseSource


GGUF_MAGIC = b'GGUF'


def matches(source: BaseSource) -> bool:
    """
    Return True if source starts with the GGUF signature.

    The cursor is left where it was. Sources shorter than the signature
    simply don't match.
    """
    return source.peek(len(GGUF_MAGIC)) == GGUF_MAGIC
