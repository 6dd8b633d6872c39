"""
Exception hierarchy for GGUF decoding.

Every error raised while decoding a container derives from GGUFFileError, so
callers can catch one type. Each subclass carries the offending value as an
attribute in addition to a readable message.
"""

from typing import Optional


class GGUFFileError(Exception):
    """Base exception for all GGUF-related errors."""
    pass


class GGUFInvalidMagicError(GGUFFileError):
    """Raised when the leading signature doesn't match GGUF format."""

    def __init__(self, message: str, magic: bytes = b''):
        super().__init__(message)
        self.magic = magic


class GGUFVersionError(GGUFFileError):
    """Raised when an unsupported GGUF version is encountered."""

    def __init__(self, message: str, version: Optional[int] = None):
        super().__init__(message)
        self.version = version


class GGUFParseError(GGUFFileError):
    """Raised when a generic parsing error occurs."""
    pass


class GGUFTruncatedError(GGUFFileError):
    """Raised when the source ends unexpectedly."""

    def __init__(self, message: str, position: Optional[int] = None):
        super().__init__(message)
        self.position = position


class GGUFInvalidTypeError(GGUFFileError):
    """Raised when a metadata value type code is not part of the format."""

    def __init__(self, message: str, value_type: Optional[int] = None):
        super().__init__(message)
        self.value_type = value_type


class GGUFQuantizationError(GGUFFileError):
    """Raised when a tensor uses a quantization type missing from the registry."""

    def __init__(self, message: str, ggml_type: Optional[int] = None):
        super().__init__(message)
        self.ggml_type = ggml_type


class GGUFTensorNameError(GGUFFileError):
    """Raised when a tensor name cannot be split into layer and parameter."""

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(message)
        self.name = name
