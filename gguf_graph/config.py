"""Reader configuration."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ReaderConfig:
    """
    Options controlling a single parse.

    Attributes:
        default_alignment: Payload alignment used when the container has no
            'general.alignment' metadata entry
        max_string_length: Upper bound for any length-prefixed string, in bytes
        nest_layers: Regroup dotted layer names into nested sub-graphs
    """
    default_alignment: int = 32
    max_string_length: int = 100 * 1024 * 1024
    nest_layers: bool = True

    def __post_init__(self):
        if self.default_alignment < 1:
            raise ValueError(f"default_alignment must be positive, got {self.default_alignment}")
        if self.max_string_length < 0:
            raise ValueError(f"max_string_length must not be negative, got {self.max_string_length}")


DEFAULT_CONFIG = ReaderConfig()
