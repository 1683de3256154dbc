"""
numba-explorer

Dumps the lowered, typed, LLVM or native code of every compiled Numba
specialization found in a Python source file, framed for a code explorer.
"""

from .errors import (
    ArgumentError,
    ExplorerError,
    ExtractionError,
    FramingError,
    LoadError,
    UnsupportedSpecializationShape,
)
from .loader import ExecutionContext, load_source
from .serializer import Block, read_blocks
from .toolchain import DebugInfo, Stage, StageOptions

__all__ = [
    "ArgumentError",
    "Block",
    "DebugInfo",
    "ExecutionContext",
    "ExplorerError",
    "ExtractionError",
    "FramingError",
    "LoadError",
    "Stage",
    "StageOptions",
    "UnsupportedSpecializationShape",
    "load_source",
    "read_blocks",
]
__version__ = "0.1.0"
