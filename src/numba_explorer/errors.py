"""
Exceptions raised by the explorer pipeline.

Every fatal condition of a run is an ``ExplorerError``; the CLI turns them into
a logged message and exit status 1.
"""


class ExplorerError(Exception):
    """Base class for all explorer errors"""


class ArgumentError(ExplorerError):
    """Bad or missing command line arguments"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class LoadError(ExplorerError):
    """The input source could not be read or failed while executing"""

    def __init__(self, path: str, message: str):
        super().__init__(f"Failed to load {path}: {message}")
        self.path = path
        self.message = message


class UnsupportedSpecializationShape(ExplorerError):
    """The toolchain returned a specialization container we do not know how to read"""

    def __init__(self, shape: type, where: str):
        super().__init__(f"Cannot handle specializations of type {shape.__module__}.{shape.__qualname__} ({where})")
        self.shape = shape
        self.where = where


class ExtractionError(ExplorerError):
    """A toolchain stage call failed for one specialization"""

    def __init__(self, message: str, name: str | None = None, arg_types: tuple = (), stage: str | None = None):
        super().__init__(message)
        self.message = message
        self.name = name
        self.arg_types = arg_types
        self.stage = stage


class FramingError(ExplorerError):
    """Explorer output text does not follow the block framing"""

    def __init__(self, line: int, message: str):
        super().__init__(f"line {line}: {message}")
        self.line = line
        self.message = message
