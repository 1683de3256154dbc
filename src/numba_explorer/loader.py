import importlib.machinery
import importlib.util
import itertools
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType

from .errors import LoadError
from .log import get_logger

logger = get_logger("loader")

MODULE_NAME_PREFIX = "numba_explorer_input"

_load_counter = itertools.count()


@dataclass
class ExecutionContext:
    """A freshly loaded module owned by a single run"""

    module: ModuleType
    path: Path

    @property
    def name(self) -> str:
        return self.module.__name__


def load_source(file_path, module_name: str | None = None) -> ExecutionContext:
    """
    Execute a source file inside a brand new module object.

    The module is not registered in ``sys.modules``, so two loads of the same
    file never see each other's globals.

    Args:
        file_path: Path to the Python source to load
        module_name: Name of the new module, generated when omitted

    Returns:
        The execution context wrapping the loaded module

    Raises:
        LoadError: If the file cannot be read or its top-level code fails
    """
    file_path = Path(file_path).resolve()
    if module_name is None:
        module_name = f"{MODULE_NAME_PREFIX}_{next(_load_counter)}"

    if not file_path.is_file():
        raise LoadError(str(file_path), "no such file")

    # Explicit loader, so inputs without a .py suffix are accepted too
    loader = importlib.machinery.SourceFileLoader(module_name, str(file_path))
    spec = importlib.util.spec_from_file_location(module_name, file_path, loader=loader)
    module = importlib.util.module_from_spec(spec)

    logger.debug(f"Loading {file_path} as module {module_name}")
    try:
        spec.loader.exec_module(module)
    except SyntaxError as e:
        raise LoadError(str(file_path), f"syntax error at line {e.lineno}: {e.msg}") from e
    except OSError as e:
        raise LoadError(str(file_path), str(e)) from e
    except (Exception, SystemExit) as e:
        raise LoadError(str(file_path), f"{type(e).__name__}: {e}") from e

    return ExecutionContext(module=module, path=file_path)
