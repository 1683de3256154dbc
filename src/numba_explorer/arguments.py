import argparse
import sys
from dataclasses import dataclass

from .errors import ArgumentError
from .toolchain import DebugInfo, StageOptions

USAGE = """Numba wrapper.

Usage:
  numba-explorer <input_code> <output_path> [--format=<fmt>] [--debuginfo=<info>] [--optimize=<opt>] [--verbose]
  numba-explorer --help

Options:
  -h --help                Show this screen.
  --format=<fmt>           Set output format (One of "lowered", "typed", "warntype", "llvm", "llvm-module", "native") [default: native]
  --debuginfo=<info>       Controls amount of generated metadata (One of "default", "none") [default: default]
  --optimize={true*|false} Controls whether "llvm" or "typed" output should be optimized or not [default: true]
  --verbose                Prints some process info
"""

DEFAULT_FORMAT = "native"
DEFAULT_DEBUGINFO = DebugInfo.Default
DEFAULT_OPTIMIZE = True

_TRUE_VALUES = ("true", "1")
_FALSE_VALUES = ("false", "0")


@dataclass(frozen=True)
class Arguments:
    format: str
    debuginfo: DebugInfo
    optimize: bool
    verbose: bool
    input_file: str
    output_path: str

    @property
    def stage_options(self) -> StageOptions:
        return StageOptions(optimize=self.optimize, debuginfo=self.debuginfo)


def _parse_bool(value: str, default: bool) -> bool:
    # Do not error out if we can't parse the option
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def _build_parser() -> argparse.ArgumentParser:
    # Help and errors are reported by parse_arguments, so argparse never exits on its own
    parser = argparse.ArgumentParser(prog="numba-explorer", add_help=False, allow_abbrev=False, exit_on_error=False)
    parser.add_argument("--format", default=DEFAULT_FORMAT)
    parser.add_argument("--debuginfo", default=DEFAULT_DEBUGINFO.value)
    parser.add_argument("--optimize", default=None)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("-h", "--help", action="store_true", dest="show_help")
    return parser


def parse_arguments(argv: list[str]) -> tuple[Arguments | None, bool, list[str]]:
    """
    Parse the command line without exiting.

    ``--format`` is deliberately not validated here; an unknown stage only
    fails once something has to be extracted.

    Returns:
        (arguments, show_help, errors); ``arguments`` is None whenever
        ``errors`` is not empty or help was requested
    """
    argv = list(argv)
    if argv and argv[0] == "--":
        argv.pop(0)

    errors: list[str] = []
    try:
        options, rest = _build_parser().parse_known_args(argv)
    except argparse.ArgumentError as e:
        return None, False, [str(e)]

    positional = []
    for x in rest:
        if x.startswith("-"):
            errors.append(f"Unknown argument {x}")
        else:
            positional.append(x)

    if options.show_help:
        return None, True, errors

    if len(positional) != 2:
        errors.append(f"Expected two position args {positional}")

    if errors:
        return None, False, errors

    debuginfo = DebugInfo.NoInfo if options.debuginfo == "none" else DEFAULT_DEBUGINFO
    optimize = DEFAULT_OPTIMIZE if options.optimize is None else _parse_bool(options.optimize, DEFAULT_OPTIMIZE)

    arguments = Arguments(
        format=options.format,
        debuginfo=debuginfo,
        optimize=optimize,
        verbose=options.verbose,
        input_file=positional[0],
        output_path=positional[1],
    )
    return arguments, False, errors


def parse_arguments_or_exit(argv: list[str]) -> Arguments:
    """Print usage and exit the way the explorer front end expects"""
    arguments, show_help, errors = parse_arguments(argv)
    for message in errors:
        print(message)
    if show_help:
        print(USAGE)
        sys.exit(1 if errors else 0)
    if errors:
        print(USAGE)
        raise ArgumentError("; ".join(errors))
    return arguments
