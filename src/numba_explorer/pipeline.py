from typing import TextIO

from .arguments import Arguments
from .enumerator import enumerate_specializations
from .extractor import extract
from .loader import load_source
from .log import get_logger
from .serializer import serialize
from .toolchain import ToolchainIntrospection

logger = get_logger("pipeline")


def default_toolchain() -> ToolchainIntrospection:
    from .numba_toolchain import NumbaToolchain

    return NumbaToolchain()


def generate_code(
    args: Arguments,
    toolchain: ToolchainIntrospection | None = None,
    verbose_io: TextIO | None = None,
) -> int:
    """
    Run load, enumerate, then extract and write for every specialization.

    The output file is only opened once enumeration succeeded, so a source
    that fails to load leaves nothing behind. Blocks already written before
    an extraction failure stay on disk.

    Args:
        args: Parsed command line
        toolchain: Compiler introspection, Numba when omitted
        verbose_io: Destination of the ``--verbose`` progress lines

    Returns:
        Number of blocks written
    """
    if toolchain is None:
        toolchain = default_toolchain()

    options = args.stage_options
    toolchain.configure(options)

    context = load_source(args.input_file)
    records = enumerate_specializations(context, toolchain, verbose=args.verbose, verbose_io=verbose_io)

    # one record at a time: extract, then write, then the next one
    blocks = ((record, extract(record, args.format, options, toolchain)) for record in records)
    with open(args.output_path, "w", encoding="utf-8", newline="\n") as io:
        count = serialize(blocks, io)

    logger.debug(f"Wrote {count} {args.format} blocks for {context.path} to {args.output_path}")
    return count
