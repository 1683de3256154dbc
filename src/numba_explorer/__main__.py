import sys

from .arguments import parse_arguments_or_exit
from .errors import ArgumentError, ExplorerError
from .log import setup_logger
from .pipeline import generate_code


def main(argv: list[str] | None = None) -> int:
    """Command line entry point"""
    if argv is None:
        argv = sys.argv[1:]

    try:
        args = parse_arguments_or_exit(argv)
    except ArgumentError:
        return 1

    logger = setup_logger(verbose=args.verbose)
    try:
        generate_code(args)
    except ExplorerError as e:
        logger.error(str(e))
        return 1
    except OSError as e:
        logger.error(f"Cannot write {args.output_path}: {e}")
        return 1
    return 0


def main_entry() -> None:
    sys.exit(main())


if __name__ == "__main__":
    main_entry()
