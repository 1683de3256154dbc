import sys
from typing import TextIO

from .loader import ExecutionContext
from .log import get_logger
from .toolchain import CallableBinding, SpecializationRecord, ToolchainIntrospection

logger = get_logger("enumerator")


def enumerate_specializations(
    context: ExecutionContext,
    toolchain: ToolchainIntrospection,
    verbose: bool = False,
    verbose_io: TextIO | None = None,
) -> list[SpecializationRecord]:
    """
    Find every compiled specialization of every callable defined in ``context``.

    Records come out in binding order, then method order, then specialization
    order, exactly as the toolchain reports them.

    Args:
        context: The loaded module
        toolchain: Introspection over the compiler state
        verbose: Print one line per callable and per specialization
        verbose_io: Where verbose lines go, stdout by default

    Returns:
        One record per (callable, argument types, method definition)

    Raises:
        UnsupportedSpecializationShape: If a specialization container is not understood
    """
    if verbose_io is None:
        verbose_io = sys.stdout

    records: list[SpecializationRecord] = []
    seen: set[int] = set()

    for name, value in toolchain.list_bindings(context):
        if not toolchain.is_function_like(value):
            continue
        # Aliases of the same callable are reported once
        if id(value) in seen:
            continue
        seen.add(id(value))

        binding = CallableBinding(name=toolchain.display_name(name, value), value=value)
        if verbose:
            print(f"Function: {binding.name}", file=verbose_io)

        # only methods defined by the loaded source
        for method in toolchain.list_methods(binding, context):
            for specialization in toolchain.list_specializations(method):
                if specialization is None:
                    continue
                arg_types = tuple(toolchain.argument_types(specialization))
                records.append(
                    SpecializationRecord(
                        binding=binding, arg_types=arg_types, method=method, specialization=specialization
                    )
                )
                if verbose:
                    shown = ", ".join(str(ty) for ty in arg_types)
                    print(f"    Method types: ({shown})", file=verbose_io)

    logger.debug(f"Found {len(records)} specializations in {context.path}")
    return records
