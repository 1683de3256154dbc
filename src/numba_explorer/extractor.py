import dataclasses
import io

from .errors import ExplorerError, ExtractionError
from .log import get_logger
from .toolchain import DebugInfo, SpecializationRecord, Stage, StageOptions, StageOutput, ToolchainIntrospection

logger = get_logger("extractor")


def extract(
    record: SpecializationRecord,
    stage: Stage | str,
    options: StageOptions,
    toolchain: ToolchainIntrospection,
) -> StageOutput:
    """
    Ask the toolchain for one stage of one specialization.

    Args:
        record: The specialization to render
        stage: Requested stage, either a ``Stage`` or its command line spelling
        options: Optimization and debug info settings
        toolchain: The compiler introspection to call into

    Returns:
        The stage text and its line count

    Raises:
        ExtractionError: If the stage is unknown or the toolchain call fails
    """
    if not isinstance(stage, Stage):
        stage = Stage.parse(stage)

    buf = io.StringIO()
    try:
        match stage:
            case Stage.Lowered:
                toolchain.code_lowered(record, options, buf)
            case Stage.Typed:
                toolchain.code_typed(record, options, buf)
            case Stage.Warntype:
                toolchain.code_warntype(record, options, buf)
            case Stage.LLVM:
                toolchain.code_llvm(record, options, buf)
            case Stage.LLVMModule:
                if toolchain.supports_codegen_params():
                    elevated = dataclasses.replace(options, debuginfo=DebugInfo.Source)
                    toolchain.code_llvm(record, elevated, buf, whole_module=True)
                else:
                    toolchain.code_llvm(record, options, buf, whole_module=True)
            case Stage.Native:
                if toolchain.supports_codegen_params():
                    toolchain.code_native(record, dataclasses.replace(options, debuginfo=DebugInfo.Source), buf)
                else:
                    toolchain.code_native(record, options, buf)
    except ExplorerError:
        raise
    except Exception as e:
        shown = ", ".join(record.arg_names)
        raise ExtractionError(
            f"{stage} failed for {record.binding.name}({shown}): {type(e).__name__}: {e}",
            name=record.binding.name,
            arg_types=record.arg_types,
            stage=str(stage),
        ) from e

    output = StageOutput.from_text(buf.getvalue())
    logger.debug(f"{stage} {record.binding.name}: {output.line_count} lines")
    return output
