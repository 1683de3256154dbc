"""
Numba implementation of the toolchain introspection interface

All knowledge about the shape of Numba's dispatcher and compile-result
objects is kept in this module.
"""

import inspect
import re
from io import StringIO
from typing import Any, TextIO

import numba
from numba.core import config, ir
from numba.core.compiler import CompileResult, run_frontend
from numba.core.dispatcher import Dispatcher
from numba.core.typing import Signature

from .errors import ExtractionError, UnsupportedSpecializationShape
from .log import get_logger
from .toolchain import (
    CallableBinding,
    DebugInfo,
    MethodDefinition,
    SpecializationRecord,
    Specializations,
    StageOptions,
    ToolchainIntrospection,
    normalize_specializations,
)

logger = get_logger("numba")

# First release whose code libraries we drive with the elevated debug settings
CODEGEN_PARAMS_MIN_VERSION = (0, 57)

OPT_LEVEL_OPTIMIZED = 3
OPT_LEVEL_UNOPTIMIZED = 0

_DBG_ATTACHMENT = re.compile(r",? !dbg !\d+")
_METADATA_NODE = re.compile(r"^!(\d+) = ")
_NAMED_METADATA = re.compile(r"^!([A-Za-z_.][\w.]*) = ")
_METADATA_REF = re.compile(r"!(\d+)")
_SOURCE_MARKER = re.compile(r"^\s*# --- LINE \d+ ---\s*$")
_ASM_DEBUG_DIRECTIVES = (".loc", ".file", ".cv_loc", ".cv_file", ".cfi_sections")


def _is_compile_result(value: Any) -> bool:
    # CompileResult is a namedtuple, it has to be recognised before plain tuples
    return isinstance(value, CompileResult)


def _definition_line(py_func) -> int:
    """Line of the ``def`` statement, skipping any decorators above it"""
    try:
        source_lines, start_line = inspect.getsourcelines(py_func)
    except (OSError, TypeError):
        return py_func.__code__.co_firstlineno
    for offset, line in enumerate(source_lines):
        if line.lstrip().startswith(("def ", "async def ")):
            return start_line + offset
    return start_line


# ============================================================
# Debug info filtering
# ============================================================


def strip_llvm_debuginfo(text: str) -> str:
    """
    Drop debug intrinsics, ``!dbg`` attachments and ``llvm.dbg.*`` named
    metadata, then every numbered metadata node nothing refers to anymore.

    Nodes still used by the code (``!prof`` branch weights, ``!range`` ...)
    and by the remaining named metadata are kept, so the IR stays valid.
    """
    entries: list[tuple[str | None, str]] = []
    nodes: dict[str, str] = {}
    for line in text.splitlines():
        if "@llvm.dbg." in line:
            continue
        named = _NAMED_METADATA.match(line)
        if named is not None and named.group(1).startswith("llvm.dbg."):
            continue
        node = _METADATA_NODE.match(line)
        if node is not None:
            nodes[node.group(1)] = line
            entries.append((node.group(1), line))
        else:
            entries.append((None, _DBG_ATTACHMENT.sub("", line)))

    live = set()
    pending = [ref for key, line in entries if key is None for ref in _METADATA_REF.findall(line)]
    while pending:
        ref = pending.pop()
        if ref in live or ref not in nodes:
            continue
        live.add(ref)
        pending.extend(_METADATA_REF.findall(nodes[ref]))

    kept = [line for key, line in entries if key is None or key in live]
    return "\n".join(kept) + "\n"


def strip_asm_debuginfo(text: str) -> str:
    kept = []
    in_debug_section = False
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(".section"):
            in_debug_section = ".debug_" in stripped
            if in_debug_section:
                continue
        elif stripped.startswith((".text", ".data", ".bss")):
            in_debug_section = False
        if in_debug_section:
            continue
        if stripped.startswith(_ASM_DEBUG_DIRECTIVES):
            continue
        kept.append(line)
    return "\n".join(kept) + "\n"


def strip_source_markers(text: str) -> str:
    kept = [line for line in text.splitlines() if not _SOURCE_MARKER.match(line)]
    return "\n".join(kept) + "\n"


# ============================================================
# Toolchain
# ============================================================


class NumbaToolchain(ToolchainIntrospection):
    """Reads Numba dispatchers and their compiled overloads"""

    def __init__(self):
        self._codegen_params: bool | None = None
        # debug builds keyed by id() of the overload they mirror
        self._debug_builds: dict[int, CompileResult] = {}

    # ------------------------------------------------------------
    # run-wide settings
    # ------------------------------------------------------------

    def configure(self, options: StageOptions) -> None:
        level = OPT_LEVEL_OPTIMIZED if options.optimize else OPT_LEVEL_UNOPTIMIZED
        # Newer releases wrap the level in an int subclass
        opt_level_type = getattr(config, "_OptLevel", None)
        config.OPT = opt_level_type(level) if opt_level_type is not None else level
        logger.debug(f"Numba {numba.__version__}, optimization level {level}")

    def supports_codegen_params(self) -> bool:
        if self._codegen_params is None:
            version_info = getattr(numba, "version_info", None)
            short = getattr(version_info, "short", None)
            self._codegen_params = short is not None and tuple(short) >= CODEGEN_PARAMS_MIN_VERSION
            logger.debug(f"Codegen parameters supported: {self._codegen_params}")
        return self._codegen_params

    # ------------------------------------------------------------
    # discovery
    # ------------------------------------------------------------

    def list_bindings(self, context) -> list[tuple[str, Any]]:
        module = context.module
        return [(name, getattr(module, name)) for name in module.__dir__()]

    def is_function_like(self, value: Any) -> bool:
        return isinstance(value, Dispatcher)

    def display_name(self, name: str, value: Any) -> str:
        return value.py_func.__name__

    def list_methods(self, binding: CallableBinding, context) -> list[MethodDefinition]:
        py_func = binding.value.py_func
        if getattr(py_func, "__module__", None) != context.name:
            logger.debug(f"Skipping {binding.name}: defined in {py_func.__module__}")
            return []
        return [MethodDefinition(binding=binding, line=_definition_line(py_func), handle=binding.value)]

    def list_specializations(self, method: MethodDefinition) -> Specializations:
        return normalize_specializations(
            method.handle.overloads, _is_compile_result, where=f"overloads of {method.binding.name}"
        )

    def argument_types(self, specialization: Any) -> tuple:
        descriptor = specialization
        # Compile results and other wrappers carry the real signature inside
        while not isinstance(descriptor, Signature):
            inner = getattr(descriptor, "signature", None)
            if inner is None or inner is descriptor:
                raise UnsupportedSpecializationShape(type(descriptor), "argument types")
            descriptor = inner
        # Signature.args never includes the receiver (Signature.recvr)
        return tuple(descriptor.args)

    # ------------------------------------------------------------
    # stages
    # ------------------------------------------------------------

    def _overload_key(self, record: SpecializationRecord):
        for key, cres in record.method.handle.overloads.items():
            if cres is record.specialization:
                return key
        raise ExtractionError(
            f"{record.binding.name} has no overload for ({', '.join(record.arg_names)})",
            name=record.binding.name,
            arg_types=record.arg_types,
        )

    def code_lowered(self, record: SpecializationRecord, options: StageOptions, io: TextIO) -> None:
        func_ir = run_frontend(record.method.handle.py_func)
        func_ir.dump(file=io)

    def code_typed(self, record: SpecializationRecord, options: StageOptions, io: TextIO) -> None:
        cres = record.specialization
        annotation = cres.type_annotation
        if annotation is None:
            raise ExtractionError(
                f"No type information for {record.binding.name} (overload loaded from the on-disk cache?)",
                name=record.binding.name,
                arg_types=record.arg_types,
                stage="typed",
            )

        if options.optimize:
            # older releases only keep the IR itself on the annotation
            blocks = getattr(annotation, "blocks", None) or annotation.func_ir.blocks
        else:
            blocks = run_frontend(record.method.handle.py_func).blocks

        print(f"{record.binding.name}{annotation.signature}", file=io)
        for label, block in sorted(blocks.items()):
            print(f"label {label}:", file=io)
            for inst in block.body:
                text = f"    {inst}"
                if isinstance(inst, ir.Assign):
                    ty = annotation.typemap.get(inst.target.name)
                    if ty is not None:
                        text += f" :: {ty}"
                if options.debuginfo != DebugInfo.NoInfo and inst.loc is not None:
                    text += f"  # line {inst.loc.line}"
                print(text, file=io)

    def code_warntype(self, record: SpecializationRecord, options: StageOptions, io: TextIO) -> None:
        dispatcher = record.method.handle
        if record.specialization.type_annotation is None:
            raise ExtractionError(
                f"No type information for {record.binding.name} (overload loaded from the on-disk cache?)",
                name=record.binding.name,
                arg_types=record.arg_types,
                stage="warntype",
            )
        if options.debuginfo == DebugInfo.NoInfo:
            buf = StringIO()
            dispatcher.inspect_types(file=buf, signature=self._overload_key(record))
            io.write(strip_source_markers(buf.getvalue()))
        else:
            dispatcher.inspect_types(file=io, signature=self._overload_key(record))

    def _debug_build(self, record: SpecializationRecord) -> CompileResult:
        """
        Compile the overload's signature again with ``debug=True``.

        The rebuild keeps the dispatcher's own target options. Bounds checking
        stays as the dispatcher had it, since ``debug`` would switch it on.
        """
        cres = record.specialization
        cached = self._debug_builds.get(id(cres))
        if cached is not None:
            return cached

        dispatcher = record.method.handle
        targetoptions = dict(dispatcher.targetoptions)
        if targetoptions.get("debug"):
            return cres
        targetoptions["debug"] = True
        targetoptions.setdefault("boundscheck", False)

        logger.debug(f"Recompiling {record.binding.name}{cres.signature} with debug info")
        debug_dispatcher = numba.jit(locals=dict(dispatcher.locals or {}), **targetoptions)(dispatcher.py_func)
        debug_dispatcher.compile(cres.signature)
        debug_cres = debug_dispatcher.overloads[tuple(cres.signature.args)]
        self._debug_builds[id(cres)] = debug_cres
        return debug_cres

    def _compile_result_for(self, record: SpecializationRecord, options: StageOptions) -> CompileResult:
        # Numba has a single debug info level, Default and Source both mean debug=True
        if options.debuginfo == DebugInfo.NoInfo:
            return record.specialization
        return self._debug_build(record)

    def code_llvm(
        self, record: SpecializationRecord, options: StageOptions, io: TextIO, *, whole_module: bool = False
    ) -> None:
        cres = self._compile_result_for(record, options)
        if whole_module:
            text = cres.library.get_llvm_str()
        else:
            text = str(cres.library.get_function(cres.fndesc.llvm_func_name))
        if options.debuginfo == DebugInfo.NoInfo:
            text = strip_llvm_debuginfo(text)
        io.write(text)

    def code_native(self, record: SpecializationRecord, options: StageOptions, io: TextIO) -> None:
        text = self._compile_result_for(record, options).library.get_asm_str()
        if options.debuginfo == DebugInfo.NoInfo:
            text = strip_asm_debuginfo(text)
        io.write(text)
