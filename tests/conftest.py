from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from numba_explorer.toolchain import (
    CallableBinding,
    MethodDefinition,
    SpecializationRecord,
    StageOptions,
    ToolchainIntrospection,
    normalize_specializations,
)

INPUTS_DIR = Path(__file__).parent / "inputs"


# ============================================================
# A toolchain that needs no compiler
# ============================================================


@dataclass(frozen=True)
class FakeType:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass
class Quantified:
    """``for all T, body``: has to be unwrapped before its parameters are read"""

    body: Any


@dataclass
class FakeSignature:
    # the first entry plays the receiver and is never reported
    parameters: tuple


@dataclass
class FakeSpecialization:
    spec_types: Any


@dataclass
class FakeFunction:
    name: str
    line: int
    # a list, a dict, a single FakeSpecialization or None
    specializations: Any = field(default_factory=list)
    # None means "defined by whatever context is being enumerated"
    module: str | None = None


def spec(*names: str, quantified: int = 0) -> FakeSpecialization:
    descriptor: Any = FakeSignature(parameters=(FakeType("typeof(f)"),) + tuple(FakeType(n) for n in names))
    for _ in range(quantified):
        descriptor = Quantified(body=descriptor)
    return FakeSpecialization(spec_types=descriptor)


class FakeToolchain(ToolchainIntrospection):
    def __init__(self, bindings: list[tuple[str, Any]] | None = None, codegen_params: bool = True):
        self.bindings = bindings or []
        self.codegen_params = codegen_params
        self.calls: list[tuple] = []
        self.fail_on: str | None = None

    def configure(self, options: StageOptions) -> None:
        self.calls.append(("configure", options))

    def supports_codegen_params(self) -> bool:
        return self.codegen_params

    def list_bindings(self, context):
        self.calls.append(("list_bindings", context.name))
        return list(self.bindings)

    def is_function_like(self, value):
        return isinstance(value, FakeFunction)

    def display_name(self, name, value):
        return value.name

    def list_methods(self, binding: CallableBinding, context):
        fn = binding.value
        if fn.module is not None and fn.module != context.name:
            return []
        return [MethodDefinition(binding=binding, line=fn.line, handle=fn)]

    def list_specializations(self, method: MethodDefinition):
        return normalize_specializations(
            method.handle.specializations, lambda v: isinstance(v, FakeSpecialization), where=method.binding.name
        )

    def argument_types(self, specialization):
        descriptor = specialization.spec_types
        while isinstance(descriptor, Quantified):
            descriptor = descriptor.body
        return descriptor.parameters[1:]

    def _emit(self, stage: str, record: SpecializationRecord, io, **extra):
        self.calls.append((stage, record.binding.name, record.arg_types, extra))
        if self.fail_on == record.binding.name:
            raise RuntimeError(f"cannot infer {record.binding.name}")
        args = ", ".join(record.arg_names)
        io.write(f"{stage} {record.binding.name}({args})\n")
        io.write(f"  options {extra['options'].optimize} {extra['options'].debuginfo}\n")

    def code_lowered(self, record, options, io):
        self._emit("lowered", record, io, options=options)

    def code_typed(self, record, options, io):
        self._emit("typed", record, io, options=options)

    def code_warntype(self, record, options, io):
        self._emit("warntype", record, io, options=options)

    def code_llvm(self, record, options, io, *, whole_module=False):
        self._emit("llvm", record, io, options=options, whole_module=whole_module)

    def code_native(self, record, options, io):
        self._emit("native", record, io, options=options)


@pytest.fixture
def fake_source(tmp_path) -> Path:
    # The fake toolchain ignores the module contents, any loadable file will do
    path = tmp_path / "fake_input.py"
    path.write_text("VALUE = 1\n")
    return path


@pytest.fixture
def inputs_dir() -> Path:
    return INPUTS_DIR
