"""
Toolchain introspection interface

Everything the pipeline needs to know about the compiler lives behind
``ToolchainIntrospection``. The pipeline itself never looks at compiler
objects: it only passes them back to the toolchain that produced them.
"""

from __future__ import annotations

import abc
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TextIO

from .errors import ExtractionError, UnsupportedSpecializationShape


# ============================================================
# Stages and options
# ============================================================


class Stage(StrEnum):
    Lowered = "lowered"
    Typed = "typed"
    Warntype = "warntype"
    LLVM = "llvm"
    LLVMModule = "llvm-module"
    Native = "native"

    @classmethod
    def parse(cls, fmt: str) -> "Stage":
        try:
            return cls(fmt)
        except ValueError:
            valid = ", ".join(stage.value for stage in cls)
            raise ExtractionError(f"Unknown output format {fmt!r} (expected one of {valid})", stage=fmt) from None


class DebugInfo(StrEnum):
    Default = "default"
    Source = "source"
    NoInfo = "none"


@dataclass(frozen=True)
class StageOptions:
    optimize: bool = True
    debuginfo: DebugInfo = DebugInfo.Default


# ============================================================
# Data model
# ============================================================


@dataclass(frozen=True)
class CallableBinding:
    name: str
    value: Any = field(compare=False)


@dataclass(frozen=True)
class MethodDefinition:
    binding: CallableBinding
    line: int
    # Toolchain-owned object the specializations hang off
    handle: Any = field(compare=False, repr=False)


@dataclass(frozen=True)
class SpecializationRecord:
    binding: CallableBinding
    arg_types: tuple
    method: MethodDefinition
    specialization: Any = field(default=None, compare=False, repr=False)

    @property
    def arg_names(self) -> list[str]:
        return [str(ty) for ty in self.arg_types]


@dataclass(frozen=True)
class StageOutput:
    text: str
    line_count: int

    @classmethod
    def from_text(cls, text: str) -> "StageOutput":
        if not text.endswith("\n"):
            text += "\n"
        return cls(text=text, line_count=text.count("\n"))


# ============================================================
# Specialization container shapes
# ============================================================


class Specializations(abc.ABC):
    """Tagged variant over the shapes a specialization container can take"""

    @abc.abstractmethod
    def __iter__(self) -> Iterator[Any]: ...


@dataclass(frozen=True)
class Empty(Specializations):
    def __iter__(self) -> Iterator[Any]:
        return iter(())


@dataclass(frozen=True)
class Single(Specializations):
    item: Any

    def __iter__(self) -> Iterator[Any]:
        return iter((self.item,))


@dataclass(frozen=True)
class Many(Specializations):
    items: tuple

    def __iter__(self) -> Iterator[Any]:
        return iter(self.items)


def normalize_specializations(container: Any, is_single, where: str = "") -> Specializations:
    """
    Turn whatever the toolchain stores into one of Empty / Single / Many.

    Args:
        container: The raw specialization container
        is_single: Predicate recognising a lone specialization instance
        where: Description of the owner, used in the error message

    Raises:
        UnsupportedSpecializationShape: If the container has an unknown shape
    """
    if container is None:
        return Empty()
    if is_single(container):
        return Single(container)
    if isinstance(container, Mapping):
        items = tuple(container.values())
    elif isinstance(container, (list, tuple)):
        items = tuple(container)
    else:
        raise UnsupportedSpecializationShape(type(container), where)
    return Many(items) if items else Empty()


# ============================================================
# Interface
# ============================================================


class ToolchainIntrospection(abc.ABC):
    """What the pipeline needs from the host compiler"""

    def configure(self, options: StageOptions) -> None:
        """Apply run-wide settings before the source is loaded"""

    def supports_codegen_params(self) -> bool:
        return False

    @abc.abstractmethod
    def list_bindings(self, context) -> list[tuple[str, Any]]:
        """Every (name, value) pair visible in the context, in the toolchain's order"""

    def display_name(self, name: str, value: Any) -> str:
        return getattr(value, "__name__", None) or name

    @abc.abstractmethod
    def is_function_like(self, value: Any) -> bool: ...

    @abc.abstractmethod
    def list_methods(self, binding: CallableBinding, context) -> list[MethodDefinition]:
        """Definitions of ``binding`` attributable to ``context``"""

    @abc.abstractmethod
    def list_specializations(self, method: MethodDefinition) -> Specializations: ...

    @abc.abstractmethod
    def argument_types(self, specialization: Any) -> tuple:
        """Argument types of one specialization, receiver excluded"""

    @abc.abstractmethod
    def code_lowered(self, record: SpecializationRecord, options: StageOptions, io: TextIO) -> None: ...

    @abc.abstractmethod
    def code_typed(self, record: SpecializationRecord, options: StageOptions, io: TextIO) -> None: ...

    @abc.abstractmethod
    def code_warntype(self, record: SpecializationRecord, options: StageOptions, io: TextIO) -> None: ...

    @abc.abstractmethod
    def code_llvm(
        self, record: SpecializationRecord, options: StageOptions, io: TextIO, *, whole_module: bool = False
    ) -> None: ...

    @abc.abstractmethod
    def code_native(self, record: SpecializationRecord, options: StageOptions, io: TextIO) -> None: ...
