"""
Block framing of the explorer output

Each specialization becomes::

    <[source line] [number of output lines] [function name] [argument types]>
    ...exactly that many lines of code...
    <empty line>

The reader side is used by the language server and by the tests.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TextIO

from .errors import FramingError
from .toolchain import SpecializationRecord, StageOutput

HEADER_PATTERN = re.compile(r"^<(\d+) (\d+) (\S+) (.*)>$")


def format_header(record: SpecializationRecord, output: StageOutput) -> str:
    args = ", ".join(record.arg_names)
    return f"<{record.method.line} {output.line_count} {record.binding.name} {args}>"


def write_block(stream: TextIO, record: SpecializationRecord, output: StageOutput) -> None:
    stream.write(format_header(record, output))
    stream.write("\n")
    stream.write(output.text)
    stream.write("\n")


def serialize(blocks: Iterable[tuple[SpecializationRecord, StageOutput]], stream: TextIO) -> int:
    count = 0
    for record, output in blocks:
        write_block(stream, record, output)
        count += 1
    return count


# ============================================================
# Reading
# ============================================================


@dataclass(frozen=True)
class Block:
    line: int
    line_count: int
    name: str
    args: str
    text: str

    @property
    def arg_list(self) -> list[str]:
        return split_args(self.args)


def split_args(args: str) -> list[str]:
    """Split a rendered argument list on top-level ", " only"""
    parts = []
    depth = 0
    current = []
    i = 0
    while i < len(args):
        ch = args[i]
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        if depth == 0 and args.startswith(", ", i):
            parts.append("".join(current))
            current = []
            i += 2
            continue
        current.append(ch)
        i += 1
    if current:
        parts.append("".join(current))
    return parts


def read_blocks(text: str) -> list[Block]:
    """
    Parse explorer output back into blocks.

    Raises:
        FramingError: If a header is malformed, a block is truncated or the
            separator line is missing
    """
    lines = text.split("\n")
    # a well formed file ends with "\n", which leaves one empty trailing item
    if lines and lines[-1] == "":
        lines.pop()

    blocks = []
    i = 0
    while i < len(lines):
        m = HEADER_PATTERN.match(lines[i])
        if m is None:
            raise FramingError(i + 1, f"expected a block header, got {lines[i]!r}")
        line, line_count, name, args = int(m.group(1)), int(m.group(2)), m.group(3), m.group(4)
        body_start = i + 1
        body_end = body_start + line_count
        if body_end > len(lines):
            raise FramingError(i + 1, f"block {name} declares {line_count} lines but the output ends early")
        if body_end == len(lines) or lines[body_end] != "":
            raise FramingError(body_end + 1, f"missing blank line after block {name}")
        body = "".join(f"{line_text}\n" for line_text in lines[body_start:body_end])
        blocks.append(Block(line=line, line_count=line_count, name=name, args=args, text=body))
        i = body_end + 1
    return blocks
