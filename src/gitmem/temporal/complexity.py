"""Indentation-based complexity of a file snapshot.

Indentation depth is a language-agnostic proxy for nesting: it needs no
parser and is stable across formatting-only changes to a line.
"""

from dataclasses import dataclass

BINARY_SNIFF_BYTES = 8192


@dataclass(frozen=True)
class ComplexityResult:
    lines_of_code: int  # non-blank lines
    indent_complexity: int  # sum of indent levels over non-blank lines
    max_indent: int


EMPTY = ComplexityResult(lines_of_code=0, indent_complexity=0, max_indent=0)


def compute_complexity(content: str, tab_width: int = 4) -> ComplexityResult:
    """Sum of indentation levels, where one level is ``tab_width`` columns.

    A tab counts as ``tab_width`` columns; partial levels round down.
    """
    loc = 0
    total = 0
    deepest = 0

    for line in content.split("\n"):
        if not line.strip():
            continue
        loc += 1

        columns = 0
        for ch in line:
            if ch == " ":
                columns += 1
            elif ch == "\t":
                columns += tab_width
            else:
                break

        level = columns // tab_width
        total += level
        deepest = max(deepest, level)

    return ComplexityResult(lines_of_code=loc, indent_complexity=total, max_indent=deepest)


def is_binary(content: bytes) -> bool:
    """Same heuristic git uses: a NUL byte in the first 8KB."""
    return b"\x00" in content[:BINARY_SNIFF_BYTES]
