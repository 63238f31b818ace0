"""Record types found in Breakpad text-format symbol files."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from breakpad_syms.rangemap import Range, RangeMap

_U64_MAX = (1 << 64) - 1


def _memory_range(start: int, size: int) -> Optional[Range]:
    if size == 0:
        return None
    end = start + size
    if end > _U64_MAX:
        return None
    return Range(start, end - 1)


@dataclass(frozen=True)
class PublicSymbol:
    """A publicly visible linker symbol."""

    address: int
    parameter_size: int
    name: str

    def sort_key(self) -> tuple[int, str, int]:
        """Order by address, then name, then parameter size."""
        return (self.address, self.name, self.parameter_size)

    def __lt__(self, other: PublicSymbol) -> bool:
        if not isinstance(other, PublicSymbol):
            return NotImplemented
        return self.sort_key() < other.sort_key()


@dataclass(frozen=True)
class SourceLine:
    """A mapping from machine code bytes to a source line and file."""

    address: int
    size: int
    file: int
    line: int


@dataclass
class Function:
    """A source-language function and its line information."""

    address: int
    size: int
    parameter_size: int
    name: str
    lines: RangeMap[SourceLine] = field(default_factory=RangeMap)

    def memory_range(self) -> Optional[Range]:
        """The addresses covered by this function, or None if empty or overflowing."""
        return _memory_range(self.address, self.size)


@dataclass(frozen=True, order=True)
class CfiRules:
    """DWARF CFI rules for recovering registers at a specific address."""

    address: int
    rules: str


@dataclass
class StackInfoCfi:
    """Unwinding information for an address range using DWARF CFI."""

    init: CfiRules
    size: int
    add_rules: list[CfiRules] = field(default_factory=list)

    def memory_range(self) -> Optional[Range]:
        """The addresses covered by these rules, or None if empty or overflowing."""
        return _memory_range(self.init.address, self.size)


@dataclass(frozen=True)
class ProgramString:
    """A STACK WIN program string to evaluate."""

    text: str


@dataclass(frozen=True)
class AllocatesBasePointer:
    """Whether a STACK WIN FPO frame allocates a base pointer."""

    value: bool


WinStackThing = Union[ProgramString, AllocatesBasePointer]


@dataclass(frozen=True)
class StackInfoWin:
    """Unwinding information using Windows frame info."""

    address: int
    size: int
    prologue_size: int
    epilogue_size: int
    parameter_size: int
    saved_register_size: int
    local_size: int
    max_stack_size: int
    program_string_or_base_pointer: WinStackThing

    def memory_range(self) -> Optional[Range]:
        """The addresses covered by this record, or None if empty or overflowing."""
        return _memory_range(self.address, self.size)


class WinFrameKind(Enum):
    """The frame type of a STACK WIN record; unknown codes are UNHANDLED."""

    FPO = "0"
    FRAME_DATA = "4"
    UNHANDLED = "unhandled"

    @classmethod
    def _missing_(cls, value: object) -> WinFrameKind:
        return cls.UNHANDLED