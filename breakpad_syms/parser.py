"""Parsing of Breakpad text-format symbol files into records."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from breakpad_syms.rangemap import Range, into_rangemap_safe
from breakpad_syms.types import (
    AllocatesBasePointer,
    CfiRules,
    Function,
    ProgramString,
    PublicSymbol,
    SourceLine,
    StackInfoCfi,
    StackInfoWin,
    WinFrameKind,
)

log = logging.getLogger(__name__)

_U32_MAX = (1 << 32) - 1
_U64_MAX = (1 << 64) - 1


class ParseError(ValueError):
    """Raised when symbol file data cannot be parsed."""


_SP = rb"[ \t]+"
_EOL = rb"\r*\n"
_TEXT = rb"[^\r\n]*"
_HEX = rb"[0-9a-fA-F]+"
# 32-bit hex fields accept lowercase digits only, at most eight of them.
_HEX32 = rb"[0-9a-f]{1,8}"
_DEC = rb"[0-9]+"


def _g(name: bytes, pattern: bytes) -> bytes:
    return b"(?P<" + name + b">" + pattern + b")"


def _compile(*parts: bytes) -> re.Pattern[bytes]:
    return re.compile(b"".join(parts))


_MODULE_RE = _compile(
    rb"MODULE", _SP, rb"[A-Za-z0-9]+", _SP,
    # the cpu field runs up to the first space, tabs included
    rb"(?=(?P<cpu>[^ ]*))(?P=cpu)", _SP,
    _HEX, _SP, _TEXT, _EOL,
)
_INFO_RE = _compile(rb"INFO", _SP, _g(b"text", _TEXT), _EOL)
_FILE_RE = _compile(rb"FILE", _SP, _g(b"id", _DEC), _SP, _g(b"name", _TEXT), _EOL)
_PUBLIC_RE = _compile(
    rb"PUBLIC(?:[ \t]+m)?", _SP,
    _g(b"address", _HEX), _SP,
    _g(b"parameter_size", _HEX32), _SP,
    _g(b"name", _TEXT), _EOL,
)
_FUNC_RE = _compile(
    rb"FUNC(?:[ \t]+m)?", _SP,
    _g(b"address", _HEX), _SP,
    _g(b"size", _HEX32), _SP,
    _g(b"parameter_size", _HEX32), _SP,
    _g(b"name", _TEXT), _EOL,
)
_LINE_DATA_RE = _compile(
    _g(b"address", _HEX), _SP,
    _g(b"size", _HEX32), _SP,
    _g(b"line", _DEC), _SP,
    _g(b"file", _DEC), _EOL,
)
_WIN_SIZE_FIELDS = (
    "code_size",
    "prologue_size",
    "epilogue_size",
    "parameter_size",
    "saved_register_size",
    "local_size",
    "max_stack_size",
)
_STACK_WIN_RE = _compile(
    rb"STACK WIN", _SP,
    _g(b"type", _HEX), _SP,
    _g(b"address", _HEX), _SP,
    *(_g(name.encode(), _HEX32) + _SP for name in _WIN_SIZE_FIELDS),
    _g(b"has_program_string", _DEC), _SP,
    _g(b"rest", _TEXT), _EOL,
)
_STACK_CFI_RE = _compile(
    rb"STACK CFI", _SP, _g(b"address", _HEX), _SP, _g(b"rules", _TEXT), _EOL
)
_STACK_CFI_INIT_RE = _compile(
    rb"STACK CFI INIT", _SP,
    _g(b"address", _HEX), _SP,
    _g(b"size", _HEX32), _SP,
    _g(b"rules", _TEXT), _EOL,
)


def _match(pattern: re.Pattern[bytes], data: bytes, what: str) -> re.Match[bytes]:
    found = pattern.match(data)
    if found is None:
        raise ParseError(f"not a valid {what} record")
    return found


def _utf8(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError(f"invalid UTF-8 text: {raw!r}") from exc


def _hex_u64(raw: bytes) -> int:
    value = int(raw, 16)
    if value > _U64_MAX:
        raise ParseError(f"hex value {raw!r} does not fit in 64 bits")
    return value


def _decimal_u32(raw: bytes) -> int:
    value = int(raw)
    if value > _U32_MAX:
        raise ParseError(f"decimal value {raw!r} does not fit in 32 bits")
    return value


def parse_module_line(data: bytes) -> tuple[None, bytes]:
    """Match a MODULE record; returns ``(None, rest)``."""
    found = _match(_MODULE_RE, data, "MODULE")
    return None, data[found.end():]


def parse_info_line(data: bytes) -> tuple[str, bytes]:
    """Match an INFO record; returns its text and the rest."""
    found = _match(_INFO_RE, data, "INFO")
    return found["text"].decode("utf-8", "replace"), data[found.end():]


def parse_file_line(data: bytes) -> tuple[tuple[int, str], bytes]:
    """Match a FILE record; returns ``((id, filename), rest)``."""
    found = _match(_FILE_RE, data, "FILE")
    return (_decimal_u32(found["id"]), _utf8(found["name"])), data[found.end():]


def parse_public_line(data: bytes) -> tuple[PublicSymbol, bytes]:
    """Match a PUBLIC record."""
    found = _match(_PUBLIC_RE, data, "PUBLIC")
    symbol = PublicSymbol(
        address=_hex_u64(found["address"]),
        parameter_size=int(found["parameter_size"], 16),
        name=_utf8(found["name"]),
    )
    return symbol, data[found.end():]


def _parse_line_data(data: bytes) -> tuple[SourceLine, bytes]:
    found = _match(_LINE_DATA_RE, data, "line data")
    line = SourceLine(
        address=_hex_u64(found["address"]),
        size=int(found["size"], 16),
        file=_decimal_u32(found["file"]),
        line=_decimal_u32(found["line"]),
    )
    return line, data[found.end():]


def _line_range(line: SourceLine) -> Optional[Range]:
    # Line data from PDB files often has zero-size entries; they get no range.
    if line.size == 0 or line.address + line.size - 1 > _U64_MAX:
        return None
    return Range(line.address, line.address + line.size - 1)


def parse_func_lines(data: bytes) -> tuple[Function, bytes]:
    """Match a FUNC record and the line records that follow it."""
    found = _match(_FUNC_RE, data, "FUNC")
    address = _hex_u64(found["address"])
    name = _utf8(found["name"])
    rest = data[found.end():]
    lines: list[SourceLine] = []
    while True:
        try:
            line, rest = _parse_line_data(rest)
        except ParseError:
            break
        lines.append(line)
    function = Function(
        address=address,
        size=int(found["size"], 16),
        parameter_size=int(found["parameter_size"], 16),
        name=name,
        lines=into_rangemap_safe((_line_range(line), line) for line in lines),
    )
    return function, rest


def parse_stack_win_line(data: bytes) -> tuple[tuple[WinFrameKind, StackInfoWin], bytes]:
    """Match a STACK WIN record; returns ``((kind, info), rest)``."""
    found = _match(_STACK_WIN_RE, data, "STACK WIN")
    rest_text = _utf8(found["rest"])
    if found["has_program_string"] == b"1":
        thing = ProgramString(rest_text)
    else:
        thing = AllocatesBasePointer(rest_text == "1")
    sizes = {name: int(found[name], 16) for name in _WIN_SIZE_FIELDS}
    info = StackInfoWin(
        address=_hex_u64(found["address"]),
        size=sizes["code_size"],
        prologue_size=sizes["prologue_size"],
        epilogue_size=sizes["epilogue_size"],
        parameter_size=sizes["parameter_size"],
        saved_register_size=sizes["saved_register_size"],
        local_size=sizes["local_size"],
        max_stack_size=sizes["max_stack_size"],
        program_string_or_base_pointer=thing,
    )
    kind = WinFrameKind(found["type"].decode("ascii"))
    return (kind, info), data[found.end():]


def parse_stack_cfi(data: bytes) -> tuple[CfiRules, bytes]:
    """Match a STACK CFI record."""
    found = _match(_STACK_CFI_RE, data, "STACK CFI")
    rules = CfiRules(address=_hex_u64(found["address"]), rules=_utf8(found["rules"]))
    return rules, data[found.end():]


def parse_stack_cfi_init(data: bytes) -> tuple[tuple[CfiRules, int], bytes]:
    """Match a STACK CFI INIT record; returns ``((rules, size), rest)``."""
    found = _match(_STACK_CFI_INIT_RE, data, "STACK CFI INIT")
    rules = CfiRules(address=_hex_u64(found["address"]), rules=_utf8(found["rules"]))
    return (rules, int(found["size"], 16)), data[found.end():]


def parse_stack_cfi_lines(data: bytes) -> tuple[StackInfoCfi, bytes]:
    """Match a STACK CFI INIT record and the STACK CFI records after it."""
    (init, size), rest = parse_stack_cfi_init(data)
    add_rules: list[CfiRules] = []
    while True:
        try:
            rule, rest = parse_stack_cfi(rest)
        except ParseError:
            break
        add_rules.append(rule)
    return StackInfoCfi(init=init, size=size, add_rules=sorted(add_rules)), rest


@dataclass
class ParsedRecords:
    """The records of a symbol file in file order, with publics sorted.

    STACK WIN records without a valid range, or overlapping the previous
    record of the same kind, have been dropped.
    """

    files: dict[int, str] = field(default_factory=dict)
    publics: list[PublicSymbol] = field(default_factory=list)
    functions: list[Function] = field(default_factory=list)
    cfi_stack_info: list[StackInfoCfi] = field(default_factory=list)
    win_stack_framedata_info: list[StackInfoWin] = field(default_factory=list)
    win_stack_fpo_info: list[StackInfoWin] = field(default_factory=list)

    def _add_win(self, kind: WinFrameKind, info: StackInfoWin) -> None:
        if kind is WinFrameKind.FRAME_DATA:
            target = self.win_stack_framedata_info
        elif kind is WinFrameKind.FPO:
            target = self.win_stack_fpo_info
        else:
            return
        rng = info.memory_range()
        if rng is None or (target and target[-1].memory_range().intersects(rng)):
            log.warning("STACK WIN entry had invalid range, dropping it")
            return
        target.append(info)


_BODY_PARSERS: tuple[tuple[str, Callable[[bytes], tuple[object, bytes]]], ...] = (
    ("info", parse_info_line),
    ("file", parse_file_line),
    ("public", parse_public_line),
    ("func", parse_func_lines),
    ("stack_win", parse_stack_win_line),
    ("stack_cfi", parse_stack_cfi_lines),
)


def parse_records(data: bytes) -> ParsedRecords:
    """Parse a whole symbol file into its records.

    Raises ParseError if the data is empty or anything is left unparsed.
    """
    data = bytes(data)
    # The MODULE header check needs at least as many bytes as its keyword.
    if len(data) < len(b"MODULE"):
        raise ParseError("Failed to parse file: incomplete data")
    rest = data
    try:
        _, rest = parse_module_line(rest)
    except ParseError:
        pass

    records = ParsedRecords()
    while rest:
        for kind, parser in _BODY_PARSERS:
            try:
                value, rest = parser(rest)
            except ParseError:
                continue
            break
        else:
            break
        match kind:
            case "file":
                file_id, filename = value  # type: ignore[misc]
                records.files[file_id] = filename
            case "public":
                records.publics.append(value)  # type: ignore[arg-type]
            case "func":
                records.functions.append(value)  # type: ignore[arg-type]
            case "stack_win":
                records._add_win(*value)  # type: ignore[misc]
            case "stack_cfi":
                records.cfi_stack_info.append(value)  # type: ignore[arg-type]

    if rest:
        next_line = rest.split(b"\r", 1)[0].decode("utf-8", "replace")
        raise ParseError(f"Failed to parse file, next line was: `{next_line}`")

    records.publics.sort(key=PublicSymbol.sort_key)
    return records