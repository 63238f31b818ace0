# breakpad-syms

Read Breakpad text-format symbol files (`.sym`) and evaluate the stack
unwinding rules they carry. The package uses only the standard library.

- `breakpad_syms.parser` parses a symbol file into its records: source files,
  public symbols, functions with their line data, and `STACK CFI` and
  `STACK WIN` unwind records.
- `breakpad_syms.types` holds the record types (`PublicSymbol`, `SourceLine`,
  `Function`, `CfiRules`, `StackInfoCfi`, `StackInfoWin`, `ProgramString`,
  `AllocatesBasePointer`, `WinFrameKind`).
- `breakpad_syms.rangemap` provides `Range`, an inclusive address range, and
  `RangeMap`, a sorted map from non-overlapping ranges to values.
- `breakpad_syms.cfi` evaluates `STACK CFI` rules.
- `breakpad_syms.winexpr` and `breakpad_syms.winwalk` evaluate `STACK WIN`
  records, in program-string ("framedata") and FPO modes.

## Parsing a symbol file

```python
from breakpad_syms.parser import parse_records

records = parse_records(b"""MODULE Linux x86 ffff0000 bar
FILE 53 bar.c
PUBLIC 1234 10 some public
FUNC 1000 30 10 another func
1000 30 7 53
""")
print(records.files)                 # {53: 'bar.c'}
print(records.publics[0].name)       # 'some public'
func = records.functions[0]
print(func.name, func.memory_range())
line = func.lines.get(0x1010)
print(line.line, records.files[line.file])   # 7 bar.c
```

`parse_records` returns a `ParsedRecords` with `files`, `publics` (sorted by
address, then name, then parameter size), `functions`, `cfi_stack_info`,
`win_stack_framedata_info` and `win_stack_fpo_info`. The leading `MODULE`
line is optional; `INFO` lines are accepted and ignored; `FUNC` and `PUBLIC`
may carry the `m` flag. Line endings may be `\n`, `\r\n` or several `\r`
before the `\n`.

A function's line records become a `RangeMap`: zero-size lines are dropped,
as are lines overlapping an earlier one with different data. A `STACK WIN`
record with an empty range, or overlapping the previous record of the same
kind, is dropped; record types other than `0` (FPO) and `4` (framedata) are
ignored. `STACK CFI` records following a `STACK CFI INIT` are sorted into
its `add_rules`.

Empty, truncated or malformed input raises `breakpad_syms.parser.ParseError`
(a `ValueError`), naming the first line that could not be read.

The single-record parsers (`parse_module_line`, `parse_info_line`,
`parse_file_line`, `parse_public_line`, `parse_func_lines`,
`parse_stack_win_line`, `parse_stack_cfi`, `parse_stack_cfi_init`,
`parse_stack_cfi_lines`) each take bytes and return `(value, rest)`, or raise
`ParseError`.

## Range maps

`into_rangemap_safe(pairs)` builds a `RangeMap` from `(range_or_None, value)`
pairs that may overlap: pairs without a range are dropped, a pair that
overlaps the previous one with a different value is dropped, and touching or
overlapping pairs with equal values are merged. `RangeMap.get(address)`
returns the value whose range covers the address, or `None`.

## Unwinding with STACK CFI

The walker is any object with these methods:

- `get_callee_register(name)` and `get_register_at_address(address)`,
  returning an int or `None`;
- `set_cfa(value)`, `set_ra(value)` and `set_caller_register(name, value)`,
  returning true on success;
- `clear_caller_register(name)`.

```python
from breakpad_syms.cfi import walk_with_stack_cfi
from breakpad_syms.types import CfiRules

class Walker:
    def __init__(self, registers, memory):
        self.registers, self.memory, self.caller = registers, memory, {}
    def get_callee_register(self, name):
        return self.registers.get(name)
    def get_register_at_address(self, address):
        return self.memory.get(address)
    def set_cfa(self, value):
        self.caller["cfa"] = value
        return True
    def set_ra(self, value):
        self.caller["ra"] = value
        return True
    def set_caller_register(self, name, value):
        self.caller[name] = value
        return True
    def clear_caller_register(self, name):
        self.caller.pop(name, None)

walker = Walker({"rsp": 32}, {32: 0x401000})
init = CfiRules(0x1000, ".cfa: $rsp 8 + .ra: .cfa -8 + ^")
print(walk_with_stack_cfi(init, [], walker), walker.caller)
# True {'cfa': 40, 'ra': 4198400}
```

Rules are `REG: EXPR` pairs; later rules for a register override earlier
ones. Expressions are postfix with `+ - * / % @ ^`, `.cfa`, `.undef`,
`$registers`, bare (ARM-style) register names and signed 64-bit integers,
all in wrapping 64-bit arithmetic. `.cfa` and `.ra` must both be present and
evaluate, or the walk fails and `walk_with_stack_cfi` returns `False`. Other
registers that fail to evaluate are cleared in the caller.

## Unwinding with STACK WIN

`eval_win_expr(expr, info, walker)` evaluates a program string in 32-bit
arithmetic, with variables and the `=` operator, starting from the callee's
`esp`, `ebp` and (if known) `ebx` and the constants `.cbParams`,
`.cbCalleeParams`, `.cbSavedRegs`, `.cbLocals`, `.raSearch` and
`.raSearchStart`. Afterwards `$eip`, `$esp`, `$ebp`, `$ebx`, `$esi` and
`$edi`, where defined, are set in the caller. The walker also needs
`get_grand_callee_parameter_size()`.

`walk_with_stack_win_framedata(info, walker)` evaluates the record's program
string; `walk_with_stack_win_fpo(info, walker)` recovers `eip`, `esp` and
`ebp` from the frame size. Both return `True` on success and raise
`ValueError` when the record is of the other kind.

## What the package does not do

There is no lookup layer over the parsed records: no object that finds the
function, source line or nearest public symbol for an address within a
module, no locating of symbol files on disk or over the network, no caching
symbolizer, and no command-line tool. Callers work with `ParsedRecords` and
`RangeMap` directly.