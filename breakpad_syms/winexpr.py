"""Evaluation of STACK WIN framedata program strings.

The walker has the same interface as for STACK CFI evaluation, plus
``get_grand_callee_parameter_size()``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional, Union

from breakpad_syms.types import StackInfoWin

log = logging.getLogger(__name__)

_U32 = (1 << 32) - 1
_I32_MIN = -(1 << 31)
_I32_MAX = (1 << 31) - 1

_TOKEN_RE = re.compile(r"[^ \t\n\x0c\r]+")
_INT_RE = re.compile(r"[+-]?[0-9]+")

_OUTPUT_REGS = ("$eip", "$esp", "$ebp", "$ebx", "$esi", "$edi")


class _Undef:
    """Marker for an explicitly undefined value."""


_UNDEF = _Undef()

# A stack entry is a variable name (str), an integer (int) or _UNDEF.
_WinVal = Union[str, int, _Undef]


def win_frame_size(info: StackInfoWin, grand_callee_param_size: int) -> int:
    """Size of the frame: locals, saved registers and the grand-callee's parameters."""
    return (info.local_size + info.saved_register_size + grand_callee_param_size) & _U32


def _to_int(value: _WinVal, variables: dict[str, int]) -> Optional[int]:
    if isinstance(value, str):
        return variables.get(value)
    if isinstance(value, int):
        return value
    return None


def _parse_i32(token: str) -> Optional[int]:
    if not _INT_RE.fullmatch(token):
        return None
    value = int(token)
    if not _I32_MIN <= value <= _I32_MAX:
        return None
    return value


def _align(lhs: int, rhs: int) -> Optional[int]:
    if rhs == 0 or rhs & (rhs - 1):
        return None
    return lhs & ~(rhs - 1) & _U32


_BINARY_OPS = {
    "+": lambda lhs, rhs: (lhs + rhs) & _U32,
    "-": lambda lhs, rhs: (lhs - rhs) & _U32,
    "*": lambda lhs, rhs: (lhs * rhs) & _U32,
    "/": lambda lhs, rhs: None if rhs == 0 else lhs // rhs,
    "%": lambda lhs, rhs: None if rhs == 0 else lhs % rhs,
    "@": _align,
}


def eval_win_expr(expr: str, info: StackInfoWin, walker: Any) -> bool:
    """Evaluate a framedata program string and set the caller's registers.

    Returns True on success, False if the expression cannot be evaluated.
    """
    callee_esp = walker.get_callee_register("esp")
    if callee_esp is None:
        return False
    callee_esp &= _U32
    callee_ebp = walker.get_callee_register("ebp")
    if callee_ebp is None:
        return False
    callee_ebp &= _U32
    grand_callee_param_size = walker.get_grand_callee_parameter_size()
    frame_size = win_frame_size(info, grand_callee_param_size)
    search_start = (callee_esp + frame_size) & _U32

    variables: dict[str, int] = {"$esp": callee_esp, "$ebp": callee_ebp}
    callee_ebx = walker.get_callee_register("ebx")
    if callee_ebx is not None:
        variables["$ebx"] = callee_ebx & _U32
    variables.update(
        {
            ".cbParams": info.parameter_size,
            ".cbCalleeParams": grand_callee_param_size,
            ".cbSavedRegs": info.saved_register_size,
            ".cbLocals": info.local_size,
            ".raSearch": search_start,
            ".raSearchStart": search_start,
        }
    )

    stack: list[_WinVal] = []
    for token in _TOKEN_RE.findall(expr):
        op = _BINARY_OPS.get(token)
        if op is not None:
            if len(stack) < 2:
                return False
            rhs = _to_int(stack.pop(), variables)
            if rhs is None:
                return False
            lhs = _to_int(stack.pop(), variables)
            if lhs is None:
                return False
            result = op(lhs, rhs)
            if result is None:
                return False
            stack.append(result)
        elif token == "=":
            if len(stack) < 2:
                return False
            rhs_val = stack.pop()
            target = stack.pop()
            if not isinstance(target, str):
                return False
            if rhs_val is _UNDEF:
                variables.pop(target, None)
            else:
                value = _to_int(rhs_val, variables)
                if value is None:
                    return False
                variables[target] = value
        elif token == "^":
            if not stack:
                return False
            ptr = _to_int(stack.pop(), variables)
            if ptr is None:
                return False
            loaded = walker.get_register_at_address(ptr)
            if loaded is None:
                return False
            stack.append(loaded & _U32)
        elif token == ".undef":
            stack.append(_UNDEF)
        elif token.startswith(("$", ".")):
            stack.append(token)
        else:
            constant = _parse_i32(token)
            if constant is None:
                log.debug("STACK WIN expression eval failed - unknown token: %s", token)
                return False
            stack.append(constant & _U32)

    for reg in _OUTPUT_REGS:
        if reg in variables:
            if not walker.set_caller_register(reg[1:], variables[reg]):
                return False
    return True