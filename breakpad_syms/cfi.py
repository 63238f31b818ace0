"""Evaluation of STACK CFI unwinding rules.

A walker passed to these functions provides:
``get_register_at_address(address)`` and ``get_callee_register(name)``
returning an int or None; ``set_caller_register(name, value)``,
``set_cfa(value)`` and ``set_ra(value)`` returning True on success; and
``clear_caller_register(name)``.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

log = logging.getLogger(__name__)

_U64 = (1 << 64) - 1
_I64_MIN = -(1 << 63)
_I64_MAX = (1 << 63) - 1

_TOKEN_RE = re.compile(r"[^ \t\n\x0c\r]+")
_INT_RE = re.compile(r"[+-]?[0-9]+")


class CfiReg(Enum):
    """The two special CFI registers."""

    CFA = ".cfa"
    RA = ".ra"


RegKey = Union[CfiReg, str]


def _tokens(text: str) -> list[str]:
    return _TOKEN_RE.findall(text)


def _register_for(name: str) -> RegKey:
    if name == ".cfa":
        return CfiReg.CFA
    if name == ".ra":
        return CfiReg.RA
    if name.startswith("$"):
        return name[1:]
    return name


def parse_cfi_exprs(rules: str, output: Optional[dict[RegKey, str]] = None) -> Optional[dict[RegKey, str]]:
    """Parse ``REG: EXPR ...`` pairs from ``rules`` on top of ``output``.

    Returns a new mapping where later rules override earlier ones, or None
    if the rules are malformed.
    """
    exprs: dict[RegKey, str] = dict(output or {})
    current: Optional[RegKey] = None
    have_reg = False
    expr: list[str] = []
    for token in _tokens(rules):
        if token.endswith(":"):
            if have_reg:
                if not expr:
                    return None
                exprs[current] = " ".join(expr)  # type: ignore[index]
                expr = []
            current = _register_for(token[:-1])
            have_reg = True
        else:
            if not have_reg:
                return None
            expr.append(token)
    if not have_reg or not expr:
        return None
    exprs[current] = " ".join(expr)  # type: ignore[index]
    return exprs


def _align(lhs: int, rhs: int) -> Optional[int]:
    if rhs == 0 or rhs & (rhs - 1):
        return None
    return lhs & ~(rhs - 1) & _U64


_BINARY_OPS: dict[str, Callable[[int, int], Optional[int]]] = {
    "+": lambda lhs, rhs: (lhs + rhs) & _U64,
    "-": lambda lhs, rhs: (lhs - rhs) & _U64,
    "*": lambda lhs, rhs: (lhs * rhs) & _U64,
    "/": lambda lhs, rhs: None if rhs == 0 else lhs // rhs,
    "%": lambda lhs, rhs: None if rhs == 0 else lhs % rhs,
    "@": _align,
}


def _parse_i64(token: str) -> Optional[int]:
    if not _INT_RE.fullmatch(token):
        return None
    value = int(token)
    if not _I64_MIN <= value <= _I64_MAX:
        return None
    return value


def eval_cfi_expr(expr: str, walker: Any, cfa: Optional[int] = None) -> Optional[int]:
    """Evaluate a postfix CFI expression; None if it cannot be evaluated."""
    stack: list[int] = []
    for token in _tokens(expr):
        op = _BINARY_OPS.get(token)
        if op is not None:
            if len(stack) < 2:
                return None
            rhs = stack.pop()
            lhs = stack.pop()
            result = op(lhs, rhs)
            if result is None:
                return None
            stack.append(result)
        elif token == "^":
            if not stack:
                return None
            value = walker.get_register_at_address(stack.pop())
            if value is None:
                return None
            stack.append(value)
        elif token == ".cfa":
            if cfa is None:
                return None
            stack.append(cfa)
        elif token == ".undef":
            return None
        elif "$" in token:
            value = walker.get_callee_register(token.split("$", 1)[1])
            if value is None:
                return None
            stack.append(value)
        else:
            constant = _parse_i64(token)
            if constant is not None:
                stack.append(constant & _U64)
                continue
            value = walker.get_callee_register(token)
            if value is None:
                log.debug("STACK CFI expression eval failed - unknown token: %s", token)
                return None
            stack.append(value)
    return stack[0] if len(stack) == 1 else None


def walk_with_stack_cfi(init: Any, additional: Iterable[Any], walker: Any) -> bool:
    """Recover the caller's registers from CFI rules; True on success.

    ``init`` and each of ``additional`` carry a ``rules`` string.
    """
    exprs = parse_cfi_exprs(init.rules)
    if exprs is None:
        return False
    for line in additional:
        exprs = parse_cfi_exprs(line.rules, exprs)
        if exprs is None:
            return False

    cfa_expr = exprs.pop(CfiReg.CFA, None)
    ra_expr = exprs.pop(CfiReg.RA, None)
    if cfa_expr is None or ra_expr is None:
        return False

    cfa = eval_cfi_expr(cfa_expr, walker, None)
    if cfa is None:
        return False
    ra = eval_cfi_expr(ra_expr, walker, cfa)
    if ra is None:
        return False

    if not walker.set_cfa(cfa) or not walker.set_ra(ra):
        return False

    for reg, expr in exprs.items():
        value = eval_cfi_expr(expr, walker, cfa)
        if value is None:
            walker.clear_caller_register(reg)
        else:
            walker.set_caller_register(reg, value)
    return True