"""Unwinding with STACK WIN records, in framedata and FPO modes."""

from __future__ import annotations

import logging
from typing import Any

from breakpad_syms.types import AllocatesBasePointer, ProgramString, StackInfoWin
from breakpad_syms.winexpr import eval_win_expr, win_frame_size

log = logging.getLogger(__name__)

_U64 = (1 << 64) - 1


def walk_with_stack_win_framedata(info: StackInfoWin, walker: Any) -> bool:
    """Unwind by evaluating the record's program string; True on success.

    Raises ValueError if the record carries no program string.
    """
    thing = info.program_string_or_base_pointer
    if not isinstance(thing, ProgramString):
        raise ValueError("STACK WIN framedata record has no program string")
    log.debug("using stack win framedata: %s", thing.text)
    return eval_win_expr(thing.text, info, walker)


def walk_with_stack_win_fpo(info: StackInfoWin, walker: Any) -> bool:
    """Unwind an FPO frame from its known frame size; True on success.

    Raises ValueError if the record carries a program string instead of
    the base-pointer flag.
    """
    thing = info.program_string_or_base_pointer
    if not isinstance(thing, AllocatesBasePointer):
        raise ValueError("STACK WIN FPO record has no base pointer flag")

    log.debug("using stack win fpo")
    grand_callee_param_size = walker.get_grand_callee_parameter_size()
    frame_size = win_frame_size(info, grand_callee_param_size)

    callee_esp = walker.get_callee_register("esp")
    if callee_esp is None:
        return False

    eip_address = (callee_esp + frame_size) & _U64
    caller_eip = walker.get_register_at_address(eip_address)
    if caller_eip is None:
        return False
    caller_esp = (callee_esp + frame_size + 4) & _U64

    if thing.value:
        ebp_address = (
            callee_esp + grand_callee_param_size + info.saved_register_size - 8
        ) & _U64
        caller_ebp = walker.get_register_at_address(ebp_address)
        if caller_ebp is None:
            return False
    else:
        # %ebx is commonly unmodified by simple forwarding functions that do
        # not use a base pointer, so carry it through.
        callee_ebx = walker.get_callee_register("ebx")
        if callee_ebx is not None and not walker.set_caller_register("ebx", callee_ebx):
            return False
        caller_ebp = walker.get_callee_register("ebp")
        if caller_ebp is None:
            return False

    for name, value in (("eip", caller_eip), ("esp", caller_esp), ("ebp", caller_ebp)):
        if not walker.set_caller_register(name, value):
            return False
    return True