from dataclasses import dataclass

from breakpad_syms.cfi import CfiReg, eval_cfi_expr, parse_cfi_exprs, walk_with_stack_cfi

STATIC_REGS = {
    "cfa", "ra", "esp", "eip", "ebp", "eax", "ebx",
    "rsp", "rip", "rbp", "rax", "rbx", "x11", "x12",
}


@dataclass
class Rules:
    address: int
    rules: str


class FakeWalker:
    def __init__(self, stack, callee_regs, width):
        self.width = width
        self.mask = (1 << (8 * width)) - 1
        self.stack = bytes(stack)
        self.callee_regs = dict(callee_regs)
        self.caller_regs = {}
        self.instruction = 0xF1CEFA32 & self.mask
        self.grand_callee_param_size = 4

    def get_instruction(self):
        return self.instruction

    def get_grand_callee_parameter_size(self):
        return self.grand_callee_param_size

    def get_register_at_address(self, address):
        chunk = self.stack[address:address + self.width]
        if len(chunk) != self.width:
            return None
        return int.from_bytes(chunk, "little")

    def get_callee_register(self, name):
        return self.callee_regs.get(name)

    def set_caller_register(self, name, val):
        if name not in STATIC_REGS:
            return False
        self.caller_regs[name] = val & self.mask
        return True

    def clear_caller_register(self, name):
        self.caller_regs.pop(name, None)

    def set_cfa(self, val):
        self.caller_regs["cfa"] = val & self.mask
        return True

    def set_ra(self, val):
        self.caller_regs["ra"] = val & self.mask
        return True


def build_cfi_rules(init, additional=()):
    return Rules(0, init), [Rules(i + 1, r) for i, r in enumerate(additional)]


def walk(walker, init, additional=()):
    i, a = build_cfi_rules(init, additional)
    return walk_with_stack_cfi(i, a, walker)


def u32(v):
    return v & 0xFFFFFFFF


def test_parse_cfi_exprs_later_overrides():
    exprs = parse_cfi_exprs(".cfa: $rsp 8 + .ra: .cfa -8 + ^")
    assert exprs == {CfiReg.CFA: "$rsp 8 +", CfiReg.RA: ".cfa -8 + ^"}
    merged = parse_cfi_exprs(".cfa: $rsp 16 + $rax: .cfa -16 + ^", exprs)
    assert merged[CfiReg.CFA] == "$rsp 16 +"
    assert merged["rax"] == ".cfa -16 + ^"
    assert exprs[CfiReg.CFA] == "$rsp 8 +"


def test_parse_cfi_exprs_malformed():
    assert parse_cfi_exprs(".cfa 8 16 *") is None
    assert parse_cfi_exprs(".cfa: 12 .ra: 8 $rax:") is None
    assert parse_cfi_exprs(".cfa: 12 .ra: 8 $rax: $rbx: 8") is None


def test_eval_cfi_expr_uses_cfa():
    walker = FakeWalker(bytes(16), {"rsp": 32}, 8)
    assert eval_cfi_expr(".cfa 1 +", walker, 7) == 8
    assert eval_cfi_expr(".cfa 1 +", walker, None) is None
    assert eval_cfi_expr("$rsp 8 +", walker) == 40


def test_stack_cfi_doc_example():
    final_cfa = 32 + 24
    final_ra = 0xFA1E_F2E6_A2DF_2B68
    final_rax = 0xB3EF_04CE_4321_FE2A
    stack = bytearray(1600)
    stack[final_cfa - 8:final_cfa] = final_ra.to_bytes(8, "little")
    stack[final_cfa - 16:final_cfa - 8] = final_rax.to_bytes(8, "little")
    walker = FakeWalker(stack, {"rsp": 32, "rip": 1600}, 8)

    assert walk(
        walker,
        ".cfa: $rsp 8 + .ra: .cfa -8 + ^",
        [".cfa: $rsp 16 + $rax: .cfa -16 + ^", ".cfa: $rsp 24 +"],
    )
    assert len(walker.caller_regs) == 3
    assert walker.caller_regs["cfa"] == final_cfa
    assert walker.caller_regs["ra"] == final_ra
    assert walker.caller_regs["rax"] == final_rax


def test_stack_cfi_ops():
    walker = FakeWalker(bytes(1600), {"esp": 32, "eip": 1600}, 4)
    cases = [
        (".cfa: 1 2 + .ra: -4 0 +", 3, u32(-4)),
        (".cfa: 5 3 - .ra: -4 2 -", 2, u32(-6)),
        (".cfa: 5 3 * .ra: -4 2 *", 15, u32(-8)),
        (".cfa: 5 3 / .ra: -4 2 /", 1, u32(-2)),
        (".cfa: 5 3 % .ra: -1 2 %", 2, 1),
        (".cfa: 8 16 @ .ra: 161 8 @", 0, 160),
    ]
    for rules, cfa, ra in cases:
        walker.caller_regs.clear()
        assert walk(walker, rules)
        assert len(walker.caller_regs) == 2
        assert walker.caller_regs["cfa"] == cfa
        assert walker.caller_regs["ra"] == ra

    for bad in [
        ".cfa: 1 + .ra: 8",
        ".cfa: 1 - .ra: 8",
        ".cfa: 1 * .ra: 8",
        ".cfa: 1 / .ra: 8",
        ".cfa: 1 % .ra: 8",
        ".cfa: 1 @ .ra: 8",
        ".cfa: ^ .ra: 8",
        ".cfa: 1 0 / .ra: 8",
        ".cfa: 1 0 % .ra: 8",
        ".cfa: 1 0 @ .ra: 8",
        ".cfa: 1 3 @ .ra: 8",
    ]:
        assert walk(walker, bad) is False, bad


def test_stack_cfi_errors():
    walker = FakeWalker(bytes(1600), {"rsp": 32, "rip": 1600}, 8)
    for bad in [
        ".cfa: 8 16 +",
        ".ra: 8 16 *",
        ".cfa 8 16 *",
        ".esp 8 16 * .cfa: 16 .ra: 8",
        ".cfa: 8 12 .ra: 8",
        ".cfa: 12 .ra: 8 $rax:",
        ".cfa: 12 .ra: 8 $rax: ",
        ".cfa: 12 .ra: 8 $rax: $rbx: 8",
        ".cfa: 12 .ra: $rsp $rip =",
        ".cfa: .undef .ra: 8",
        ".cfa: 8 .ra: .undef",
        ".cfa: 2000 ^ .ra: 8",
        ".cfa: 8 .ra: $kitties",
        ".cfa: 8 .ra: $rax",
        ".cfa: .cfa .ra: 2",
        ".cfa: .ra .ra: 2",
        ".cfa: 1 .ra: .ra",
    ]:
        assert walk(walker, bad) is False, bad

    assert walk(
        walker,
        ".cfa: $rsp 8 + .ra: .cfa -8 + ^",
        [".cfa $rsp 16 + $rax: .cfa -16 + ^", ".cfa $rsp 24 +"],
    ) is False


def test_stack_cfi_corners():
    walker = FakeWalker(bytes(1600), {"rsp": 32, "rip": 1600}, 8)

    walker.caller_regs.clear()
    assert walk(walker, ".cfa: 8 .ra: 12 $rax: 16")
    assert walker.caller_regs == {"cfa": 8, "ra": 12, "rax": 16}

    walker.caller_regs.clear()
    assert walk(walker, ".cfa: 8 .ra: 12 $rax: .undef $rbx: 1 .undef +")
    assert walker.caller_regs == {"cfa": 8, "ra": 12}

    walker.caller_regs.clear()
    assert walk(walker, ".cfa: 8 .ra: 12 $kitties: 16")
    assert walker.caller_regs == {"cfa": 8, "ra": 12}

    walker.caller_regs.clear()
    assert walk(walker, ".cfa: 12 .ra: 8 $rax:$rbx: 8")
    assert walker.caller_regs == {"cfa": 12, "ra": 8}

    walker.caller_regs.clear()
    assert walk(walker, ".cfa: 1 .ra: 8 $rax: 1 0 /")
    assert walker.caller_regs == {"cfa": 1, "ra": 8}

    walker.caller_regs.clear()
    assert walk(walker, ".cfa: 1 .cfa: 2 .ra: 3 .ra: 4 $rax: 5 $rax: 6")
    assert walker.caller_regs == {"cfa": 2, "ra": 4, "rax": 6}

    walker.caller_regs.clear()
    assert walk(walker, ".cfa: 7 .ra: .cfa 1 + $rax: .cfa 2 -")
    assert walker.caller_regs == {"cfa": 7, "ra": 8, "rax": 5}

    walker.caller_regs.clear()
    assert walk(walker, ".cfa: 1 .ra: 2 $rax: .ra")
    assert walker.caller_regs == {"cfa": 1, "ra": 2}

    assert walk(walker, ".cfa: 8 .ra: 12 .kitties: 16")
    assert walker.caller_regs == {"cfa": 8, "ra": 12}

    assert walk(walker, ".cfa: 8 .ra: 12 .undef: 16")
    assert walker.caller_regs == {"cfa": 8, "ra": 12}


def test_stack_cfi_arm():
    walker = FakeWalker(bytes(1600), {"pc": 32, "x11": 1600}, 8)
    assert walk(walker, ".cfa: 8 .ra: 12 x11: 16 x12: x11 .cfa +")
    assert len(walker.caller_regs) == 4
    assert walker.caller_regs["cfa"] == 8
    assert walker.caller_regs["ra"] == 12
    assert walker.caller_regs["x11"] == 16
    assert walker.caller_regs["x12"] == 1608