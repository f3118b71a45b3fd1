"""Classify PowerPC branch encodings into the twelve branch variants."""

from __future__ import annotations

import capstone

from branchwatch.models.branch_variant import BranchVariant

NOP_INSTRUCTION = 0x60000000
BLR_INSTRUCTION = 0x4E800020

OPCODE_B = 18
OPCODE_BC = 16
OPCODE_XL = 19
SUBOP_BCLR = 16
SUBOP_BCCTR = 528

# BO = 1z1zz: condition and CTR decrement are both ignored.
BO_BRANCH_ALWAYS = 0b10100

_DIRECT_VARIANTS = {
    OPCODE_B: (BranchVariant.B, BranchVariant.BL),
    OPCODE_BC: (BranchVariant.BC, BranchVariant.BCL),
}

# Keyed by (secondary opcode, branch always).
_REGISTER_VARIANTS = {
    (SUBOP_BCLR, True): (BranchVariant.BLR, BranchVariant.BLRL),
    (SUBOP_BCLR, False): (BranchVariant.BCLR, BranchVariant.BCLRL),
    (SUBOP_BCCTR, True): (BranchVariant.BCTR, BranchVariant.BCTRL),
    (SUBOP_BCCTR, False): (BranchVariant.BCCTR, BranchVariant.BCCTRL),
}

_disassembler: capstone.Cs | None = None


def primary_opcode(instruction: int) -> int:
    return (instruction >> 26) & 0x3F


def secondary_opcode(instruction: int) -> int:
    return (instruction >> 1) & 0x3FF


def bo_field(instruction: int) -> int:
    return (instruction >> 21) & 0x1F


def branch_saves_lr(instruction: int) -> bool:
    # Every branch form keeps LK in the lowest bit.
    return bool(instruction & 1)


def classify(instruction: int) -> BranchVariant | None:
    """Return the branch variant of ``instruction`` or ``None`` for non-branches."""
    opcode = primary_opcode(instruction)
    lr_saved = branch_saves_lr(instruction)
    if opcode in (OPCODE_B, OPCODE_BC):
        plain, linked = _DIRECT_VARIANTS[opcode]
        return linked if lr_saved else plain
    if opcode != OPCODE_XL:
        return None
    subop = secondary_opcode(instruction)
    if subop not in (SUBOP_BCLR, SUBOP_BCCTR):
        return None
    always = (bo_field(instruction) & BO_BRANCH_ALWAYS) == BO_BRANCH_ALWAYS
    plain, linked = _REGISTER_VARIANTS[(subop, always)]
    return linked if lr_saved else plain


def is_branch(instruction: int) -> bool:
    return classify(instruction) is not None


def _get_disassembler() -> capstone.Cs:
    global _disassembler
    if _disassembler is None:
        engine = capstone.Cs(capstone.CS_ARCH_PPC, capstone.CS_MODE_32 | capstone.CS_MODE_BIG_ENDIAN)
        engine.detail = False
        _disassembler = engine
    return _disassembler


def disassemble(instruction: int, address: int = 0) -> str:
    """Render ``instruction`` as assembly text, falling back to the variant mnemonic."""
    data = (instruction & 0xFFFFFFFF).to_bytes(4, "big")
    decoded = next(_get_disassembler().disasm(data, address), None)
    if decoded is not None:
        return f"{decoded.mnemonic} {decoded.op_str}".strip()
    variant = classify(instruction)
    if variant is not None:
        return variant.mnemonic
    return f".long 0x{instruction & 0xFFFFFFFF:08x}"
