from __future__ import annotations

from enum import Enum


class BranchVariant(Enum):
    B = ("b", "Branch")
    BL = ("bl", "Branch (LR saved)")
    BC = ("bc", "Branch Conditional")
    BCL = ("bcl", "Branch Conditional (LR saved)")
    BLR = ("blr", "Branch to Link Register")
    BLRL = ("blrl", "Branch to Link Register (LR saved)")
    BCLR = ("bclr", "Branch Conditional to Link Register")
    BCLRL = ("bclrl", "Branch Conditional to Link Register (LR saved)")
    BCTR = ("bctr", "Branch to Count Register")
    BCTRL = ("bctrl", "Branch to Count Register (LR saved)")
    BCCTR = ("bcctr", "Branch Conditional to Count Register")
    BCCTRL = ("bcctrl", "Branch Conditional to Count Register (LR saved)")

    @property
    def mnemonic(self) -> str:
        return self.value[0]

    @property
    def description(self) -> str:
        return self.value[1]

    @classmethod
    def from_mnemonic(cls, mnemonic: str) -> "BranchVariant":
        text = (mnemonic or "").strip().lower()
        for variant in cls:
            if variant.mnemonic == text:
                return variant
        raise ValueError(f"Unknown branch mnemonic: {mnemonic!r}")
