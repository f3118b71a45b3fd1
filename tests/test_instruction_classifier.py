import unittest

from branchwatch.models.branch_variant import BranchVariant
from branchwatch.services import instruction_classifier
from branchwatch.services.instruction_classifier import (
    BLR_INSTRUCTION,
    NOP_INSTRUCTION,
    branch_saves_lr,
    classify,
    disassemble,
    is_branch,
)

from conftest import BRANCH_ENCODINGS

LINKED_VARIANTS = {"bl", "bcl", "blrl", "bclrl", "bctrl", "bcctrl"}


class TestClassify(unittest.TestCase):
    def test_every_table_row_maps_to_its_variant(self) -> None:
        for mnemonic, encoding in BRANCH_ENCODINGS.items():
            with self.subTest(mnemonic=mnemonic):
                self.assertEqual(classify(encoding), BranchVariant.from_mnemonic(mnemonic))

    def test_link_bit_drives_branch_saves_lr(self) -> None:
        for mnemonic, encoding in BRANCH_ENCODINGS.items():
            with self.subTest(mnemonic=mnemonic):
                self.assertEqual(branch_saves_lr(encoding), bool(encoding & 1))
                self.assertEqual(branch_saves_lr(encoding), mnemonic in LINKED_VARIANTS)

    def test_branch_always_pattern_ignores_z_bits(self) -> None:
        # BO = 0b11111 and 0b10110 both match 1z1zz.
        self.assertEqual(classify(0x4FE00020), BranchVariant.BLR)
        self.assertEqual(classify(0x4EC00421), BranchVariant.BCTRL)
        # BO = 0b00100 (branch if false) is conditional.
        self.assertEqual(classify(0x4C820020), BranchVariant.BCLR)
        self.assertEqual(classify(0x4C820420), BranchVariant.BCCTR)

    def test_unrecognized_encodings_return_none(self) -> None:
        for encoding in (NOP_INSTRUCTION, 0x7C0802A6, 0x4C000000, 0x4C00012C, 0x00000000, 0xFFFFFFFF):
            with self.subTest(encoding=hex(encoding)):
                self.assertIsNone(classify(encoding))
                self.assertFalse(is_branch(encoding))

    def test_field_extractors(self) -> None:
        self.assertEqual(instruction_classifier.primary_opcode(BLR_INSTRUCTION), 19)
        self.assertEqual(instruction_classifier.secondary_opcode(BLR_INSTRUCTION), 16)
        self.assertEqual(instruction_classifier.bo_field(BLR_INSTRUCTION), 0b10100)
        self.assertEqual(instruction_classifier.secondary_opcode(BRANCH_ENCODINGS["bctr"]), 528)


class TestDisassemble(unittest.TestCase):
    def test_disassembles_blr(self) -> None:
        self.assertEqual(disassemble(BLR_INSTRUCTION, 0x80001000), "blr")

    def test_relative_branch_mentions_mnemonic(self) -> None:
        self.assertTrue(disassemble(BRANCH_ENCODINGS["bl"], 0x80001000).startswith("bl"))


if __name__ == "__main__":
    unittest.main()
