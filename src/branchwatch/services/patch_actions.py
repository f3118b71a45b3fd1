from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from branchwatch.models.candidate import CandidateRecord
from branchwatch.models.filter_config import SymbolSide
from branchwatch.services import instruction_classifier
from branchwatch.services.candidate_store import CandidateStore
from branchwatch.services.emulated_memory import EmulatedMemory
from branchwatch.services.instruction_classifier import BLR_INSTRUCTION, NOP_INSTRUCTION

LOG = logging.getLogger(__name__)


class PatchRefused(Exception):
    """Raised before any write when a patch request cannot be honoured."""


class UninitializedExecutionContext(PatchRefused):
    pass


class IllegalPatchPrecondition(PatchRefused):
    pass


class AddressColumn(Enum):
    ORIGIN = "origin"
    DESTINATION = "destination"


@dataclass
class PatchResult:
    encoding: int
    addresses: list[int] = field(default_factory=list)

    @property
    def patched(self) -> int:
        return len(self.addresses)


class PatchActionCoordinator:
    """Write NOP/BLR patches for selected candidates and mark them inspected."""

    def __init__(
        self,
        store: CandidateStore,
        memory: EmulatedMemory,
        *,
        on_output: Callable[[str], None] | None = None,
    ) -> None:
        self.store = store
        self.memory = memory
        self._on_output = on_output

    def can_patch(self) -> bool:
        return self.memory.is_initialized

    def can_set_blr(self, records: Sequence[CandidateRecord]) -> bool:
        return self.can_patch() and all(_saves_return_address(record) for record in records)

    def can_set_blr_at_symbol(self, records: Sequence[CandidateRecord], side: SymbolSide) -> bool:
        return self.can_patch() and all(_symbol_start(record, side) is not None for record in records)

    def set_nop(self, records: Sequence[CandidateRecord]) -> PatchResult:
        self._require_initialized()
        targets = [(record, record.origin_address) for record in records]
        return self._apply(targets, NOP_INSTRUCTION)

    def set_blr(self, records: Sequence[CandidateRecord]) -> PatchResult:
        self._require_initialized()
        offenders = [record for record in records if not _saves_return_address(record)]
        if offenders:
            raise IllegalPatchPrecondition(
                f"{len(offenders)} selected branch(es) do not save the link register "
                f"(first at 0x{offenders[0].origin_address:08x}); nothing was patched."
            )
        targets = [(record, record.destination_address) for record in records]
        return self._apply(targets, BLR_INSTRUCTION)

    def set_blr_at_symbol(self, records: Sequence[CandidateRecord], side: SymbolSide) -> PatchResult:
        self._require_initialized()
        targets: list[tuple[CandidateRecord, int]] = []
        for record in records:
            start = _symbol_start(record, side)
            if start is None:
                raise IllegalPatchPrecondition(
                    f"No {side.value} symbol is known for {record.label()}; nothing was patched."
                )
            targets.append((record, start))
        return self._apply(targets, BLR_INSTRUCTION)

    @staticmethod
    def copy_addresses(records: Sequence[CandidateRecord], column: AddressColumn) -> str:
        if column is AddressColumn.ORIGIN:
            return "\n".join(f"{record.origin_address:x}" for record in records)
        return "\n".join(f"{record.destination_address:x}" for record in records)

    def _require_initialized(self) -> None:
        if not self.can_patch():
            raise UninitializedExecutionContext("Core is uninitialized.")

    def _apply(self, targets: list[tuple[CandidateRecord, int]], encoding: int) -> PatchResult:
        result = PatchResult(encoding=encoding)
        for record, address in targets:
            # One guard per write keeps producer pauses short.
            with self.store.guard():
                self.memory.write_instruction(address, encoding)
                self.store.set_inspected(record)
            result.addresses.append(address)
        LOG.info("Wrote 0x%08x at %d address(es)", encoding, result.patched)
        if self._on_output:
            self._on_output(f"Patched {result.patched} instruction(s) with 0x{encoding:08x}")
        return result


def _saves_return_address(record: CandidateRecord) -> bool:
    instruction = record.raw_instruction
    return instruction_classifier.is_branch(instruction) and instruction_classifier.branch_saves_lr(instruction)


def _symbol_start(record: CandidateRecord, side: SymbolSide) -> int | None:
    if side is SymbolSide.ORIGIN:
        return record.origin_symbol_start
    return record.destination_symbol_start
