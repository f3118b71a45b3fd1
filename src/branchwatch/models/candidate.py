from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple


class Phase(Enum):
    BLACKLIST = "blacklist"
    REDUCTION = "reduction"


class CandidateKey(NamedTuple):
    origin_address: int
    destination_address: int
    raw_instruction: int


@dataclass(eq=False)
class CandidateRecord:
    key: CandidateKey
    condition_taken: bool = True
    hits_total: int = 0
    hits_snapshot: int = 0
    inspected: bool = False
    origin_symbol: str | None = None
    destination_symbol: str | None = None
    origin_symbol_start: int | None = None
    destination_symbol_start: int | None = None

    @property
    def origin_address(self) -> int:
        return self.key.origin_address

    @property
    def destination_address(self) -> int:
        return self.key.destination_address

    @property
    def raw_instruction(self) -> int:
        return self.key.raw_instruction

    @property
    def hits_recent(self) -> int:
        return max(self.hits_total - self.hits_snapshot, 0)

    def label(self) -> str:
        return f"{self.origin_address:08x} -> {self.destination_address:08x}"
