"""In-memory filter state for the candidate table."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from branchwatch.models.branch_variant import BranchVariant


class AddressBound(Enum):
    ORIGIN_MIN = "origin_min"
    ORIGIN_MAX = "origin_max"
    DESTINATION_MIN = "destination_min"
    DESTINATION_MAX = "destination_max"


class SymbolSide(Enum):
    ORIGIN = "origin"
    DESTINATION = "destination"


def _all_variants_enabled() -> dict[BranchVariant, bool]:
    return {variant: True for variant in BranchVariant}


@dataclass
class FilterConfiguration:
    branch_types: dict[BranchVariant, bool] = field(default_factory=_all_variants_enabled)
    cond_true: bool = True
    cond_false: bool = True
    origin_min: int | None = None
    origin_max: int | None = None
    destination_min: int | None = None
    destination_max: int | None = None
    origin_symbol: str = ""
    destination_symbol: str = ""

    def is_branch_type_allowed(self, variant: BranchVariant) -> bool:
        return self.branch_types.get(variant, False)

    def symbol_pattern(self, side: SymbolSide) -> str:
        return getattr(self, f"{side.value}_symbol")

    def copy(self) -> "FilterConfiguration":
        return FilterConfiguration.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch_types": {variant.mnemonic: self.is_branch_type_allowed(variant) for variant in BranchVariant},
            "cond_true": self.cond_true,
            "cond_false": self.cond_false,
            "origin_min": self.origin_min,
            "origin_max": self.origin_max,
            "destination_min": self.destination_min,
            "destination_max": self.destination_max,
            "origin_symbol": self.origin_symbol,
            "destination_symbol": self.destination_symbol,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FilterConfiguration":
        config = cls()
        raw_types = data.get("branch_types") or {}
        for mnemonic, enabled in raw_types.items():
            try:
                variant = BranchVariant.from_mnemonic(mnemonic)
            except ValueError:
                continue
            config.branch_types[variant] = bool(enabled)
        config.cond_true = bool(data.get("cond_true", True))
        config.cond_false = bool(data.get("cond_false", True))
        for bound in AddressBound:
            value = data.get(bound.value)
            setattr(config, bound.value, int(value) if value is not None else None)
        config.origin_symbol = str(data.get("origin_symbol") or "")
        config.destination_symbol = str(data.get("destination_symbol") or "")
        return config
