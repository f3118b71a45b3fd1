"""Composite filter deciding which branch candidates are visible."""

from __future__ import annotations

import logging
import re
from typing import Callable

from branchwatch.models.branch_variant import BranchVariant
from branchwatch.models.candidate import CandidateRecord
from branchwatch.models.filter_config import AddressBound, FilterConfiguration, SymbolSide
from branchwatch.services import instruction_classifier
from branchwatch.services.candidate_store import CandidateStore

LOG = logging.getLogger(__name__)

HEX_ADDRESS = re.compile(r"[0-9a-fA-F]{1,8}")


def parse_address_text(raw: str | None) -> int | None:
    """Parse a 32-bit hex address; anything unparsable means "no bound"."""
    text = (raw or "").strip()
    if text.lower().startswith("0x"):
        text = text[2:]
    if not HEX_ADDRESS.fullmatch(text):
        return None
    return int(text, 16)


class FilterEngine:
    def __init__(
        self,
        store: CandidateStore,
        configuration: FilterConfiguration | None = None,
        *,
        on_changed: Callable[[], None] | None = None,
    ) -> None:
        self.store = store
        self._config = configuration.copy() if configuration else FilterConfiguration()
        self.on_changed = on_changed
        self._visible: list[int] | None = None
        self._rows: list[CandidateRecord] = []
        self._stamp: tuple[int, int] | None = None
        self._reported_encodings: set[int] = set()

    @property
    def configuration(self) -> FilterConfiguration:
        return self._config.copy()

    def matches(self, record: CandidateRecord) -> bool:
        config = self._config
        if record.condition_taken:
            if not config.cond_true:
                return False
        elif not config.cond_false:
            return False

        if not self._is_branch_type_allowed(record.raw_instruction):
            return False

        if config.origin_min is not None and record.origin_address < config.origin_min:
            return False
        if config.origin_max is not None and record.origin_address > config.origin_max:
            return False
        if config.destination_min is not None and record.destination_address < config.destination_min:
            return False
        if config.destination_max is not None and record.destination_address > config.destination_max:
            return False

        if not _symbol_matches(config.origin_symbol, record.origin_symbol):
            return False
        if not _symbol_matches(config.destination_symbol, record.destination_symbol):
            return False
        return True

    def _is_branch_type_allowed(self, instruction: int) -> bool:
        variant = instruction_classifier.classify(instruction)
        if variant is None:
            if instruction not in self._reported_encodings:
                self._reported_encodings.add(instruction)
                LOG.warning("Candidate carries a non-branch encoding 0x%08x; excluding it", instruction)
            return False
        return self._config.is_branch_type_allowed(variant)

    # -- configuration -------------------------------------------------

    def set_branch_type(self, variant: BranchVariant, enabled: bool) -> None:
        self._config.branch_types[variant] = bool(enabled)
        self._invalidate()

    def set_condition(self, condition: bool, enabled: bool) -> None:
        if condition:
            self._config.cond_true = bool(enabled)
        else:
            self._config.cond_false = bool(enabled)
        self._invalidate()

    def set_address_bound(self, bound: AddressBound, text: str | None) -> int | None:
        value = parse_address_text(text)
        setattr(self._config, bound.value, value)
        self._invalidate()
        return value

    def set_symbol_pattern(self, side: SymbolSide, text: str | None) -> None:
        setattr(self._config, f"{side.value}_symbol", text or "")
        self._invalidate()

    def apply(self, configuration: FilterConfiguration) -> None:
        self._config = configuration.copy()
        self._invalidate()

    def reset(self) -> None:
        self.apply(FilterConfiguration())

    def _invalidate(self) -> None:
        self._visible = None
        if self.on_changed:
            self.on_changed()

    # -- visible set ---------------------------------------------------

    def visible_indices(self) -> list[int]:
        """Indices into ``store.candidates()`` that currently match."""
        with self.store.guard():
            stamp = (self.store.revision, self.store.data_revision)
            if self._visible is None or stamp != self._stamp:
                self._rows = self.store.candidates()
                self._visible = [idx for idx, record in enumerate(self._rows) if self.matches(record)]
                self._stamp = stamp
            return list(self._visible)

    def visible_candidates(self) -> list[CandidateRecord]:
        with self.store.guard():
            indices = self.visible_indices()
            return [self._rows[idx] for idx in indices]

    def count_visible(self) -> int:
        return len(self.visible_indices())


def _symbol_matches(pattern: str, name: str | None) -> bool:
    if not pattern:
        return True
    if name is None:
        return False
    return pattern.casefold() in name.casefold()
