"""Candidate collection, blacklist and selection shared by the recorder and the tool."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator

from branchwatch.models.candidate import CandidateKey, CandidateRecord, Phase
from branchwatch.services.symbol_map import Symbol

LOG = logging.getLogger(__name__)

U32_MASK = 0xFFFFFFFF
APPLOADER_RANGE = (0x81200000, 0x812FFFFF)

InstructionReader = Callable[[int], "int | None"]
SymbolResolver = Callable[[int], "Symbol | None"]


class CandidateStore:
    """Own every recorded branch and the blacklist/reduction bookkeeping.

    The producer thread calls :meth:`record_hit`; every other caller is expected
    to hold :meth:`guard` for the whole read-modify sequence.
    """

    def __init__(self, *, apploader_range: tuple[int, int] = APPLOADER_RANGE) -> None:
        self._lock = threading.RLock()
        self._collection: dict[CandidateKey, CandidateRecord] = {}
        self._blacklist: set[CandidateKey] = set()
        self._selection: list[CandidateRecord] = []
        self._phase = Phase.BLACKLIST
        self._recording = False
        self.apploader_range = apploader_range
        self.ignore_apploader = False
        # Structural changes (rows added/removed) vs. in-place updates (hits, flags, names).
        self.revision = 0
        self.data_revision = 0

    @contextmanager
    def guard(self) -> Iterator["CandidateStore"]:
        with self._lock:
            yield self

    # -- recorder side -------------------------------------------------

    @property
    def recording_active(self) -> bool:
        return self._recording

    def start(self) -> None:
        with self._lock:
            self._recording = True
        LOG.info("Branch watch started")

    def pause(self) -> None:
        with self._lock:
            self._recording = False
        LOG.info("Branch watch paused")

    def record_hit(self, origin: int, destination: int, instruction: int, condition: bool = True) -> bool:
        with self._lock:
            if not self._recording:
                return False
            origin &= U32_MASK
            if self.ignore_apploader and self.apploader_range[0] <= origin <= self.apploader_range[1]:
                return False
            key = CandidateKey(origin, destination & U32_MASK, instruction & U32_MASK)
            record = self._collection.get(key)
            if record is None:
                record = CandidateRecord(key=key)
                self._collection[key] = record
                if self._phase is Phase.BLACKLIST:
                    self.revision += 1
            record.condition_taken = bool(condition)
            record.hits_total += 1
            self.data_revision += 1
            return True

    # -- accessors -----------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def collection_size(self) -> int:
        return len(self._collection)

    @property
    def blacklist_size(self) -> int:
        return len(self._blacklist)

    @property
    def selection(self) -> list[CandidateRecord]:
        with self._lock:
            return list(self._selection)

    def collection(self) -> list[CandidateRecord]:
        with self._lock:
            return list(self._collection.values())

    def blacklisted_keys(self) -> set[CandidateKey]:
        with self._lock:
            return set(self._blacklist)

    def candidates(self) -> list[CandidateRecord]:
        """Rows the tool shows: the selection, or every non-excluded hit before the first reduction."""
        with self._lock:
            if self._phase is Phase.REDUCTION:
                return list(self._selection)
            return [record for key, record in self._collection.items() if key not in self._blacklist]

    def can_persist(self) -> bool:
        return bool(self._collection)

    # -- lifecycle -----------------------------------------------------

    def clear_all(self) -> None:
        with self._lock:
            self._collection.clear()
            self._blacklist.clear()
            self._selection.clear()
            self._phase = Phase.BLACKLIST
            self.revision += 1
        LOG.info("Cleared all branch candidates")

    def code_path_was_taken(self) -> int:
        with self._lock:
            if self._phase is Phase.BLACKLIST:
                self._selection = [
                    record for key, record in self._collection.items() if key not in self._blacklist
                ]
                for record in self._selection:
                    record.hits_snapshot = record.hits_total
                self._phase = Phase.REDUCTION
                self.revision += 1
                LOG.info("Entered reduction phase with %d candidates", len(self._selection))
                return 0
            return self._reduce(lambda record: record.hits_total == record.hits_snapshot, resnapshot=True)

    def code_path_not_taken(self) -> int:
        with self._lock:
            if self._phase is Phase.BLACKLIST:
                return self._exclude(lambda record: True)
            return self._reduce(lambda record: record.hits_total != record.hits_snapshot, resnapshot=True)

    def branch_was_overwritten(self, read_instruction: InstructionReader) -> int:
        with self._lock:
            return self._apply_overwrite_test(read_instruction, drop_unchanged=True)

    def branch_not_overwritten(self, read_instruction: InstructionReader) -> int:
        with self._lock:
            return self._apply_overwrite_test(read_instruction, drop_unchanged=False)

    def _apply_overwrite_test(self, read_instruction: InstructionReader, *, drop_unchanged: bool) -> int:
        def _fails(record: CandidateRecord) -> bool:
            current = read_instruction(record.origin_address)
            if current is None:
                return False
            unchanged = current == record.raw_instruction
            return unchanged if drop_unchanged else not unchanged

        if self._phase is Phase.BLACKLIST:
            return self._exclude(_fails)
        return self._reduce(_fails, resnapshot=False)

    def _exclude(self, predicate: Callable[[CandidateRecord], bool]) -> int:
        excluded = 0
        for key, record in self._collection.items():
            if key in self._blacklist or not predicate(record):
                continue
            self._blacklist.add(key)
            excluded += 1
        if excluded:
            self.revision += 1
        LOG.info("Excluded %d candidates (%d total excluded)", excluded, len(self._blacklist))
        return excluded

    def _reduce(self, drop: Callable[[CandidateRecord], bool], *, resnapshot: bool) -> int:
        survivors: list[CandidateRecord] = []
        for record in self._selection:
            if drop(record):
                continue
            if resnapshot:
                record.hits_snapshot = record.hits_total
            survivors.append(record)
        removed = len(self._selection) - len(survivors)
        self._selection = survivors
        self.revision += 1
        LOG.info("Reduced selection by %d to %d candidates", removed, len(survivors))
        return removed

    # -- maintenance ---------------------------------------------------

    def delete(self, records: Iterable[CandidateRecord]) -> int:
        doomed = list(records)
        with self._lock:
            if self._phase is Phase.BLACKLIST:
                before = len(self._blacklist)
                self._blacklist.update(record.key for record in doomed if record.key in self._collection)
                removed = len(self._blacklist) - before
            else:
                targets = {id(record) for record in doomed}
                before = len(self._selection)
                self._selection = [record for record in self._selection if id(record) not in targets]
                removed = before - len(self._selection)
            if removed:
                self.revision += 1
            return removed

    def wipe_recent_hits(self) -> None:
        with self._lock:
            for record in self.candidates():
                record.hits_snapshot = record.hits_total
            self.data_revision += 1

    def wipe_inspection(self) -> None:
        with self._lock:
            for record in self._collection.values():
                record.inspected = False
            self.data_revision += 1

    def set_inspected(self, record: CandidateRecord) -> None:
        with self._lock:
            record.inspected = True
            self.data_revision += 1

    def update_symbols(self, resolver: SymbolResolver) -> None:
        with self._lock:
            for record in self._collection.values():
                origin = resolver(record.origin_address)
                destination = resolver(record.destination_address)
                record.origin_symbol = origin.name if origin else None
                record.origin_symbol_start = origin.address if origin else None
                record.destination_symbol = destination.name if destination else None
                record.destination_symbol_start = destination.address if destination else None
            self.data_revision += 1

    def restore(
        self,
        phase: Phase,
        records: Iterable[CandidateRecord],
        *,
        blacklist: Iterable[CandidateKey] = (),
        selection: Iterable[CandidateKey] = (),
    ) -> None:
        """Replace the whole state, e.g. from a saved snapshot."""
        with self._lock:
            self._collection = {record.key: record for record in records}
            self._blacklist = {key for key in blacklist if key in self._collection}
            self._selection = [self._collection[key] for key in selection if key in self._collection]
            self._phase = phase
            self.revision += 1
            self.data_revision += 1
