from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from branchwatch.config_manager import AppConfig
from branchwatch.models.candidate import Phase
from branchwatch.services import trace_parser
from branchwatch.services.candidate_store import CandidateStore
from branchwatch.services.emulated_memory import EmulatedMemory, ExecutionState
from branchwatch.services.filter_engine import FilterEngine
from branchwatch.services.patch_actions import PatchActionCoordinator, UninitializedExecutionContext
from branchwatch.services.snapshot_store import SnapshotResult, SnapshotStore
from branchwatch.services.symbol_map import SymbolMap

LOG = logging.getLogger(__name__)

REPLAY_PROGRESS_INTERVAL = 1000


def format_status(store: CandidateStore, visible_count: int) -> str:
    if store.phase is Phase.BLACKLIST:
        candidate_size = store.collection_size
        blacklist_size = store.blacklist_size
        if blacklist_size == 0:
            return f"Candidates: {candidate_size}"
        return (
            f"Candidates: {candidate_size} | Excluded: {blacklist_size} | "
            f"Remaining: {candidate_size - blacklist_size}"
        )
    candidate_size = len(store.selection)
    if candidate_size == 0:
        return "Zero candidates remaining."
    return (
        f"Candidates: {candidate_size} | Filtered: {candidate_size - visible_count} | "
        f"Remaining: {visible_count}"
    )


class WatchController:
    """Glue between the candidate store, emulated memory, filters and patch actions."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        store: CandidateStore | None = None,
        memory: EmulatedMemory | None = None,
        snapshots: SnapshotStore | None = None,
        on_output: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.store = store or CandidateStore()
        self.store.ignore_apploader = bool(self.config.ignore_apploader)
        self.memory = memory or EmulatedMemory()
        self.snapshots = snapshots or SnapshotStore(Path(self.config.snapshot_dir))
        self.symbols = SymbolMap()
        self.filters = FilterEngine(self.store)
        self.patches = PatchActionCoordinator(self.store, self.memory, on_output=on_output)
        self._on_output = on_output

    # -- recording -----------------------------------------------------

    def start(self) -> None:
        self.store.start()

    def pause(self) -> None:
        self.store.pause()

    def set_ignore_apploader(self, enabled: bool) -> None:
        self.config.ignore_apploader = bool(enabled)
        self.store.ignore_apploader = bool(enabled)

    def replay_trace(
        self,
        trace_path: Path | str,
        *,
        on_output: Callable[[str], None] | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> int:
        """Feed a recorded branch trace into the store as if the CPU were executing it."""
        path = Path(trace_path)
        if not path.exists():
            raise FileNotFoundError(f"Branch trace not found: {path}")
        if on_output:
            on_output(f"Replaying branch trace {path.name}...")
        previous_state = self.memory.state
        if self.memory.is_initialized:
            self.memory.state = ExecutionState.RUNNING
        recorded = 0
        seen = 0
        try:
            for hit in trace_parser.iter_trace(path):
                if should_cancel and should_cancel():
                    if on_output:
                        on_output("Replay cancelled.")
                    break
                seen += 1
                if self.store.record_hit(hit.origin, hit.destination, hit.instruction, hit.condition):
                    recorded += 1
                if on_output and seen % REPLAY_PROGRESS_INTERVAL == 0:
                    on_output(f"Replayed {seen} branch hits...")
        finally:
            self.memory.state = previous_state
        LOG.info("Replayed %d of %d branch hits from %s", recorded, seen, path)
        if on_output:
            on_output(f"Replay finished: {recorded} of {seen} hits recorded.")
        return recorded

    # -- reduction steps -----------------------------------------------

    def clear_watch(self) -> None:
        with self.store.guard():
            self.store.clear_all()
            self.autosave()

    def code_path_was_taken(self) -> int:
        with self.store.guard():
            removed = self.store.code_path_was_taken()
            self.autosave()
        return removed

    def code_path_not_taken(self) -> int:
        with self.store.guard():
            removed = self.store.code_path_not_taken()
            self.autosave()
        return removed

    def branch_was_overwritten(self) -> int:
        self._require_core()
        with self.store.guard():
            removed = self.store.branch_was_overwritten(self.memory.read_instruction)
            self.autosave()
        return removed

    def branch_not_overwritten(self) -> int:
        self._require_core()
        with self.store.guard():
            removed = self.store.branch_not_overwritten(self.memory.read_instruction)
            self.autosave()
        return removed

    def _require_core(self) -> None:
        if not self.memory.is_initialized:
            raise UninitializedExecutionContext("Core is uninitialized.")

    # -- collaborators -------------------------------------------------

    def load_memory_image(self, image_path: Path | str, base: int | None = None) -> int:
        load_base = self.config.memory_base if base is None else base
        words = self.memory.load_image_file(image_path, load_base)
        self.config.memory_image_path = str(image_path)
        if self._on_output:
            self._on_output(f"Loaded {words} words at 0x{load_base:08x}")
        return words

    def load_symbols(self, symbol_path: Path | str) -> int:
        self.symbols = SymbolMap.from_elf(symbol_path)
        self.config.symbol_map_path = str(symbol_path)
        self.update_symbols()
        return len(self.symbols)

    def update_symbols(self) -> None:
        self.store.update_symbols(self.symbols.resolve)

    # -- snapshots -----------------------------------------------------

    def default_snapshot_path(self) -> Path:
        return self.snapshots.default_path(self.config.game_id)

    def save_snapshot(self, path: Path | str | None = None) -> SnapshotResult:
        return self.snapshots.save(self.store, path or self.default_snapshot_path())

    def load_snapshot(self, path: Path | str | None = None) -> SnapshotResult:
        result = self.snapshots.load(self.store, path or self.default_snapshot_path())
        if result.ok:
            self.update_symbols()
        return result

    def set_autosave(self, enabled: bool, path: Path | str | None = None) -> None:
        self.config.autosave = bool(enabled)
        self.config.autosave_path = str(path) if path else None

    def autosave(self) -> SnapshotResult | None:
        if not self.config.autosave or not self.store.can_persist():
            return None
        result = self.save_snapshot(self.config.autosave_path)
        if not result.ok:
            LOG.warning("Auto-save failed: %s", result.message)
        return result

    def status_text(self) -> str:
        return format_status(self.store, self.filters.count_visible())
