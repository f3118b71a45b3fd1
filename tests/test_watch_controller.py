from pathlib import Path

import pytest

from branchwatch.config_manager import AppConfig
from branchwatch.controllers.watch_controller import WatchController, format_status
from branchwatch.models.branch_variant import BranchVariant
from branchwatch.services.emulated_memory import ExecutionState
from branchwatch.services.instruction_classifier import NOP_INSTRUCTION
from branchwatch.services.patch_actions import UninitializedExecutionContext
from branchwatch.services.trace_parser import BranchHit, format_hit

from conftest import BRANCH_ENCODINGS


@pytest.fixture
def controller(tmp_path: Path) -> WatchController:
    watch = WatchController(AppConfig(snapshot_dir=str(tmp_path / "snapshots"), game_id="GALE01"))
    watch.start()
    return watch


def write_trace(path: Path, hits: list[BranchHit]) -> Path:
    path.write_text("\n".join(format_hit(hit) for hit in hits) + "\n", encoding="utf-8")
    return path


def test_status_text_follows_phase(controller):
    store = controller.store
    assert controller.status_text() == "Candidates: 0"

    for origin in (0x80001000, 0x80001004, 0x80001008):
        store.record_hit(origin, 0x80002000, BRANCH_ENCODINGS["bl"])
    controller.code_path_not_taken()
    store.record_hit(0x8000100C, 0x80002000, BRANCH_ENCODINGS["b"])
    store.record_hit(0x80001010, 0x80002000, BRANCH_ENCODINGS["bl"])
    assert controller.status_text() == "Candidates: 5 | Excluded: 3 | Remaining: 2"

    controller.code_path_was_taken()
    controller.filters.set_branch_type(BranchVariant.B, False)
    assert controller.status_text() == "Candidates: 2 | Filtered: 1 | Remaining: 1"

    store.record_hit(0x80001010, 0x80002000, BRANCH_ENCODINGS["bl"])
    controller.code_path_not_taken()
    controller.code_path_was_taken()
    assert controller.status_text() == "Zero candidates remaining."
    assert format_status(store, 0) == "Zero candidates remaining."


def test_replay_trace_records_hits_and_reports_progress(controller, tmp_path):
    trace = write_trace(
        tmp_path / "boot.trace",
        [
            BranchHit(0x80001000, 0x80002000, BRANCH_ENCODINGS["bl"]),
            BranchHit(0x80001004, 0x80001010, BRANCH_ENCODINGS["bc"], False),
            BranchHit(0x80001000, 0x80002000, BRANCH_ENCODINGS["bl"]),
        ],
    )
    messages: list[str] = []

    recorded = controller.replay_trace(trace, on_output=messages.append)

    assert recorded == 3
    assert controller.store.collection_size == 2
    assert messages[0].startswith("Replaying branch trace")
    assert messages[-1] == "Replay finished: 3 of 3 hits recorded."


def test_replay_can_be_cancelled(controller, tmp_path):
    trace = write_trace(tmp_path / "boot.trace", [BranchHit(0x80001000, 0x80002000, BRANCH_ENCODINGS["bl"])] * 5)

    recorded = controller.replay_trace(trace, should_cancel=lambda: True)

    assert recorded == 0
    assert controller.store.collection_size == 0


def test_replay_restores_execution_state(controller, tmp_path):
    controller.memory.load_image(0x80001000, b"\x00" * 8)
    trace = write_trace(tmp_path / "boot.trace", [BranchHit(0x80001000, 0x80002000, BRANCH_ENCODINGS["bl"])])

    controller.replay_trace(trace)

    assert controller.memory.state is ExecutionState.PAUSED


def test_replay_missing_trace_raises(controller, tmp_path):
    with pytest.raises(FileNotFoundError):
        controller.replay_trace(tmp_path / "missing.trace")


def test_overwrite_steps_require_initialized_core(controller):
    controller.store.record_hit(0x80001000, 0x80002000, BRANCH_ENCODINGS["bl"])
    with pytest.raises(UninitializedExecutionContext):
        controller.branch_was_overwritten()
    with pytest.raises(UninitializedExecutionContext):
        controller.branch_not_overwritten()
    assert controller.store.blacklist_size == 0


def test_nop_patch_then_overwritten_reduction(controller, tmp_path):
    image = tmp_path / "main.bin"
    image.write_bytes(BRANCH_ENCODINGS["bl"].to_bytes(4, "big") * 4)
    assert controller.load_memory_image(image, 0x80001000) == 4

    store = controller.store
    for origin in (0x80001000, 0x80001004, 0x80001008):
        store.record_hit(origin, 0x80002000, BRANCH_ENCODINGS["bl"])
    controller.code_path_was_taken()
    target = [record for record in store.selection if record.origin_address == 0x80001004]
    controller.patches.set_nop(target)
    assert controller.memory.read_instruction(0x80001004) == NOP_INSTRUCTION

    assert controller.branch_was_overwritten() == 2
    assert [record.origin_address for record in store.selection] == [0x80001004]
    assert store.selection[0].inspected


def test_autosave_writes_after_each_step(controller, tmp_path):
    autosave_path = tmp_path / "auto.json"
    controller.set_autosave(True, autosave_path)

    controller.code_path_not_taken()
    assert not autosave_path.exists()

    controller.store.record_hit(0x80001000, 0x80002000, BRANCH_ENCODINGS["bl"])
    controller.code_path_was_taken()
    assert autosave_path.exists()

    controller.clear_watch()
    reloaded = WatchController(AppConfig(snapshot_dir=str(tmp_path / "snapshots")))
    assert reloaded.load_snapshot(autosave_path).ok
    assert reloaded.store.collection_size == 1


def test_snapshot_default_path_and_symbol_refresh(controller):
    controller.store.record_hit(0x80001010, 0x80002000, BRANCH_ENCODINGS["bl"])

    saved = controller.save_snapshot()

    assert saved.ok
    assert saved.path.name == "GALE01.json"
    controller.clear_watch()
    assert controller.load_snapshot().ok
    assert controller.store.collection_size == 1


def test_ignore_apploader_toggles_store(controller):
    controller.set_ignore_apploader(True)
    controller.store.record_hit(0x81200000, 0x81200010, BRANCH_ENCODINGS["bl"])
    assert controller.store.collection_size == 0
    assert controller.config.ignore_apploader
