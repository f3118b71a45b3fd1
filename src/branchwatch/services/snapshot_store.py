from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from branchwatch.config_manager import DEFAULT_SNAPSHOT_DIR
from branchwatch.models.candidate import CandidateKey, CandidateRecord, Phase
from branchwatch.services.candidate_store import CandidateStore

LOG = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class SnapshotResult:
    ok: bool
    path: Path
    message: str = ""
    candidates: int = 0


class SnapshotStore:
    def __init__(self, directory: Path | None = None) -> None:
        self.directory = directory or DEFAULT_SNAPSHOT_DIR

    def default_path(self, game_id: str) -> Path:
        return self.directory / f"{game_id or 'default'}.json"

    def save(self, store: CandidateStore, path: Path | str) -> SnapshotResult:
        target = Path(path)
        with store.guard():
            if not store.can_persist():
                return SnapshotResult(False, target, "There is nothing to save!")
            payload = self._store_to_dict(store)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            LOG.warning("Failed to save snapshot %s: %s", target, exc)
            return SnapshotResult(False, target, f'Failed to save Branch Watch snapshot "{target}"')
        LOG.info("Saved %d candidates to %s", len(payload["candidates"]), target)
        return SnapshotResult(True, target, candidates=len(payload["candidates"]))

    def load(self, store: CandidateStore, path: Path | str) -> SnapshotResult:
        source = Path(path)
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOG.warning("Failed to open snapshot %s: %s", source, exc)
            return SnapshotResult(False, source, f'Failed to open Branch Watch snapshot "{source}"')
        try:
            if not isinstance(data, dict):
                raise TypeError(f"expected a JSON object, got {type(data).__name__}")
            phase = Phase(data.get("phase", Phase.BLACKLIST.value))
            records = [self._record_from_dict(raw) for raw in data.get("candidates", [])]
            blacklist = _keys_at(records, data.get("blacklist", []))
            selection = _keys_at(records, data.get("selection", []))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            LOG.warning("Malformed snapshot %s: %s", source, exc)
            return SnapshotResult(False, source, f'Branch Watch snapshot "{source}" is malformed')
        with store.guard():
            store.restore(phase, records, blacklist=blacklist, selection=selection)
        LOG.info("Loaded %d candidates from %s", len(records), source)
        return SnapshotResult(True, source, candidates=len(records))

    def _store_to_dict(self, store: CandidateStore) -> dict[str, Any]:
        records = store.collection()
        positions = {record.key: idx for idx, record in enumerate(records)}
        blacklisted = store.blacklisted_keys()
        return {
            "version": SNAPSHOT_VERSION,
            "phase": store.phase.value,
            "candidates": [self._record_to_dict(record) for record in records],
            "blacklist": sorted(positions[key] for key in blacklisted if key in positions),
            "selection": [positions[record.key] for record in store.selection],
        }

    def _record_to_dict(self, record: CandidateRecord) -> dict[str, Any]:
        return {
            "origin": record.origin_address,
            "destination": record.destination_address,
            "instruction": record.raw_instruction,
            "condition": record.condition_taken,
            "hits_total": record.hits_total,
            "hits_snapshot": record.hits_snapshot,
            "inspected": record.inspected,
        }

    def _record_from_dict(self, raw: dict[str, Any]) -> CandidateRecord:
        key = CandidateKey(int(raw["origin"]), int(raw["destination"]), int(raw["instruction"]))
        return CandidateRecord(
            key=key,
            condition_taken=bool(raw.get("condition", True)),
            hits_total=int(raw.get("hits_total", 0)),
            hits_snapshot=int(raw.get("hits_snapshot", 0)),
            inspected=bool(raw.get("inspected", False)),
        )


def _keys_at(records: list[CandidateRecord], indices: Any) -> list[CandidateKey]:
    keys: list[CandidateKey] = []
    for idx in indices:
        if not isinstance(idx, int) or not 0 <= idx < len(records):
            raise IndexError(f"candidate index {idx!r} is out of range")
        keys.append(records[idx].key)
    return keys
