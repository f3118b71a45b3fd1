import threading
import unittest

from branchwatch.models.candidate import CandidateKey, Phase
from branchwatch.services.candidate_store import CandidateStore
from branchwatch.services.symbol_map import Symbol, SymbolMap

from conftest import BRANCH_ENCODINGS, make_record

BL = BRANCH_ENCODINGS["bl"]
BC = BRANCH_ENCODINGS["bc"]


class CandidateStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = CandidateStore()
        self.store.start()

    def hit(self, origin: int, destination: int = 0x80009000, instruction: int = BL, condition: bool = True) -> None:
        self.store.record_hit(origin, destination, instruction, condition)

    def origins(self, records) -> list[int]:
        return [record.origin_address for record in records]


class TestRecording(CandidateStoreTestCase):
    def test_repeated_hits_update_one_record(self) -> None:
        self.hit(0x80001000, condition=True)
        self.hit(0x80001000, condition=False)
        self.assertEqual(self.store.collection_size, 1)
        record = self.store.candidates()[0]
        self.assertEqual(record.hits_total, 2)
        self.assertEqual(record.hits_recent, 2)
        self.assertFalse(record.condition_taken)

    def test_paused_store_ignores_hits(self) -> None:
        self.store.pause()
        self.assertFalse(self.store.record_hit(0x80001000, 0x80002000, BL))
        self.assertEqual(self.store.collection_size, 0)
        self.assertFalse(self.store.can_persist())

    def test_ignore_apploader_drops_hits_inside_range(self) -> None:
        self.store.ignore_apploader = True
        self.hit(0x81200100)
        self.hit(0x80001000)
        self.assertEqual(self.origins(self.store.candidates()), [0x80001000])

    def test_concurrent_producers_do_not_lose_hits(self) -> None:
        def produce() -> None:
            for _ in range(500):
                self.hit(0x80001000)

        threads = [threading.Thread(target=produce) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        with self.store.guard():
            self.assertEqual(self.store.candidates()[0].hits_total, 2000)


class TestLifecycle(CandidateStoreTestCase):
    def test_blacklist_then_first_taken_builds_selection(self) -> None:
        for origin in (0x80001000, 0x80001004, 0x80001008):
            self.hit(origin)
        self.assertEqual(self.store.code_path_not_taken(), 3)
        self.assertEqual(self.store.blacklist_size, 3)
        self.assertEqual(self.store.candidates(), [])
        self.hit(0x8000100C)
        self.hit(0x80001000)
        self.assertEqual(self.store.phase, Phase.BLACKLIST)

        self.store.code_path_was_taken()

        self.assertEqual(self.store.phase, Phase.REDUCTION)
        expected = [r for r in self.store.collection() if r.key not in self.store.blacklisted_keys()]
        self.assertEqual(self.store.selection, expected)
        self.assertEqual(self.origins(self.store.selection), [0x8000100C])
        self.assertEqual(self.store.selection[0].hits_recent, 0)

    def test_second_taken_narrows_instead_of_rebuilding(self) -> None:
        for origin in (0x80001000, 0x80001004, 0x80001008):
            self.hit(origin)
        self.store.code_path_was_taken()
        self.hit(0x80001008)
        self.hit(0x80001000)
        self.hit(0x80002000)  # new after reduction started: never joins the selection
        removed = self.store.code_path_was_taken()
        self.assertEqual(removed, 1)
        self.assertEqual(self.store.phase, Phase.REDUCTION)
        self.assertEqual(self.origins(self.store.selection), [0x80001000, 0x80001008])

    def test_not_taken_in_reduction_removes_hit_candidates(self) -> None:
        for origin in (0x80001000, 0x80001004, 0x80001008):
            self.hit(origin)
        self.store.code_path_was_taken()
        self.hit(0x80001004)
        self.assertEqual(self.store.code_path_not_taken(), 1)
        self.assertEqual(self.origins(self.store.selection), [0x80001000, 0x80001008])

    def test_selection_never_regains_entries(self) -> None:
        self.hit(0x80001000)
        self.hit(0x80001004)
        self.store.code_path_was_taken()
        self.hit(0x80001000)
        self.store.code_path_was_taken()
        self.assertEqual(self.origins(self.store.selection), [0x80001000])
        self.hit(0x80001004)
        self.hit(0x80001004)
        self.store.code_path_not_taken()
        self.store.code_path_was_taken()
        self.assertNotIn(0x80001004, self.origins(self.store.selection))

    def test_overwrite_tests_in_both_phases(self) -> None:
        self.hit(0x80001000, instruction=BL)
        self.hit(0x80001004, instruction=BC)
        self.hit(0x80001008, instruction=BL)
        memory = {0x80001000: BL, 0x80001004: 0x60000000}
        reader = memory.get

        # Unreadable origin (0x80001008) is left alone; unchanged origin is excluded.
        self.assertEqual(self.store.branch_was_overwritten(reader), 1)
        self.assertEqual(self.origins(self.store.candidates()), [0x80001004, 0x80001008])

        self.store.code_path_was_taken()
        memory[0x80001008] = BL
        self.assertEqual(self.store.branch_was_overwritten(reader), 1)
        self.assertEqual(self.origins(self.store.selection), [0x80001004])

    def test_branch_not_overwritten_in_blacklist_excludes_changed(self) -> None:
        self.hit(0x80001000, instruction=BL)
        self.hit(0x80001004, instruction=BC)
        self.store.branch_not_overwritten({0x80001000: BL, 0x80001004: 0x60000000}.get)
        self.assertEqual(self.origins(self.store.candidates()), [0x80001000])

    def test_clear_all_returns_to_blacklist(self) -> None:
        self.hit(0x80001000)
        self.store.code_path_not_taken()
        self.hit(0x80001004)
        self.store.code_path_was_taken()
        self.store.clear_all()
        self.assertEqual(self.store.phase, Phase.BLACKLIST)
        self.assertEqual(self.store.collection_size, 0)
        self.assertEqual(self.store.blacklist_size, 0)
        self.assertEqual(self.store.selection, [])

    def test_revision_changes_on_structural_updates(self) -> None:
        start = self.store.revision
        self.hit(0x80001000)
        self.assertGreater(self.store.revision, start)
        after_add = self.store.revision
        self.hit(0x80001000)
        self.assertEqual(self.store.revision, after_add)
        self.store.code_path_was_taken()
        self.assertGreater(self.store.revision, after_add)


class TestMaintenance(CandidateStoreTestCase):
    def test_delete_blacklists_before_reduction(self) -> None:
        self.hit(0x80001000)
        self.hit(0x80001004)
        doomed = [r for r in self.store.candidates() if r.origin_address == 0x80001000]
        self.assertEqual(self.store.delete(doomed), 1)
        self.assertEqual(self.origins(self.store.candidates()), [0x80001004])
        self.assertEqual(self.store.blacklist_size, 1)

    def test_delete_removes_from_selection(self) -> None:
        self.hit(0x80001000)
        self.hit(0x80001004)
        self.store.code_path_was_taken()
        self.store.delete(self.store.selection[:1])
        self.assertEqual(self.origins(self.store.selection), [0x80001004])

    def test_wipe_recent_hits_and_inspection(self) -> None:
        self.hit(0x80001000)
        self.store.code_path_was_taken()
        self.hit(0x80001000)
        record = self.store.selection[0]
        self.store.set_inspected(record)
        self.assertEqual(record.hits_recent, 1)
        self.store.wipe_recent_hits()
        self.assertEqual(record.hits_recent, 0)
        self.assertEqual(record.hits_total, 2)
        self.store.wipe_inspection()
        self.assertFalse(record.inspected)

    def test_update_symbols_resolves_names_and_starts(self) -> None:
        self.hit(0x80001010, destination=0x80002000)
        symbols = SymbolMap([Symbol("main", 0x80001000, 0x100)])
        self.store.update_symbols(symbols.resolve)
        record = self.store.candidates()[0]
        self.assertEqual(record.origin_symbol, "main")
        self.assertEqual(record.origin_symbol_start, 0x80001000)
        self.assertIsNone(record.destination_symbol)

    def test_restore_rebuilds_phase_and_selection(self) -> None:
        kept = make_record(origin=0x80001000)
        dropped = make_record(origin=0x80001004)
        self.store.restore(Phase.REDUCTION, [kept, dropped], selection=[kept.key, CandidateKey(1, 2, 3)])
        self.assertEqual(self.store.phase, Phase.REDUCTION)
        self.assertEqual(self.store.selection, [kept])
        self.assertEqual(self.store.collection_size, 2)


if __name__ == "__main__":
    unittest.main()
