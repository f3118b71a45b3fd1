from __future__ import annotations

import logging
import sys
from enum import IntEnum
from typing import Callable

from PySide6.QtCore import Qt, QObject, QThread, Signal, QTimer, QModelIndex, QAbstractTableModel, QSortFilterProxyModel
from PySide6.QtWidgets import (
    QApplication,
    QMainWindow,
    QWidget,
    QVBoxLayout,
    QGridLayout,
    QGroupBox,
    QPushButton,
    QLineEdit,
    QFileDialog,
    QMessageBox,
    QInputDialog,
    QCheckBox,
    QMenu,
    QToolBar,
    QTableView,
    QAbstractItemView,
    QSizePolicy,
    QStatusBar,
)
from PySide6.QtGui import QColor, QKeySequence, QShortcut

from branchwatch.config_manager import AppConfig, ConfigManager
from branchwatch.controllers.watch_controller import WatchController
from branchwatch.models.branch_variant import BranchVariant
from branchwatch.models.candidate import CandidateRecord, Phase
from branchwatch.models.filter_config import AddressBound, SymbolSide
from branchwatch.services import instruction_classifier
from branchwatch.services.filter_engine import FilterEngine, parse_address_text
from branchwatch.services.candidate_store import CandidateStore
from branchwatch.services.patch_actions import AddressColumn, PatchActionCoordinator, PatchRefused

LOG = logging.getLogger(__name__)

TIMER_PAUSE_ONESHOT_MS = 200
SORT_ROLE = int(Qt.UserRole)
CLICK_ROLE = SORT_ROLE + 1
INSPECTED_COLOR = "#e3ecf7"
SNAPSHOT_FILTER = "Branch Watch snapshot (*.json);;All Files (*)"


class Column(IntEnum):
    INSTRUCTION = 0
    CONDITION = 1
    ORIGIN = 2
    DESTINATION = 3
    RECENT_HITS = 4
    TOTAL_HITS = 5
    ORIGIN_SYMBOL = 6
    DESTINATION_SYMBOL = 7


COLUMN_HEADERS = {
    Column.INSTRUCTION: "Instruction",
    Column.CONDITION: "Condition",
    Column.ORIGIN: "Origin",
    Column.DESTINATION: "Destination",
    Column.RECENT_HITS: "Recent Hits",
    Column.TOTAL_HITS: "Total Hits",
    Column.ORIGIN_SYMBOL: "Origin Symbol",
    Column.DESTINATION_SYMBOL: "Destination Symbol",
}


class BranchWatchTableModel(QAbstractTableModel):
    """Table over ``CandidateStore.candidates()``; rows are reset on structural changes only."""

    def __init__(self, store: CandidateStore, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self.store = store
        self._rows: list[CandidateRecord] = []
        self._revision: int | None = None
        self._data_revision: int | None = None
        self.refresh()

    def refresh(self) -> bool:
        """Pull the latest store state; return True when the row set was rebuilt."""
        with self.store.guard():
            if self._revision != self.store.revision:
                self.beginResetModel()
                self._rows = self.store.candidates()
                self._revision = self.store.revision
                self._data_revision = self.store.data_revision
                self.endResetModel()
                return True
            if self._data_revision != self.store.data_revision:
                self._data_revision = self.store.data_revision
                if self._rows:
                    self._emit_changed(0, len(self._rows) - 1)
        return False

    def _emit_changed(self, first: int, last: int) -> None:
        self.dataChanged.emit(self.index(first, 0), self.index(last, len(Column) - 1))

    @property
    def revision(self) -> int | None:
        return self._revision

    def record_at(self, row: int) -> CandidateRecord:
        return self._rows[row]

    def rowCount(self, parent: QModelIndex = QModelIndex()) -> int:  # type: ignore[override]
        return 0 if parent.isValid() else len(self._rows)

    def columnCount(self, parent: QModelIndex = QModelIndex()) -> int:  # type: ignore[override]
        return 0 if parent.isValid() else len(Column)

    def headerData(self, section: int, orientation, role: int = Qt.DisplayRole):  # type: ignore[override]
        if orientation == Qt.Horizontal and role == Qt.DisplayRole and 0 <= section < len(Column):
            return COLUMN_HEADERS[Column(section)]
        return None

    def data(self, index: QModelIndex, role: int = Qt.DisplayRole):  # type: ignore[override]
        if not index.isValid() or not 0 <= index.row() < len(self._rows):
            return None
        record = self._rows[index.row()]
        # The producer thread updates records in place.
        with self.store.guard():
            return self._role_value(record, Column(index.column()), role)

    def _role_value(self, record: CandidateRecord, column: Column, role: int):
        if role == Qt.DisplayRole:
            return self._display_text(record, column)
        if role == SORT_ROLE:
            return self._sort_value(record, column)
        if role == CLICK_ROLE:
            return self._click_value(record, column)
        if role == Qt.BackgroundRole and record.inspected:
            return QColor(INSPECTED_COLOR)
        if role == Qt.ToolTipRole and column == Column.INSTRUCTION:
            variant = instruction_classifier.classify(record.raw_instruction)
            return variant.description if variant else f"0x{record.raw_instruction:08x}"
        return None

    def _display_text(self, record: CandidateRecord, column: Column) -> str:
        if column == Column.INSTRUCTION:
            return instruction_classifier.disassemble(record.raw_instruction, record.origin_address)
        if column == Column.CONDITION:
            return "true" if record.condition_taken else "false"
        if column == Column.ORIGIN:
            return f"{record.origin_address:08x}"
        if column == Column.DESTINATION:
            return f"{record.destination_address:08x}"
        if column == Column.RECENT_HITS:
            return str(record.hits_recent)
        if column == Column.TOTAL_HITS:
            return str(record.hits_total)
        if column == Column.ORIGIN_SYMBOL:
            return record.origin_symbol or ""
        return record.destination_symbol or ""

    def _sort_value(self, record: CandidateRecord, column: Column):
        if column == Column.INSTRUCTION:
            return record.raw_instruction
        if column == Column.CONDITION:
            return int(record.condition_taken)
        if column == Column.ORIGIN:
            return record.origin_address
        if column == Column.DESTINATION:
            return record.destination_address
        if column == Column.RECENT_HITS:
            return record.hits_recent
        if column == Column.TOTAL_HITS:
            return record.hits_total
        if column == Column.ORIGIN_SYMBOL:
            return record.origin_symbol or ""
        return record.destination_symbol or ""

    def _click_value(self, record: CandidateRecord, column: Column):
        if column == Column.INSTRUCTION:
            return record.raw_instruction
        if column == Column.ORIGIN:
            return record.origin_address
        if column == Column.DESTINATION:
            return record.destination_address
        if column == Column.ORIGIN_SYMBOL:
            return record.origin_symbol_start
        if column == Column.DESTINATION_SYMBOL:
            return record.destination_symbol_start
        return None


class BranchWatchProxyModel(QSortFilterProxyModel):
    """Sort/filter proxy delegating row acceptance to a :class:`FilterEngine`."""

    def __init__(self, engine: FilterEngine, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self.engine = engine
        self.engine.on_changed = self.invalidateRowsFilter
        self.setSortRole(SORT_ROLE)

    def filterAcceptsRow(self, source_row: int, source_parent: QModelIndex) -> bool:  # type: ignore[override]
        model = self.sourceModel()
        if model is None:
            return False
        with self.engine.store.guard():
            return self.engine.matches(model.record_at(source_row))

    def set_branch_type(self, variant: BranchVariant, enabled: bool) -> None:
        self.engine.set_branch_type(variant, enabled)

    def set_condition(self, condition: bool, enabled: bool) -> None:
        self.engine.set_condition(condition, enabled)

    def set_address_bound(self, bound: AddressBound, text: str) -> None:
        self.engine.set_address_bound(bound, text)

    def set_symbol_pattern(self, side: SymbolSide, text: str) -> None:
        self.engine.set_symbol_pattern(side, text)

    def records_for(self, indexes: list[QModelIndex]) -> list[CandidateRecord]:
        model = self.sourceModel()
        return [model.record_at(self.mapToSource(index).row()) for index in indexes]


class TraceReplayWorker(QObject):
    output = Signal(str)
    succeeded = Signal(int)
    failed = Signal(str)

    def __init__(self, controller: WatchController, trace_path: str) -> None:
        super().__init__()
        self.controller = controller
        self.trace_path = trace_path
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def run(self) -> None:
        try:
            recorded = self.controller.replay_trace(
                self.trace_path,
                on_output=self.output.emit,
                should_cancel=lambda: self._cancelled,
            )
            self.succeeded.emit(recorded)
        except Exception as exc:  # pragma: no cover - GUI background task
            self.failed.emit(str(exc))


class App(QMainWindow):
    def __init__(self, controller: WatchController | None = None) -> None:
        super().__init__()
        self.setWindowTitle("Branch Watch Tool")
        self.config_manager = ConfigManager()
        self.config: AppConfig = self.config_manager.load() if controller is None else controller.config
        self.controller = controller or WatchController(self.config, on_output=self._show_output)
        self._replay_thread: QThread | None = None
        self._replay_worker: TraceReplayWorker | None = None

        self.table_model = BranchWatchTableModel(self.controller.store, self)
        self.table_proxy = BranchWatchProxyModel(self.controller.filters, self)
        self.table_proxy.setSourceModel(self.table_model)

        central = QWidget(self)
        layout = QVBoxLayout(central)
        self.control_toolbar = QToolBar(self)
        layout.addWidget(self.control_toolbar)
        self.table_view = self._build_table_view()
        layout.addWidget(self.table_view)
        self.setCentralWidget(central)

        self.status_bar = QStatusBar(self)
        self.status_bar.setSizeGripEnabled(False)
        self.setStatusBar(self.status_bar)

        self.column_visibility_menu = self._build_column_visibility_menu()
        self._build_menu_bar()
        self.control_toolbar.addWidget(self._build_tool_controls())
        self.control_toolbar.addWidget(self._build_branch_type_filters())
        self.control_toolbar.addWidget(self._build_address_filters())
        self.control_toolbar.addWidget(self._build_condition_filters())
        self.control_toolbar.addWidget(self._build_misc_controls())

        self._timer = QTimer(self)
        self._timer.timeout.connect(self._update)
        self.table_proxy.layoutChanged.connect(self.update_status)
        self.table_proxy.modelReset.connect(self.update_status)
        self.table_proxy.rowsInserted.connect(self.update_status)
        self.table_proxy.rowsRemoved.connect(self.update_status)

        self.table_view.setColumnWidth(Column.INSTRUCTION, 120)
        self.table_view.setColumnWidth(Column.CONDITION, 70)
        self.table_view.setColumnWidth(Column.ORIGIN_SYMBOL, 250)
        self.table_view.setColumnWidth(Column.DESTINATION_SYMBOL, 250)
        self.resize(1280, 720)
        self.update_status()

    # -- construction --------------------------------------------------

    def _build_table_view(self) -> QTableView:
        table_view = QTableView(self)
        table_view.setModel(self.table_proxy)
        table_view.setSortingEnabled(True)
        table_view.sortByColumn(Column.ORIGIN, Qt.AscendingOrder)
        table_view.setSelectionMode(QAbstractItemView.ExtendedSelection)
        table_view.setSelectionBehavior(QAbstractItemView.SelectRows)
        table_view.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Expanding)
        table_view.setContextMenuPolicy(Qt.CustomContextMenu)
        table_view.setEditTriggers(QAbstractItemView.NoEditTriggers)
        table_view.setCornerButtonEnabled(False)
        table_view.verticalHeader().hide()
        header = table_view.horizontalHeader()
        header.setContextMenuPolicy(Qt.CustomContextMenu)
        header.setStretchLastSection(True)
        header.setSectionsMovable(True)
        header.setFirstSectionMovable(True)

        table_view.customContextMenuRequested.connect(self._on_table_context_menu)
        header.customContextMenuRequested.connect(self._on_table_header_context_menu)
        QShortcut(QKeySequence(Qt.Key_Delete), self).activated.connect(self._on_table_delete_keypress)
        return table_view

    def _build_column_visibility_menu(self) -> QMenu:
        menu = QMenu("Column &Visibility", self)
        for column in Column:
            action = menu.addAction(COLUMN_HEADERS[column])
            action.setCheckable(True)
            action.setChecked(not self.table_view.isColumnHidden(column))
            action.toggled.connect(lambda enabled, col=column: self.table_view.setColumnHidden(col, not enabled))
        return menu

    def _build_menu_bar(self) -> None:
        menu_bar = self.menuBar()
        menu_bar.setNativeMenuBar(False)

        menu_file = menu_bar.addMenu("&File")
        menu_file.addAction("&Save Branch Watch", self._on_save)
        menu_file.addAction("Save Branch Watch &As...", self._on_save_as)
        menu_file.addAction("&Load Branch Watch", self._on_load)
        menu_file.addAction("Load Branch Watch &From...", self._on_load_from)
        self.autosave_action = menu_file.addAction("A&uto Save")
        self.autosave_action.setCheckable(True)
        self.autosave_action.setChecked(bool(self.config.autosave))
        self.autosave_action.toggled.connect(self._on_toggle_autosave)
        menu_file.addSeparator()
        menu_file.addAction("Replay Branch &Trace...", self._on_replay_trace)
        menu_file.addAction("Load &Memory Image...", self._on_load_memory_image)
        menu_file.addAction("Load S&ymbols...", self._on_load_symbols)

        menu_tool = menu_bar.addMenu("&Tool")
        menu_tool.setToolTipsVisible(True)
        hide_controls = menu_tool.addAction("Hide &Controls")
        hide_controls.setCheckable(True)
        hide_controls.toggled.connect(self._on_hide_show_controls)
        ignore_apploader = menu_tool.addAction("Ignore &Apploader Branch Hits")
        ignore_apploader.setToolTip("This only applies to the initial boot of the emulated software.")
        ignore_apploader.setCheckable(True)
        ignore_apploader.setChecked(bool(self.config.ignore_apploader))
        ignore_apploader.toggled.connect(self._on_toggle_ignore_apploader)
        menu_tool.addMenu(self.column_visibility_menu)
        menu_tool.addAction("Wipe &Inspection Data", self._on_wipe_inspection)

    def _build_tool_controls(self) -> QGroupBox:
        layout = QGridLayout()
        self.start_pause_button = QPushButton("Start Branch Watch", self)
        self.start_pause_button.setCheckable(True)
        self.start_pause_button.toggled.connect(self._on_start_pause)
        self.clear_watch_button = QPushButton("Clear Branch Watch", self)
        self.clear_watch_button.clicked.connect(self._on_clear_branch_watch)
        self.path_was_taken_button = QPushButton("Code Path Was Taken", self)
        self.path_was_taken_button.clicked.connect(self._on_code_path_was_taken)
        self.path_not_taken_button = QPushButton("Code Path Not Taken", self)
        self.path_not_taken_button.clicked.connect(self._on_code_path_not_taken)
        for button, row, column in (
            (self.start_pause_button, 0, 0),
            (self.clear_watch_button, 1, 0),
            (self.path_was_taken_button, 0, 1),
            (self.path_not_taken_button, 1, 1),
        ):
            button.setSizePolicy(QSizePolicy.Preferred, QSizePolicy.Expanding)
            layout.addWidget(button, row, column)
        return self._group_box("Tool Controls", layout)

    def _build_branch_type_filters(self) -> QGroupBox:
        layout = QGridLayout()
        self.branch_type_checkboxes: dict[BranchVariant, QCheckBox] = {}
        for position, variant in enumerate(BranchVariant):
            check_box = QCheckBox(variant.mnemonic, self)
            check_box.setToolTip(variant.description)
            check_box.setChecked(self.controller.filters.configuration.is_branch_type_allowed(variant))
            check_box.toggled.connect(lambda checked, v=variant: self._on_branch_type_toggled(v, checked))
            layout.addWidget(check_box, position // 4, position % 4)
            self.branch_type_checkboxes[variant] = check_box
        return self._group_box("Branch Type", layout)

    def _build_address_filters(self) -> QGroupBox:
        layout = QGridLayout()
        self.symbol_edits: dict[SymbolSide, QLineEdit] = {}
        self.bound_edits: dict[AddressBound, QLineEdit] = {}
        placements = (
            (SymbolSide.ORIGIN, "Origin Symbol", 0, 0),
            (SymbolSide.DESTINATION, "Destination Symbol", 0, 1),
        )
        for side, text, row, column in placements:
            line_edit = QLineEdit(self)
            line_edit.setPlaceholderText(text)
            line_edit.textChanged.connect(lambda value, s=side: self._on_symbol_text_changed(s, value))
            layout.addWidget(line_edit, row, column)
            self.symbol_edits[side] = line_edit
        bounds = (
            (AddressBound.ORIGIN_MIN, "Origin Min", 1, 0),
            (AddressBound.ORIGIN_MAX, "Origin Max", 2, 0),
            (AddressBound.DESTINATION_MIN, "Destination Min", 1, 1),
            (AddressBound.DESTINATION_MAX, "Destination Max", 2, 1),
        )
        for bound, text, row, column in bounds:
            line_edit = QLineEdit(self)
            line_edit.setPlaceholderText(text)
            line_edit.setMaxLength(8)
            line_edit.textChanged.connect(lambda value, b=bound: self._on_address_text_changed(b, value))
            layout.addWidget(line_edit, row, column)
            self.bound_edits[bound] = line_edit
        return self._group_box("Origin and Destination", layout)

    def _build_condition_filters(self) -> QGroupBox:
        layout = QVBoxLayout()
        layout.setAlignment(Qt.AlignHCenter)
        self.cond_true_checkbox = QCheckBox("true", self)
        self.cond_true_checkbox.setToolTip(
            "This will also filter unconditional branches.\n"
            "To filter for or against unconditional branches,\n"
            "use the Branch Type filter options."
        )
        self.cond_false_checkbox = QCheckBox("false", self)
        for condition, check_box in ((True, self.cond_true_checkbox), (False, self.cond_false_checkbox)):
            check_box.setChecked(True)
            check_box.toggled.connect(lambda checked, c=condition: self._on_condition_toggled(c, checked))
            layout.addWidget(check_box)
        return self._group_box("Condition", layout)

    def _build_misc_controls(self) -> QGroupBox:
        layout = QVBoxLayout()
        self.was_overwritten_button = QPushButton("Branch Was Overwritten", self)
        self.was_overwritten_button.clicked.connect(self._on_branch_was_overwritten)
        self.not_overwritten_button = QPushButton("Branch Not Overwritten", self)
        self.not_overwritten_button.clicked.connect(self._on_branch_not_overwritten)
        self.wipe_recent_hits_button = QPushButton("Wipe Recent Hits", self)
        self.wipe_recent_hits_button.clicked.connect(self._on_wipe_recent_hits)
        self.wipe_recent_hits_button.setEnabled(self.controller.store.phase is Phase.REDUCTION)
        for button in (self.was_overwritten_button, self.not_overwritten_button, self.wipe_recent_hits_button):
            button.setSizePolicy(QSizePolicy.Preferred, QSizePolicy.Expanding)
            layout.addWidget(button)
        return self._group_box("Misc. Controls", layout)

    def _group_box(self, title: str, layout) -> QGroupBox:
        group_box = QGroupBox(title, self)
        group_box.setLayout(layout)
        group_box.setAlignment(Qt.AlignHCenter)
        return group_box

    # -- filter slots --------------------------------------------------

    def _on_branch_type_toggled(self, variant: BranchVariant, checked: bool) -> None:
        self.table_proxy.set_branch_type(variant, checked)
        self.update_status()

    def _on_condition_toggled(self, condition: bool, checked: bool) -> None:
        self.table_proxy.set_condition(condition, checked)
        self.update_status()

    def _on_address_text_changed(self, bound: AddressBound, text: str) -> None:
        self.table_proxy.set_address_bound(bound, text)
        self.update_status()

    def _on_symbol_text_changed(self, side: SymbolSide, text: str) -> None:
        self.table_proxy.set_symbol_pattern(side, text)
        self.update_status()

    # -- tool slots ----------------------------------------------------

    def _timer_condition(self) -> bool:
        return self.controller.store.recording_active

    def _on_start_pause(self, checked: bool) -> None:
        if checked:
            self.controller.start()
            self.start_pause_button.setText("Pause Branch Watch")
            self._timer.setSingleShot(False)
            self._timer.start(self.config.poll_interval_ms)
        else:
            self.controller.pause()
            self.start_pause_button.setText("Start Branch Watch")
            # One last poll in case a hit is still being recorded.
            self._timer.setSingleShot(True)
            self._timer.start(TIMER_PAUSE_ONESHOT_MS)
        self._update()

    def _on_clear_branch_watch(self) -> None:
        self.controller.clear_watch()
        self.wipe_recent_hits_button.setEnabled(False)
        self._refresh_table()

    def _on_code_path_was_taken(self) -> None:
        self.controller.code_path_was_taken()
        self.wipe_recent_hits_button.setEnabled(True)
        self._refresh_table()

    def _on_code_path_not_taken(self) -> None:
        self.controller.code_path_not_taken()
        self._refresh_table()

    def _on_branch_was_overwritten(self) -> None:
        self._run_reduction(self.controller.branch_was_overwritten)

    def _on_branch_not_overwritten(self) -> None:
        self._run_reduction(self.controller.branch_not_overwritten)

    def _run_reduction(self, action: Callable[[], int]) -> None:
        try:
            action()
        except PatchRefused as exc:
            QMessageBox.warning(self, "Error", str(exc))
            return
        self._refresh_table()

    def _on_wipe_recent_hits(self) -> None:
        self.controller.store.wipe_recent_hits()
        self.table_model.refresh()

    def _on_wipe_inspection(self) -> None:
        self.controller.store.wipe_inspection()
        self.table_model.refresh()

    def _on_hide_show_controls(self, checked: bool) -> None:
        self.control_toolbar.setVisible(not checked)

    def _on_toggle_ignore_apploader(self, checked: bool) -> None:
        self.controller.set_ignore_apploader(checked)
        self._persist_config()

    def _update(self) -> None:
        if self._refresh_table():
            return
        if self.controller.store.phase is Phase.BLACKLIST:
            self.update_status()

    def _refresh_table(self) -> bool:
        store = self.controller.store
        if len(self.controller.symbols) and self.table_model.revision != store.revision:
            self.controller.update_symbols()
        rebuilt = self.table_model.refresh()
        self.update_status()
        return rebuilt

    def update_status(self) -> None:
        self.status_bar.showMessage(self.controller.status_text())

    def _show_output(self, text: str) -> None:
        LOG.info(text)
        if hasattr(self, "status_bar"):
            self.status_bar.showMessage(text, 3000)

    # -- table slots ---------------------------------------------------

    def selected_records(self, column: int = 0) -> list[CandidateRecord]:
        selection = self.table_view.selectionModel()
        if selection is None:
            return []
        return self.table_proxy.records_for(selection.selectedRows(column))

    def _on_table_context_menu(self, pos) -> None:
        index = self.table_view.indexAt(pos)
        if not index.isValid():
            return
        menu = self.build_context_menu(Column(index.column()), self.selected_records(index.column()))
        menu.exec(self.table_view.viewport().mapToGlobal(pos))

    def build_context_menu(self, column: Column, records: list[CandidateRecord]) -> QMenu:
        patches = self.controller.patches
        menu = QMenu(self)
        menu.addAction("&Delete", lambda: self._on_table_delete(records))
        if column == Column.ORIGIN:
            action = menu.addAction("Insert &NOP")
            action.setEnabled(patches.can_patch())
            action.triggered.connect(lambda: self._run_patch(patches.set_nop, records))
            menu.addAction("&Copy Address", lambda: self._copy_addresses(records, AddressColumn.ORIGIN))
        elif column == Column.DESTINATION:
            action = menu.addAction("Insert &BLR")
            # Computed once here; the selection may still change before the action runs.
            action.setEnabled(patches.can_set_blr(records))
            action.triggered.connect(lambda: self._run_patch(patches.set_blr, records))
            menu.addAction("&Copy Address", lambda: self._copy_addresses(records, AddressColumn.DESTINATION))
        elif column in (Column.ORIGIN_SYMBOL, Column.DESTINATION_SYMBOL):
            side = SymbolSide.ORIGIN if column == Column.ORIGIN_SYMBOL else SymbolSide.DESTINATION
            action = menu.addAction("Insert &BLR at start")
            action.setEnabled(patches.can_set_blr_at_symbol(records, side))
            action.triggered.connect(lambda: self._run_patch(lambda rows: patches.set_blr_at_symbol(rows, side), records))
        return menu

    def _run_patch(self, action: Callable[[list[CandidateRecord]], object], records: list[CandidateRecord]) -> None:
        try:
            action(records)
        except PatchRefused as exc:
            QMessageBox.warning(self, "Error", str(exc))
            return
        self.table_model.refresh()

    def _copy_addresses(self, records: list[CandidateRecord], column: AddressColumn) -> None:
        if not records:
            return
        QApplication.clipboard().setText(PatchActionCoordinator.copy_addresses(records, column))

    def _on_table_header_context_menu(self, pos) -> None:
        self.column_visibility_menu.exec(self.table_view.horizontalHeader().mapToGlobal(pos))

    def _on_table_delete(self, records: list[CandidateRecord]) -> None:
        self.controller.store.delete(records)
        self._refresh_table()

    def _on_table_delete_keypress(self) -> None:
        self._on_table_delete(self.selected_records())

    # -- file slots ----------------------------------------------------

    def _on_save(self) -> None:
        self._report_snapshot(self.controller.save_snapshot())

    def _on_save_as(self) -> None:
        path, _ = QFileDialog.getSaveFileName(
            self, "Save Branch Watch snapshot", str(self.controller.snapshots.directory), SNAPSHOT_FILTER
        )
        if path:
            self._report_snapshot(self.controller.save_snapshot(path))

    def _on_load(self) -> None:
        self._load_snapshot(None)

    def _on_load_from(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            self, "Load Branch Watch snapshot", str(self.controller.snapshots.directory), SNAPSHOT_FILTER
        )
        if path:
            self._load_snapshot(path)

    def _load_snapshot(self, path: str | None) -> None:
        result = self.controller.load_snapshot(path)
        if self._report_snapshot(result):
            self.wipe_recent_hits_button.setEnabled(self.controller.store.phase is Phase.REDUCTION)
            self._refresh_table()

    def _report_snapshot(self, result) -> bool:
        if not result.ok:
            QMessageBox.warning(self, "Error", result.message)
            return False
        self._show_output(f"Snapshot {result.path.name}: {result.candidates} candidates")
        return True

    def _on_toggle_autosave(self, checked: bool) -> None:
        if not checked:
            self.controller.set_autosave(False)
            self._persist_config()
            return
        path, _ = QFileDialog.getSaveFileName(
            self,
            "Select Branch Watch snapshot auto-save file (for user folder location, cancel)",
            str(self.controller.snapshots.directory),
            SNAPSHOT_FILTER,
        )
        self.controller.set_autosave(True, path or None)
        self._persist_config()

    def _on_replay_trace(self) -> None:
        if self._replay_thread is not None:
            QMessageBox.information(self, "Replay running", "A branch trace is already being replayed.")
            return
        path, _ = QFileDialog.getOpenFileName(self, "Replay branch trace", "", "Branch trace (*.txt *.log);;All Files (*)")
        if not path:
            return
        if not self.controller.store.recording_active:
            QMessageBox.information(self, "Branch Watch paused", "Start Branch Watch to record the replayed hits.")
            return
        self.start_replay(path)

    def start_replay(self, path: str) -> None:
        thread = QThread(self)
        worker = TraceReplayWorker(self.controller, path)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.output.connect(self._show_output)
        worker.succeeded.connect(self._on_replay_succeeded)
        worker.failed.connect(self._on_replay_failed)
        worker.succeeded.connect(thread.quit)
        worker.failed.connect(thread.quit)
        thread.finished.connect(worker.deleteLater)
        thread.finished.connect(thread.deleteLater)
        self._replay_thread = thread
        self._replay_worker = worker
        thread.start()

    def _finish_replay(self) -> None:
        self._replay_thread = None
        self._replay_worker = None
        self._refresh_table()

    def _on_replay_succeeded(self, recorded: int) -> None:
        self._finish_replay()
        self._show_output(f"Replay recorded {recorded} branch hits")

    def _on_replay_failed(self, message: str) -> None:
        self._finish_replay()
        QMessageBox.warning(self, "Replay failed", message)

    def _on_load_memory_image(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Load memory image", "", "Binary image (*.bin *.raw);;All Files (*)")
        if not path:
            return
        base_text, ok = QInputDialog.getText(
            self, "Image base", "Load address (hex):", text=f"{self.config.memory_base:08x}"
        )
        if not ok:
            return
        base = parse_address_text(base_text)
        if base is None:
            QMessageBox.warning(self, "Invalid address", "Please enter a hexadecimal load address.")
            return
        try:
            self.controller.load_memory_image(path, base)
        except (OSError, ValueError) as exc:
            QMessageBox.warning(self, "Load failed", str(exc))
            return
        self.config.memory_base = base
        self._persist_config()

    def _on_load_symbols(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Load symbols", "", "ELF (*.elf);;All Files (*)")
        if not path:
            return
        try:
            count = self.controller.load_symbols(path)
        except (OSError, ValueError, NotImplementedError) as exc:
            QMessageBox.warning(self, "Load failed", str(exc))
            return
        self._show_output(f"Loaded {count} symbols")
        self.table_model.refresh()
        self.table_proxy.invalidateRowsFilter()
        self._persist_config()

    def _persist_config(self) -> None:
        try:
            self.config_manager.save(self.config)
        except OSError as exc:
            LOG.warning("Unable to persist settings: %s", exc)

    # -- lifecycle -----------------------------------------------------

    def hideEvent(self, event) -> None:  # type: ignore[override]
        if self._timer.isActive():
            self._timer.stop()
        super().hideEvent(event)

    def showEvent(self, event) -> None:  # type: ignore[override]
        if self._timer_condition():
            self._timer.start(self.config.poll_interval_ms)
        super().showEvent(event)

    def closeEvent(self, event) -> None:  # type: ignore[override]
        if self._replay_worker is not None:
            self._replay_worker.cancel()
        if self._replay_thread is not None:
            self._replay_thread.quit()
            self._replay_thread.wait(2000)
        super().closeEvent(event)


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    qt_app = QApplication(list(argv) if argv is not None else sys.argv)
    window = App()
    window.show()
    return int(qt_app.exec())


if __name__ == "__main__":
    raise SystemExit(main())
