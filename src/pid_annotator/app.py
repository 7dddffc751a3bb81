from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from PyQt5.QtCore import QObject, QPoint, QPointF, QRectF, Qt, QThread, QTimer, pyqtSignal
from PyQt5.QtGui import QColor, QKeySequence, QPainter, QPen, QPixmap
from PyQt5.QtWidgets import (
    QApplication,
    QCheckBox,
    QComboBox,
    QFileDialog,
    QFormLayout,
    QGraphicsPixmapItem,
    QGraphicsScene,
    QGraphicsView,
    QGroupBox,
    QHBoxLayout,
    QInputDialog,
    QLabel,
    QLineEdit,
    QListWidget,
    QListWidgetItem,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QShortcut,
    QSplitter,
    QVBoxLayout,
    QWidget,
)

from .analysis_source import OneShotLoadGate, load_analysis_file
from .annotation_core import AnnotationRecord, AnnotationStore, StoreEvent, load_annotations_file, save_annotations_file
from .config import AnnotatorConfig, FieldSpec, load_annotator_config
from .geometry import PageRect, to_pixels, to_target_pixels
from .interaction import (
    H_BOTTOM,
    H_BOTTOM_LEFT,
    H_BOTTOM_RIGHT,
    H_LEFT,
    H_RIGHT,
    H_TOP,
    H_TOP_LEFT,
    H_TOP_RIGHT,
    InteractionEngine,
    handle_at,
)
from .pdf_to_images import is_page_image, is_pdf, render_first_page_png
from .properties import PropertiesEditor
from .schemas import Category
from .viewport import ViewportTracker

logger = logging.getLogger("pid_annotator.app")

NO_CATEGORY = "(none)"
_HANDLE_SIZE = 6

_ENGINE_KEYS = {
    Qt.Key_Escape: "Escape",
    Qt.Key_Delete: "Delete",
    Qt.Key_Backspace: "Backspace",
    Qt.Key_Left: "Left",
    Qt.Key_Right: "Right",
    Qt.Key_Up: "Up",
    Qt.Key_Down: "Down",
}


def cursor_for_handle(handle: Optional[str]):
    if handle in (H_TOP_LEFT, H_BOTTOM_RIGHT):
        return Qt.SizeFDiagCursor
    if handle in (H_TOP_RIGHT, H_BOTTOM_LEFT):
        return Qt.SizeBDiagCursor
    if handle in (H_LEFT, H_RIGHT):
        return Qt.SizeHorCursor
    if handle in (H_TOP, H_BOTTOM):
        return Qt.SizeVerCursor
    return Qt.OpenHandCursor


def summarize_record(record: AnnotationRecord, source_size: PageRect, page_rect: Optional[PageRect] = None) -> str:
    """One-line list entry with the box in analysis-image pixels.

    When the page is on screen, the rendered size is appended, projected
    through the analysis image rather than straight from the fractions.
    """
    box = to_pixels(record.bbox, source_size)
    category = record.category or "-"
    text = f"{record.label} [{category}] @ {box['x']},{box['y']} {box['width']}x{box['height']}"
    if page_rect is not None:
        shown = to_target_pixels(record.bbox, source_size, page_rect)
        text += f" (screen {shown['width']}x{shown['height']})"
    return text


class QtRenderSurface:
    """Exposes the page pixmap's on-screen rectangle to the viewport tracker."""

    def __init__(self, view: QGraphicsView, page_item: QGraphicsPixmapItem) -> None:
        self.view = view
        self.page_item = page_item

    def page_rect(self) -> Optional[PageRect]:
        if self.page_item.pixmap().isNull():
            return None
        mapped = self.view.mapFromScene(self.page_item.sceneBoundingRect()).boundingRect()
        if mapped.width() <= 0 or mapped.height() <= 0:
            return None
        return PageRect(width=mapped.width(), height=mapped.height(), left=mapped.left(), top=mapped.top())

    def container_size(self) -> Optional[PageRect]:
        viewport = self.view.viewport()
        if not viewport.isVisible():
            return None
        return PageRect(width=viewport.width(), height=viewport.height())


class AnnotationView(QGraphicsView):
    zoom_requested = pyqtSignal(float)
    geometry_changed = pyqtSignal(str)

    def __init__(self, scene: QGraphicsScene, parent: Optional[QWidget] = None) -> None:
        super().__init__(scene, parent)
        self.engine: Optional[InteractionEngine] = None
        self._is_view_panning = False
        self._pan_last = QPoint()
        self._pan_button: Optional[int] = None
        self.setMouseTracking(True)
        self.viewport().setMouseTracking(True)
        self.setFocusPolicy(Qt.StrongFocus)

    def attach_engine(self, engine: InteractionEngine) -> None:
        self.engine = engine

    def _page_local(self, pos: QPoint) -> Optional[tuple]:
        if self.engine is None:
            return None
        rect = self.engine.page_rect()
        left = rect.left if rect is not None else 0.0
        top = rect.top if rect is not None else 0.0
        return (pos.x() - left, pos.y() - top)

    def pan_by_view_pixels(self, dx: int, dy: int) -> None:
        if dx == 0 and dy == 0:
            return
        center_view = self.viewport().rect().center()
        target_scene = self.mapToScene(center_view + QPoint(dx, dy))
        self.centerOn(target_scene)

    def wheelEvent(self, event) -> None:
        if event.modifiers() & Qt.ControlModifier:
            delta = event.angleDelta().y()
            if delta:
                factor = 1.2 if delta > 0 else 1 / 1.2
                self.zoom_requested.emit(factor)
                event.accept()
                return
        super().wheelEvent(event)

    def mousePressEvent(self, event) -> None:
        self.setFocus()
        if event.button() in (Qt.MiddleButton, Qt.RightButton):
            self._is_view_panning = True
            self._pan_button = int(event.button())
            self._pan_last = event.pos()
            self.setCursor(Qt.ClosedHandCursor)
            event.accept()
            return
        local = self._page_local(event.pos())
        if event.button() == Qt.LeftButton and local is not None:
            self.engine.pointer_down(*local)
            event.accept()
            return
        super().mousePressEvent(event)

    def mouseMoveEvent(self, event) -> None:
        if self._is_view_panning:
            delta = event.pos() - self._pan_last
            self._pan_last = event.pos()
            self.pan_by_view_pixels(-delta.x(), -delta.y())
            event.accept()
            return
        local = self._page_local(event.pos())
        if local is not None:
            if self.engine.is_idle:
                self._update_hover_cursor(*local)
            elif self.engine.pointer_move(*local):
                event.accept()
                return
        super().mouseMoveEvent(event)

    def mouseReleaseEvent(self, event) -> None:
        if self._is_view_panning and self._pan_button == int(event.button()):
            self._is_view_panning = False
            self._pan_button = None
            self.setCursor(Qt.ArrowCursor)
            event.accept()
            return
        local = self._page_local(event.pos())
        if event.button() == Qt.LeftButton and local is not None:
            self.engine.pointer_up(*local)
            event.accept()
            return
        super().mouseReleaseEvent(event)

    def keyPressEvent(self, event) -> None:
        name = _ENGINE_KEYS.get(event.key())
        if name is not None and self.engine is not None:
            shift = bool(event.modifiers() & Qt.ShiftModifier)
            if self.engine.key_press(name, shift=shift):
                event.accept()
                return
        super().keyPressEvent(event)

    def resizeEvent(self, event) -> None:
        super().resizeEvent(event)
        self.geometry_changed.emit("resize")

    def scrollContentsBy(self, dx: int, dy: int) -> None:
        super().scrollContentsBy(dx, dy)
        self.geometry_changed.emit("scroll")

    def _update_hover_cursor(self, x: float, y: float) -> None:
        hit_id = self.engine.hit_test(x, y)
        if hit_id is None:
            self.viewport().setCursor(Qt.CrossCursor)
            return
        for record, box, _selected in self.engine.projected_boxes():
            if record.id == hit_id:
                handle = handle_at(box, x, y, self.engine.config.resize_margin_px)
                self.viewport().setCursor(cursor_for_handle(handle))
                return

    def paintEvent(self, event) -> None:
        super().paintEvent(event)
        self._paint_annotations()

    def _paint_annotations(self) -> None:
        if self.engine is None:
            return
        rect = self.engine.page_rect()
        if rect is None:
            return
        painter = QPainter(self.viewport())
        painter.setRenderHint(QPainter.Antialiasing, True)
        painter.translate(rect.left, rect.top)

        for record, box, selected in self.engine.projected_boxes():
            color = QColor(self.engine.category_color(record.category))
            fill = QColor(color)
            fill.setAlpha(60 if selected else 28)
            area = QRectF(box["x"], box["y"], box["width"], box["height"])
            painter.setPen(QPen(color, 3 if selected else 2))
            painter.fillRect(area, fill)
            painter.drawRect(area)
            painter.drawText(area.topLeft() + QPointF(2, -4), record.label)
            if selected:
                self._paint_handles(painter, area, color)

        draft = self.engine.draft_box()
        if draft is not None:
            color = QColor(self.engine.category_color(self.engine.active_category))
            pen = QPen(color, 2)
            pen.setStyle(Qt.DashLine)
            painter.setPen(pen)
            painter.drawRect(QRectF(draft["x"], draft["y"], draft["width"], draft["height"]))
        painter.end()

    def _paint_handles(self, painter: QPainter, area: QRectF, color: QColor) -> None:
        half = _HANDLE_SIZE / 2
        for corner in (area.topLeft(), area.topRight(), area.bottomLeft(), area.bottomRight()):
            painter.fillRect(QRectF(corner.x() - half, corner.y() - half, _HANDLE_SIZE, _HANDLE_SIZE), color)


class PropertiesPanel(QGroupBox):
    save_requested = pyqtSignal()
    delete_requested = pyqtSignal()

    def __init__(self, field_specs: List[FieldSpec], parent: Optional[QWidget] = None) -> None:
        super().__init__("Properties", parent)
        self.field_specs = field_specs
        self.inputs: Dict[str, QLineEdit] = {}
        layout = QVBoxLayout(self)
        form = QFormLayout()
        for spec in field_specs:
            line = QLineEdit()
            self.inputs[spec.key] = line
            form.addRow(spec.name, line)
        layout.addLayout(form)

        buttons = QHBoxLayout()
        self.save_btn = QPushButton("Save")
        self.delete_btn = QPushButton("Delete")
        buttons.addStretch(1)
        buttons.addWidget(self.delete_btn)
        buttons.addWidget(self.save_btn)
        layout.addLayout(buttons)
        self.save_btn.clicked.connect(self.save_requested.emit)
        self.delete_btn.clicked.connect(self.delete_requested.emit)

    def load_form(self, form: Dict[str, str], enabled: bool) -> None:
        for key, line in self.inputs.items():
            line.blockSignals(True)
            line.setText(form.get(key, ""))
            line.blockSignals(False)
            line.setEnabled(enabled)
        self.save_btn.setEnabled(enabled)
        self.delete_btn.setEnabled(enabled)

    def form_values(self) -> Dict[str, str]:
        return {key: line.text() for key, line in self.inputs.items()}


class AnalysisLoadWorker(QObject):
    completed = pyqtSignal(int, object)
    failed = pyqtSignal(int, str)
    finished = pyqtSignal()

    def __init__(self, ticket: int, source_path: Path, placeholder_label: str, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.ticket = ticket
        self.source_path = source_path
        self.placeholder_label = placeholder_label

    def run(self) -> None:
        try:
            partials = load_analysis_file(self.source_path, placeholder_label=self.placeholder_label)
            self.completed.emit(self.ticket, partials)
        except Exception as exc:
            self.failed.emit(self.ticket, str(exc))
        finally:
            self.finished.emit()


class AnnotationWindow(QMainWindow):
    def __init__(
        self,
        config: AnnotatorConfig,
        document_path: Optional[Path] = None,
        annotations_path: Optional[Path] = None,
        dpi: int = 150,
    ) -> None:
        super().__init__()
        self.config = config
        self.document_path = document_path
        self.annotations_path = annotations_path
        self.dpi = dpi
        self._analysis_thread: Optional[QThread] = None
        self._analysis_worker: Optional[AnalysisLoadWorker] = None
        self._syncing_list = False

        self.store = AnnotationStore(placeholder_label=config.annotations.placeholder_label)
        self.scene = QGraphicsScene(self)
        self.page_item = QGraphicsPixmapItem()
        self.scene.addItem(self.page_item)
        self.view = AnnotationView(self.scene, self)
        self.tracker = ViewportTracker.from_config(
            QtRenderSurface(self.view, self.page_item),
            config.viewport,
            schedule=self._schedule,
        )
        self.engine = InteractionEngine(
            self.store,
            self.tracker,
            config=config.interaction,
            default_category=config.annotations.default_category,
            category_colors=config.annotations.category_colors,
            on_rejected=self._on_draw_rejected,
            on_label_requested=self._on_label_requested,
            on_changed=self.view.viewport().update,
        )
        self.view.attach_engine(self.engine)
        self.gate = OneShotLoadGate(self.store, on_applied=self._on_analysis_applied)

        self.setWindowTitle("P&ID Annotator")
        self.resize(1320, 860)
        self._build_ui()
        self.editor = PropertiesEditor(self.store, config.annotations.fields, on_changed=self._sync_properties)
        self._sync_properties()
        self.store.subscribe(self._on_store_event)

        if document_path is not None:
            self.load_document(document_path)
        if annotations_path is not None and annotations_path.is_file():
            self._load_annotations_from(annotations_path)
        self._refresh_list()

    # -- ui --------------------------------------------------------------

    def _build_ui(self) -> None:
        central = QWidget(self)
        self.setCentralWidget(central)
        root = QVBoxLayout(central)
        root.setSpacing(10)
        root.setContentsMargins(10, 10, 10, 10)

        nav = QHBoxLayout()
        self.open_btn = QPushButton("Open Document")
        self.load_btn = QPushButton("Load JSON")
        self.save_btn = QPushButton("Save (Ctrl+S)")
        self.add_btn = QPushButton("Add Annotation")
        self.analysis_btn = QPushButton("Run Analysis")
        self.zoom_out_btn = QPushButton("Zoom -")
        self.zoom_in_btn = QPushButton("Zoom +")
        self.fit_btn = QPushButton("Fit")
        self.category_combo = QComboBox()
        self.category_combo.addItem(NO_CATEGORY)
        for category in Category:
            self.category_combo.addItem(category.value)
        self.label_input = QLineEdit()
        self.label_input.setPlaceholderText("Active label")
        for widget in (self.open_btn, self.load_btn, self.save_btn, self.add_btn, self.analysis_btn):
            nav.addWidget(widget)
        nav.addWidget(QLabel("Category"))
        nav.addWidget(self.category_combo)
        nav.addWidget(self.label_input)
        nav.addStretch(1)
        for widget in (self.zoom_out_btn, self.zoom_in_btn, self.fit_btn):
            nav.addWidget(widget)
        root.addLayout(nav)

        visibility = QHBoxLayout()
        visibility.addWidget(QLabel("Show"))
        self.visibility_checks: Dict[str, QCheckBox] = {}
        for category in Category:
            check = QCheckBox(category.value)
            check.setChecked(True)
            check.toggled.connect(lambda checked, name=category.value: self.engine.set_category_visible(name, checked))
            self.visibility_checks[category.value] = check
            visibility.addWidget(check)
        visibility.addStretch(1)
        root.addLayout(visibility)

        splitter = QSplitter(Qt.Horizontal)
        splitter.addWidget(self.view)
        side = QWidget()
        side_layout = QVBoxLayout(side)
        side_layout.setContentsMargins(0, 0, 0, 0)
        self.annotation_list = QListWidget()
        side_layout.addWidget(QLabel("Annotations"))
        side_layout.addWidget(self.annotation_list, 1)
        self.properties_panel = PropertiesPanel(list(self.config.annotations.fields))
        side_layout.addWidget(self.properties_panel)
        splitter.addWidget(side)
        splitter.setStretchFactor(0, 4)
        splitter.setStretchFactor(1, 1)
        root.addWidget(splitter, 1)

        self.open_btn.clicked.connect(self.open_document)
        self.load_btn.clicked.connect(self.load_annotations)
        self.save_btn.clicked.connect(self.save_annotations)
        self.add_btn.clicked.connect(self.add_annotation)
        self.analysis_btn.clicked.connect(self.run_analysis)
        self.zoom_in_btn.clicked.connect(self.zoom_in)
        self.zoom_out_btn.clicked.connect(self.zoom_out)
        self.fit_btn.clicked.connect(self.fit_view)
        self.category_combo.currentTextChanged.connect(self._on_category_changed)
        self.label_input.textChanged.connect(self.engine.set_active_label)
        self.annotation_list.currentItemChanged.connect(self._on_list_selection)
        self.properties_panel.save_requested.connect(self._save_properties)
        self.properties_panel.delete_requested.connect(self._delete_properties)
        self.view.zoom_requested.connect(self._apply_zoom)
        self.view.geometry_changed.connect(self.tracker.refresh)

        QShortcut(QKeySequence("Ctrl+S"), self, activated=self.save_annotations)
        QShortcut(QKeySequence("Ctrl+O"), self, activated=self.open_document)
        QShortcut(QKeySequence("Ctrl+N"), self, activated=self.add_annotation)
        QShortcut(QKeySequence("Ctrl+="), self, activated=self.zoom_in)
        QShortcut(QKeySequence("Ctrl+-"), self, activated=self.zoom_out)
        QShortcut(QKeySequence("Ctrl+0"), self, activated=self.fit_view)

    def _schedule(self, delay_ms: int, callback: Callable[[], None]) -> Callable[[], None]:
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.timeout.connect(callback)
        timer.timeout.connect(timer.deleteLater)
        timer.start(delay_ms)
        return timer.stop

    def showEvent(self, event) -> None:
        super().showEvent(event)
        if not self.tracker.mounted:
            self.tracker.mount()

    def closeEvent(self, event) -> None:
        self.gate.unmount()
        self.engine.unmount()
        self.tracker.unmount()
        self.editor.close()
        super().closeEvent(event)

    # -- document --------------------------------------------------------

    def open_document(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            self,
            "Open drawing",
            str(self.document_path.parent if self.document_path else Path.cwd()),
            "Drawings (*.pdf *.png *.jpg *.jpeg *.webp *.bmp *.tif *.tiff)",
        )
        if path:
            self.load_document(Path(path))

    def load_document(self, path: Path) -> bool:
        if not (is_pdf(path) or is_page_image(path)):
            QMessageBox.warning(self, "Open failed", f"Unsupported document type: {path.suffix or path.name}")
            return False
        pixmap = QPixmap()
        try:
            if is_pdf(path):
                loaded = pixmap.loadFromData(render_first_page_png(path, dpi=self.dpi), "PNG")
            else:
                loaded = pixmap.load(str(path))
        except Exception as exc:
            logger.exception("failed to render %s", path)
            QMessageBox.warning(self, "Open failed", f"Could not render {path}:\n{exc}")
            return False
        if not loaded or pixmap.isNull():
            QMessageBox.warning(self, "Open failed", f"Could not read image: {path}")
            return False

        self.engine.cancel()
        self.document_path = path
        self.page_item.setPixmap(pixmap)
        self.scene.setSceneRect(QRectF(pixmap.rect()))
        self.fit_view()
        self.tracker.on_layout_mutated()
        self.statusBar().showMessage(f"Opened {path.name} ({pixmap.width()}x{pixmap.height()})", 3000)
        return True

    # -- zoom ------------------------------------------------------------

    def _apply_zoom(self, factor: float) -> None:
        current_zoom = self.view.transform().m11()
        next_zoom = current_zoom * factor
        if next_zoom < 0.05 or next_zoom > 40.0:
            return
        self.view.scale(factor, factor)
        self.tracker.on_zoom_changed()

    def zoom_in(self) -> None:
        self._apply_zoom(1.2)

    def zoom_out(self) -> None:
        self._apply_zoom(1 / 1.2)

    def fit_view(self) -> None:
        image_rect = self.page_item.sceneBoundingRect()
        if image_rect.isNull():
            return
        self.view.resetTransform()
        self.view.fitInView(image_rect, Qt.KeepAspectRatio)
        self.tracker.on_zoom_changed()

    # -- annotations -----------------------------------------------------

    def _on_category_changed(self, text: str) -> None:
        self.engine.set_active_category(None if text == NO_CATEGORY else text)

    def _on_draw_rejected(self, message: str) -> None:
        self.statusBar().showMessage(message, 4000)
        QMessageBox.information(self, "Select a category", message)

    def _on_label_requested(self, _draft: Dict[str, float]) -> None:
        QTimer.singleShot(0, self._prompt_label)

    def _prompt_label(self) -> None:
        default = self.engine.active_label or ""
        label, ok = QInputDialog.getText(self, "New annotation", "Label:", text=default)
        if not ok:
            self.engine.cancel()
            return
        annotation_id = self.engine.confirm_label(label)
        if annotation_id is not None:
            self.statusBar().showMessage(f"Added {annotation_id}", 2000)

    def add_annotation(self) -> None:
        annotation_id = self.engine.add_placeholder()
        self.statusBar().showMessage(f"Added {annotation_id}", 2000)

    def _on_store_event(self, event: StoreEvent) -> None:
        self._refresh_list()
        self.view.viewport().update()

    def _refresh_list(self) -> None:
        source_size = PageRect(
            width=self.config.analysis.image_width,
            height=self.config.analysis.image_height,
        )
        page_rect = self.engine.page_rect()
        self._syncing_list = True
        try:
            self.annotation_list.clear()
            for record in self.store.records():
                item = QListWidgetItem(summarize_record(record, source_size, page_rect))
                item.setData(Qt.UserRole, record.id)
                item.setForeground(QColor(self.engine.category_color(record.category)))
                self.annotation_list.addItem(item)
                if record.id == self.store.selected_id:
                    self.annotation_list.setCurrentItem(item)
        finally:
            self._syncing_list = False

    def _on_list_selection(self, current: Optional[QListWidgetItem], _previous: Any) -> None:
        if self._syncing_list:
            return
        self.store.select(current.data(Qt.UserRole) if current is not None else None)

    def _sync_properties(self) -> None:
        self.properties_panel.load_form(self.editor.form, self.editor.is_open)

    def _save_properties(self) -> None:
        if self.editor.on_save(self.properties_panel.form_values()):
            self.statusBar().showMessage("Properties saved.", 2000)

    def _delete_properties(self) -> None:
        if self.editor.on_delete():
            self.statusBar().showMessage("Annotation deleted.", 2000)

    # -- persistence -----------------------------------------------------

    def _load_annotations_from(self, path: Path) -> bool:
        try:
            loaded = load_annotations_file(path, placeholder_label=self.config.annotations.placeholder_label)
        except (OSError, ValueError) as exc:
            QMessageBox.warning(self, "Load failed", f"Could not load {path}:\n{exc}")
            return False
        self.engine.cancel()
        self.store.load_payload(loaded.to_payload())
        self.annotations_path = path
        self.statusBar().showMessage(f"Loaded {len(self.store)} annotations from {path.name}", 3000)
        return True

    def load_annotations(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Load annotations", str(Path.cwd()), "JSON (*.json)")
        if path:
            self._load_annotations_from(Path(path))

    def save_annotations(self) -> None:
        target = self.annotations_path
        if target is None:
            path, _ = QFileDialog.getSaveFileName(self, "Save annotations", "annotations.json", "JSON (*.json)")
            if not path:
                return
            target = Path(path)
        try:
            save_annotations_file(target, self.store)
        except (OSError, ValueError) as exc:
            QMessageBox.critical(self, "Save failed", str(exc))
            return
        self.annotations_path = target
        self.statusBar().showMessage(f"Saved {len(self.store)} annotations to {target}", 3000)

    # -- analysis --------------------------------------------------------

    def run_analysis(self) -> None:
        if self._analysis_thread is not None:
            self.statusBar().showMessage("Analysis already running.", 2000)
            return
        source = self.config.analysis.source_path
        if source is None:
            path, _ = QFileDialog.getOpenFileName(self, "Analysis results", str(Path.cwd()), "JSON (*.json)")
            if not path:
                return
            source = Path(path)

        ticket = self.gate.begin()
        worker = AnalysisLoadWorker(ticket, source, self.config.analysis.placeholder_label)
        thread = QThread(self)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.completed.connect(self._on_analysis_completed)
        worker.failed.connect(self._on_analysis_failed)
        worker.finished.connect(thread.quit)
        worker.finished.connect(worker.deleteLater)
        thread.finished.connect(thread.deleteLater)
        thread.finished.connect(self._on_analysis_finished)

        self._analysis_worker = worker
        self._analysis_thread = thread
        self.analysis_btn.setEnabled(False)
        self.statusBar().showMessage(f"Loading analysis from {source.name}...", 3000)
        thread.start()

    def _on_analysis_completed(self, ticket: int, partials: List[Dict[str, Any]]) -> None:
        self.engine.cancel()
        self.gate.deliver(ticket, partials)

    def _on_analysis_failed(self, ticket: int, message: str) -> None:
        self.gate.fail(ticket)
        if self.gate.mounted:
            QMessageBox.warning(self, "Analysis failed", message)

    def _on_analysis_finished(self) -> None:
        self._analysis_worker = None
        self._analysis_thread = None
        self.analysis_btn.setEnabled(True)

    def _on_analysis_applied(self, ids: List[str]) -> None:
        self.statusBar().showMessage(f"Loaded {len(ids)} boxes from analysis.", 3000)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Annotate a P&ID drawing with categorized bounding boxes.")
    parser.add_argument("--document", default=None, help="PDF or image to annotate (first page of a PDF).")
    parser.add_argument("--annotations", default=None, help="Annotations JSON path to load from and save to.")
    parser.add_argument("--analysis", default=None, help="Analysis results JSON used by Run Analysis.")
    parser.add_argument("--config", default=None, help="YAML config path (default: $PID_ANNOTATOR_CONFIG).")
    parser.add_argument("--dpi", type=int, default=150, help="Render resolution for PDF documents.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_annotator_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    if args.analysis:
        config.analysis.source_path = Path(args.analysis)

    document_path = Path(args.document) if args.document else None
    if document_path is not None and not document_path.is_file():
        print(f"Document not found: {document_path}", file=sys.stderr)
        return 1

    if hasattr(Qt, "AA_EnableHighDpiScaling"):
        QApplication.setAttribute(Qt.AA_EnableHighDpiScaling, True)
    if hasattr(Qt, "AA_UseHighDpiPixmaps"):
        QApplication.setAttribute(Qt.AA_UseHighDpiPixmaps, True)

    app = QApplication(sys.argv)
    window = AnnotationWindow(
        config=config,
        document_path=document_path,
        annotations_path=Path(args.annotations) if args.annotations else None,
        dpi=args.dpi,
    )
    window.show()
    return app.exec_()


if __name__ == "__main__":
    raise SystemExit(main())
