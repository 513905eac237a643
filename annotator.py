"""Image annotator widget: toolbar, drawing canvas and text entry."""

from __future__ import annotations

from typing import Callable, TYPE_CHECKING

from PySide6.QtCore import Qt, QPointF, QRect, Signal
from PySide6.QtGui import (
  QColor, QIcon, QPainter, QPainterPath, QPen, QPixmap,
)
from PySide6.QtWidgets import (
  QButtonGroup, QColorDialog, QComboBox, QHBoxLayout, QLabel, QLineEdit,
  QMessageBox, QPushButton, QVBoxLayout, QWidget,
)

import export
from annotations import Annotation
from image_loader import ImageLoader
from log import get_logger
from platform_utils import default_download_folder
from renderer import TEXT_SIZE_FACTOR, text_font
from session import AnnotatorSession, LoadState
from tools import (
  DEFAULT_COLOR, DEFAULT_LINE_WIDTH, DEFAULT_TOOL, LINE_WIDTH_PRESETS, TOOLS,
)

if TYPE_CHECKING:
  from PySide6.QtCore import QEvent
  from PySide6.QtGui import QKeyEvent, QMouseEvent, QPaintEvent, QResizeEvent

log = get_logger("annotate")

ICON_SIZE = 24
TEXT_INPUT_MIN_WIDTH = 160

TOOL_LABELS = {
  "freehand": "Freehand Drawing",
  "rectangle": "Rectangle",
  "circle": "Circle",
  "arrow": "Arrow",
  "text": "Text",
  "eraser": "Eraser",
}


# -- Icon drawing helpers -----------------------------------------------------

def _make_icon(draw_fn) -> QIcon:
  """Create a QIcon by painting onto a 24x24 pixmap."""
  pixmap = QPixmap(ICON_SIZE, ICON_SIZE)
  pixmap.fill(QColor(0, 0, 0, 0))
  painter = QPainter(pixmap)
  painter.setRenderHint(QPainter.RenderHint.Antialiasing)
  painter.setPen(QPen(QColor(60, 60, 60), 2))
  painter.setBrush(Qt.BrushStyle.NoBrush)
  draw_fn(painter, ICON_SIZE)
  painter.end()
  return QIcon(pixmap)


def _draw_freehand_icon(painter: QPainter, size: int) -> None:
  path = QPainterPath()
  path.moveTo(3, size * 0.7)
  path.cubicTo(size * 0.25, size * 0.2, size * 0.5, size * 0.8, size - 3, size * 0.3)
  painter.drawPath(path)


def _draw_rectangle_icon(painter: QPainter, size: int) -> None:
  painter.drawRect(3, 5, size - 6, size - 10)


def _draw_circle_icon(painter: QPainter, size: int) -> None:
  painter.drawEllipse(4, 4, size - 8, size - 8)


def _draw_arrow_icon(painter: QPainter, size: int) -> None:
  painter.drawLine(4, size // 2, size - 4, size // 2)
  painter.drawLine(size - 4, size // 2, size - 10, size // 2 - 6)
  painter.drawLine(size - 4, size // 2, size - 10, size // 2 + 6)


def _draw_text_icon(painter: QPainter, size: int) -> None:
  font = painter.font()
  font.setPointSize(14)
  font.setBold(True)
  painter.setFont(font)
  painter.drawText(QRect(0, 0, size, size), Qt.AlignmentFlag.AlignCenter, "T")


def _draw_eraser_icon(painter: QPainter, size: int) -> None:
  painter.save()
  painter.translate(size / 2, size / 2)
  painter.rotate(-45)
  painter.drawRect(-9, -5, 18, 10)
  painter.drawLine(-2, -5, -2, 5)
  painter.restore()


_TOOL_ICONS = {
  "freehand": _draw_freehand_icon,
  "rectangle": _draw_rectangle_icon,
  "circle": _draw_circle_icon,
  "arrow": _draw_arrow_icon,
  "text": _draw_text_icon,
  "eraser": _draw_eraser_icon,
}


# -- Color button -------------------------------------------------------------

class ColorButton(QPushButton):
  """Color swatch button that opens a QColorDialog on click."""
  color_changed = Signal(str)

  def __init__(self, color: str = DEFAULT_COLOR, parent: QWidget | None = None):
    super().__init__(parent)
    self._color = color
    self.setFixedSize(28, 28)
    self.setToolTip("Annotation color")
    self._update_style()
    self.clicked.connect(self._pick_color)

  def color(self) -> str:
    return self._color

  def set_color(self, color: str) -> None:
    self._color = color
    self._update_style()

  def _update_style(self) -> None:
    self.setStyleSheet(
      "QPushButton { background-color: %s; border: 2px solid #999; border-radius: 4px; }"
      "QPushButton:hover { border-color: #555; }"
      % QColor(self._color).name()
    )

  def _pick_color(self) -> None:
    c = QColorDialog.getColor(QColor(self._color), self.parentWidget(), "Annotation Color")
    if c.isValid():
      self.set_color(c.name().upper())
      self.color_changed.emit(self._color)


# -- Toolbar ------------------------------------------------------------------

class AnnotationToolbar(QWidget):
  """Tool buttons, stroke settings, undo and clear."""

  tool_changed = Signal(str)
  color_changed = Signal(str)
  width_changed = Signal(int)
  undo_requested = Signal()
  clear_requested = Signal()

  def __init__(self, tool: str = DEFAULT_TOOL, color: str = DEFAULT_COLOR,
               line_width: int = DEFAULT_LINE_WIDTH, parent: QWidget | None = None):
    super().__init__(parent)
    self.setAttribute(Qt.WidgetAttribute.WA_StyledBackground, True)
    self.setStyleSheet(
      "AnnotationToolbar { background: #f5f5f5; border: 1px solid #ddd; border-radius: 6px; }"
    )

    layout = QHBoxLayout(self)
    layout.setContentsMargins(8, 4, 8, 4)
    layout.setSpacing(4)

    btn_style = (
      "QPushButton { background: transparent; border: 1px solid #ccc; border-radius: 4px; padding: 2px; }"
      "QPushButton:checked { background: #333; border-color: #333; }"
      "QPushButton:hover { background: rgba(0, 0, 0, 20); }"
    )

    self._tool_group = QButtonGroup(self)
    self._tool_group.setExclusive(True)
    self._tool_buttons: dict[str, QPushButton] = {}
    for name in TOOLS:
      btn = QPushButton()
      btn.setIcon(_make_icon(_TOOL_ICONS[name]))
      btn.setFixedSize(32, 32)
      btn.setCheckable(True)
      btn.setToolTip(TOOL_LABELS[name])
      btn.setStyleSheet(btn_style)
      self._tool_group.addButton(btn)
      self._tool_buttons[name] = btn
      layout.addWidget(btn)
    self.set_active_tool_button(tool)
    self._tool_group.buttonClicked.connect(self._on_tool_clicked)

    # Color picker
    self.color_btn = ColorButton(color, self)
    self.color_btn.color_changed.connect(self.color_changed.emit)
    layout.addWidget(self.color_btn)

    # Stroke width presets
    self.width_combo = QComboBox()
    self.width_combo.setToolTip("Stroke width")
    for label, width in LINE_WIDTH_PRESETS.items():
      self.width_combo.addItem(label, width)
    self.set_width(line_width)
    self.width_combo.currentIndexChanged.connect(self._on_width_changed)
    layout.addWidget(self.width_combo)

    layout.addStretch(1)

    action_style = (
      "QPushButton { border: 1px solid #ccc; border-radius: 4px; font-size: 11px; padding: 2px 8px; }"
      "QPushButton:disabled { color: #aaa; border-color: #e0e0e0; }"
    )
    self._undo_btn = QPushButton("Undo")
    self._undo_btn.setFixedHeight(28)
    self._undo_btn.setToolTip("Undo (Ctrl+Z)")
    self._undo_btn.setStyleSheet(action_style)
    self._undo_btn.setEnabled(False)
    self._undo_btn.clicked.connect(self.undo_requested.emit)
    layout.addWidget(self._undo_btn)

    self._clear_btn = QPushButton("Clear All")
    self._clear_btn.setFixedHeight(28)
    self._clear_btn.setToolTip("Remove every annotation")
    self._clear_btn.setStyleSheet(action_style)
    self._clear_btn.setEnabled(False)
    self._clear_btn.clicked.connect(self.clear_requested.emit)
    layout.addWidget(self._clear_btn)

  def _on_tool_clicked(self, btn: QPushButton) -> None:
    for name, candidate in self._tool_buttons.items():
      if candidate is btn:
        self.tool_changed.emit(name)
        return

  def _on_width_changed(self, index: int) -> None:
    width = self.width_combo.itemData(index)
    if width is not None:
      self.width_changed.emit(int(width))

  def current_tool(self) -> str:
    checked = self._tool_group.checkedButton()
    for name, btn in self._tool_buttons.items():
      if btn is checked:
        return name
    return DEFAULT_TOOL

  def set_active_tool_button(self, tool: str) -> None:
    """Visually check the button for the given tool."""
    btn = self._tool_buttons.get(tool)
    if btn:
      btn.setChecked(True)

  def set_width(self, width: int) -> None:
    """Select the matching preset, adding a custom entry for other widths."""
    index = self.width_combo.findData(width)
    if index < 0:
      self.width_combo.addItem("%d px" % width, width)
      index = self.width_combo.count() - 1
    self.width_combo.blockSignals(True)
    self.width_combo.setCurrentIndex(index)
    self.width_combo.blockSignals(False)

  def set_undo_enabled(self, enabled: bool) -> None:
    self._undo_btn.setEnabled(enabled)

  def set_clear_enabled(self, enabled: bool) -> None:
    self._clear_btn.setEnabled(enabled)


# -- Text input widget --------------------------------------------------------

class AnnotationTextInput(QLineEdit):
  """Transient text input anchored where the text tool was clicked."""
  confirmed = Signal(str)
  cancelled = Signal()

  def __init__(self, color: str, pixel_size: int, parent: QWidget | None = None):
    super().__init__(parent)
    self.setFont(text_font(max(pixel_size, 8)))
    self.setPlaceholderText("Enter text")
    self.setStyleSheet(
      "QLineEdit { background: white; color: %s; border: 1px solid %s;"
      " border-radius: 3px; padding: 2px 4px; }"
      % (QColor(color).name(), QColor(color).name())
    )
    self.setMinimumWidth(TEXT_INPUT_MIN_WIDTH)

  def keyPressEvent(self, event: QKeyEvent) -> None:
    if event.key() == Qt.Key.Key_Escape:
      self.cancelled.emit()
      event.accept()
      return
    if event.key() in (Qt.Key.Key_Return, Qt.Key.Key_Enter):
      # Accept so Enter does not reach the editor
      self.confirmed.emit(self.text())
      event.accept()
      return
    super().keyPressEvent(event)


# -- Drawing canvas -----------------------------------------------------------

class AnnotationCanvas(QWidget):
  """Canvas-sized widget that paints the session and feeds it pointer input."""

  def __init__(self, session: AnnotatorSession, parent: QWidget | None = None):
    super().__init__(parent)
    self.session = session
    self._text_input: AnnotationTextInput | None = None
    session.add_listener(self._on_session_changed)
    self._on_session_changed()

  def _on_session_changed(self) -> None:
    w, h = self.session.canvas_size.pixel_size()
    if (w, h) != (self.width(), self.height()):
      self.setFixedSize(max(w, 0), max(h, 0))
    if self.session.editable:
      self.setCursor(Qt.CursorShape.CrossCursor)
    else:
      self.unsetCursor()
    if self._text_input is not None and not self.session.tools.awaiting_text:
      self._remove_text_input()
    self.update()

  def paintEvent(self, event: QPaintEvent) -> None:
    painter = QPainter(self)
    self.session.render(painter)
    painter.end()

  # -- Mouse events -----------------------------------------------------------

  def mousePressEvent(self, event: QMouseEvent) -> None:
    if event.button() != Qt.MouseButton.LeftButton or not self.session.editable:
      return
    pos = event.position()
    self.session.pointer_down(pos.x(), pos.y())
    if self.session.tools.awaiting_text and self.text_input() is None:
      self._place_text_input(self.session.tools.text_anchor)

  def mouseMoveEvent(self, event: QMouseEvent) -> None:
    if not self.session.tools.dragging:
      return
    pos = event.position()
    # The grab keeps moves coming past the edge; leaving ends the gesture
    if not self.rect().contains(pos.toPoint()):
      self.session.pointer_leave()
      return
    self.session.pointer_move(pos.x(), pos.y())

  def mouseReleaseEvent(self, event: QMouseEvent) -> None:
    if event.button() != Qt.MouseButton.LeftButton:
      return
    self.session.pointer_up()

  def leaveEvent(self, event: QEvent) -> None:
    if self.session.tools.dragging:
      self.session.pointer_leave()
    super().leaveEvent(event)

  # -- Text tool --------------------------------------------------------------

  def text_input(self) -> AnnotationTextInput | None:
    return self._text_input

  def _place_text_input(self, anchor) -> None:
    tools = self.session.tools
    self._text_input = AnnotationTextInput(
      tools.color, tools.line_width * TEXT_SIZE_FACTOR, self,
    )
    self._text_input.confirmed.connect(self.session.confirm_text)
    self._text_input.cancelled.connect(self.session.cancel_text)
    self._text_input.move(QPointF(*anchor).toPoint())
    self._text_input.show()
    self._text_input.setFocus()

  def _remove_text_input(self) -> None:
    if self._text_input is not None:
      self._text_input.hide()
      self._text_input.deleteLater()
      self._text_input = None


class _CanvasArea(QWidget):
  """Container that reports its size to the session and centres the canvas."""

  def __init__(self, session: AnnotatorSession, parent: QWidget | None = None):
    super().__init__(parent)
    self.session = session
    self.setMinimumSize(1, 1)
    self.setStyleSheet("_CanvasArea { background: #f0f0f0; }")
    self.setAttribute(Qt.WidgetAttribute.WA_StyledBackground, True)
    self.canvas = AnnotationCanvas(session, self)
    self.status = QLabel(self)
    self.status.setAlignment(Qt.AlignmentFlag.AlignCenter)
    self.status.setStyleSheet("QLabel { color: #888; }")
    session.add_listener(self._relayout)
    self._relayout()

  def resizeEvent(self, event: QResizeEvent) -> None:
    super().resizeEvent(event)
    self.session.resize_container(self.width(), self.height())
    self._relayout()

  def _relayout(self) -> None:
    state = self.session.state
    if state is LoadState.READY:
      self.status.hide()
      self.canvas.show()
    else:
      self.canvas.hide()
      self.status.setText(
        "Loading image..." if state is LoadState.LOADING
        else "Image failed to load"
      )
      self.status.setGeometry(0, 0, self.width(), self.height())
      self.status.show()
    w, h = self.session.canvas_size.pixel_size()
    self.canvas.move(max((self.width() - w) // 2, 0), max((self.height() - h) // 2, 0))


# -- Host-facing widget -------------------------------------------------------

class ImageAnnotator(QWidget):
  """Annotate an image with freehand, shape and text markup.

  on_save(annotations, png_bytes) is called by save(); download() writes the
  flattened PNG into the download folder.
  """

  image_failed = Signal(str)
  annotations_changed = Signal()

  def __init__(self, image_url: str,
               initial_annotations=None,
               on_save: Callable[[list[Annotation], bytes], None] | None = None,
               read_only: bool = False,
               default_tool: str = DEFAULT_TOOL,
               default_color: str = DEFAULT_COLOR,
               default_line_width: int = DEFAULT_LINE_WIDTH,
               download_folder: str | None = None,
               confirm_clear: bool = True,
               parent: QWidget | None = None):
    super().__init__(parent)
    self.on_save = on_save
    self._download_folder = download_folder or default_download_folder()
    self._confirm_clear = confirm_clear
    self.session = AnnotatorSession(
      initial_annotations, read_only=read_only, tool=default_tool,
      color=default_color, line_width=default_line_width,
    )
    self._last_ids = self._annotation_ids()
    self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)

    layout = QVBoxLayout(self)
    layout.setContentsMargins(0, 0, 0, 0)
    layout.setSpacing(6)

    # Header: title + download / save
    header = QHBoxLayout()
    title = QLabel("Image Annotation")
    title.setStyleSheet("QLabel { font-size: 15px; font-weight: 500; }")
    header.addWidget(title)
    header.addStretch(1)
    self._download_btn = QPushButton("Download")
    self._download_btn.setToolTip("Download")
    self._download_btn.clicked.connect(lambda: self.download())
    header.addWidget(self._download_btn)
    self._save_btn = QPushButton("Save")
    self._save_btn.setToolTip("Save")
    self._save_btn.clicked.connect(self.save)
    self._save_btn.setVisible(on_save is not None)
    header.addWidget(self._save_btn)
    layout.addLayout(header)

    tools = self.session.tools
    self._toolbar = AnnotationToolbar(tools.tool, tools.color, tools.line_width, self)
    self._toolbar.tool_changed.connect(self.select_tool)
    self._toolbar.color_changed.connect(self.set_color)
    self._toolbar.width_changed.connect(self.set_line_width)
    self._toolbar.undo_requested.connect(self.undo)
    self._toolbar.clear_requested.connect(self._on_clear_requested)
    self._toolbar.setVisible(not read_only)
    layout.addWidget(self._toolbar)

    self._area = _CanvasArea(self.session, self)
    layout.addWidget(self._area, 1)

    self._loader = ImageLoader(self)
    self._loader.loaded.connect(self.session.image_ready)
    self._loader.failed.connect(self._on_image_failed)

    self.session.add_listener(self._on_session_changed)
    self.set_image_url(image_url)

  @property
  def canvas(self) -> AnnotationCanvas:
    return self._area.canvas

  @property
  def toolbar(self) -> AnnotationToolbar:
    return self._toolbar

  def annotations(self) -> list[Annotation]:
    return self.session.annotations

  def _annotation_ids(self) -> tuple[str, ...]:
    return tuple(a.id for a in self.session.model)

  # -- Image ------------------------------------------------------------------

  def set_image_url(self, image_url: str) -> None:
    """Load a (new) source image. Annotations are kept."""
    self.image_url = image_url
    self.session.image_loading()
    self._loader.load(image_url)

  def _on_image_failed(self, reason: str) -> None:
    self.session.image_failed(reason)
    self.image_failed.emit(reason)

  def _on_session_changed(self) -> None:
    has_annotations = not self.session.model.is_empty()
    if self._toolbar.current_tool() != self.session.tools.tool:
      self._toolbar.set_active_tool_button(self.session.tools.tool)
    self._toolbar.set_undo_enabled(has_annotations)
    self._toolbar.set_clear_enabled(has_annotations)
    ids = self._annotation_ids()
    if ids != self._last_ids:
      self._last_ids = ids
      self.annotations_changed.emit()

  # -- Actions ----------------------------------------------------------------

  def select_tool(self, kind: str) -> None:
    self.session.select_tool(kind)

  def set_color(self, value: str) -> None:
    self.session.set_color(value)
    self._toolbar.color_btn.set_color(self.session.tools.color)

  def set_line_width(self, value: int) -> None:
    self.session.set_line_width(value)
    self._toolbar.set_width(self.session.tools.line_width)

  def undo(self) -> None:
    self.session.undo()

  def clear(self) -> None:
    self.session.clear()

  def _on_clear_requested(self) -> None:
    if self._confirm_clear:
      answer = QMessageBox.question(
        self, "Clear annotations",
        "Are you sure you want to clear all annotations?",
      )
      if answer != QMessageBox.StandardButton.Yes:
        return
    self.clear()

  def save(self) -> bool:
    """Hand the annotation list and flattened PNG to on_save."""
    if self.on_save is None or not self.session.ready:
      return False
    raster = self.session.to_raster_buffer()
    self.on_save(self.session.annotations, raster)
    log.info("Saved %d annotations (%d bytes)", len(self.session.model), len(raster))
    return True

  def download(self, filename: str = export.DEFAULT_DOWNLOAD_FILENAME,
               folder: str | None = None) -> str | None:
    """Write the flattened PNG to the download folder. Returns the path."""
    raster = self.session.to_raster_buffer()
    if not raster:
      return None
    return export.write_raster(raster, folder or self._download_folder, filename)

  # -- Keyboard ---------------------------------------------------------------

  def keyPressEvent(self, event: QKeyEvent) -> None:
    mods = event.modifiers() & (
      Qt.KeyboardModifier.ControlModifier
      | Qt.KeyboardModifier.ShiftModifier
      | Qt.KeyboardModifier.AltModifier
    )
    if event.key() == Qt.Key.Key_Z and mods == Qt.KeyboardModifier.ControlModifier:
      self.undo()
      return
    super().keyPressEvent(event)
