"""Tests for the image annotator widget."""

import os
from unittest.mock import patch, MagicMock

import pytest
from PySide6.QtCore import QEvent, QPointF, Qt
from PySide6.QtGui import QColor, QImage, QKeyEvent, QMouseEvent
from PySide6.QtWidgets import QApplication, QMessageBox

app = QApplication.instance() or QApplication([])

from annotations import (
  ArrowAnnotation, FreehandAnnotation, RectangleAnnotation, TextAnnotation,
)
from annotator import AnnotationTextInput, ImageAnnotator
from export import DEFAULT_DOWNLOAD_FILENAME
from session import LoadState

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def make_test_image(path, w=200, h=150):
  """Write a small solid-color PNG for the annotator to load."""
  img = QImage(w, h, QImage.Format.Format_ARGB32)
  img.fill(QColor(255, 255, 255))
  assert img.save(str(path))
  return str(path)


def mouse(kind, x, y, button=Qt.MouseButton.LeftButton):
  buttons = Qt.MouseButton.NoButton if kind == QEvent.Type.MouseButtonRelease else button
  pos = QPointF(x, y)
  return QMouseEvent(kind, pos, pos, button, buttons, Qt.KeyboardModifier.NoModifier)


def drag(canvas, *points):
  x, y = points[0]
  canvas.mousePressEvent(mouse(QEvent.Type.MouseButtonPress, x, y))
  for x, y in points[1:]:
    canvas.mouseMoveEvent(mouse(QEvent.Type.MouseMove, x, y))
  canvas.mouseReleaseEvent(mouse(QEvent.Type.MouseButtonRelease, x, y))


@pytest.fixture
def image_path(tmp_path):
  return make_test_image(tmp_path / "procedure.png")


# -- Construction -------------------------------------------------------------

class TestConstruction:
  def test_loads_image(self, image_path):
    editor = ImageAnnotator(image_path)
    assert editor.session.state is LoadState.READY
    assert editor.session.canvas_size.pixel_size() == (200, 150)
    assert (editor.canvas.width(), editor.canvas.height()) == (200, 150)
    editor.close()

  def test_bad_image_reports_failure(self, tmp_path):
    editor = ImageAnnotator(str(tmp_path / "missing.png"))
    assert editor.session.state is LoadState.FAILED
    failed = MagicMock()
    editor.image_failed.connect(failed)
    editor.set_image_url(str(tmp_path / "still-missing.png"))
    assert editor.session.state is LoadState.FAILED
    failed.assert_called_once()
    assert editor.save() is False
    assert editor.download(folder=str(tmp_path)) is None
    editor.close()

  def test_new_url_recovers_from_failure(self, tmp_path, image_path):
    editor = ImageAnnotator(str(tmp_path / "missing.png"))
    assert editor.session.state is LoadState.FAILED
    editor.set_image_url(image_path)
    assert editor.session.state is LoadState.READY
    editor.close()

  def test_initial_annotations_shown(self, image_path):
    seed = [
      RectangleAnnotation((10, 10), (50, 40), "#FF0000", 3),
      {"type": "text", "points": [[5, 20]], "color": "#000", "lineWidth": 2, "text": "A"},
    ]
    editor = ImageAnnotator(image_path, initial_annotations=seed)
    assert len(editor.annotations()) == 2
    assert editor.annotations()[0] is seed[0]
    assert editor.toolbar._undo_btn.isEnabled()
    editor.close()

  def test_save_button_only_with_callback(self, image_path):
    without = ImageAnnotator(image_path)
    with_cb = ImageAnnotator(image_path, on_save=MagicMock())
    assert without._save_btn.isHidden()
    assert not with_cb._save_btn.isHidden()
    without.close()
    with_cb.close()

  def test_read_only_hides_toolbar(self, image_path):
    editor = ImageAnnotator(image_path, read_only=True)
    assert editor.toolbar.isHidden()
    drag(editor.canvas, (0, 0), (50, 50))
    assert editor.annotations() == []
    editor.close()

  def test_defaults_applied(self, image_path):
    editor = ImageAnnotator(image_path, default_tool="circle",
                            default_color="#00FF00", default_line_width=5)
    assert editor.session.tools.tool == "circle"
    assert editor.toolbar.current_tool() == "circle"
    assert editor.toolbar.width_combo.currentData() == 5
    editor.close()


# -- Input controller ---------------------------------------------------------

class TestMouseInput:
  def test_arrow_drag_commits(self, image_path):
    editor = ImageAnnotator(image_path, initial_annotations=[])
    editor.select_tool("arrow")
    drag(editor.canvas, (0, 0), (10, 0))
    anns = editor.annotations()
    assert len(anns) == 1
    assert isinstance(anns[0], ArrowAnnotation)
    assert anns[0].points == [(0, 0), (10, 0)]
    editor.undo()
    assert editor.annotations() == []
    editor.close()

  def test_freehand_samples_every_move(self, image_path):
    editor = ImageAnnotator(image_path)
    drag(editor.canvas, (1, 1), (2, 2), (3, 5), (8, 8))
    ann = editor.annotations()[0]
    assert isinstance(ann, FreehandAnnotation)
    assert len(ann.points) == 4
    editor.close()

  def test_leave_mid_gesture_commits(self, image_path):
    editor = ImageAnnotator(image_path)
    editor.select_tool("rectangle")
    canvas = editor.canvas
    canvas.mousePressEvent(mouse(QEvent.Type.MouseButtonPress, 5, 5))
    canvas.mouseMoveEvent(mouse(QEvent.Type.MouseMove, 30, 30))
    canvas.leaveEvent(QEvent(QEvent.Type.Leave))
    assert len(editor.annotations()) == 1
    assert editor.session.tools.idle
    editor.close()

  def test_moving_off_canvas_commits_without_outside_point(self, image_path):
    editor = ImageAnnotator(image_path)
    canvas = editor.canvas
    assert (canvas.width(), canvas.height()) == (200, 150)
    canvas.mousePressEvent(mouse(QEvent.Type.MouseButtonPress, 5, 5))
    canvas.mouseMoveEvent(mouse(QEvent.Type.MouseMove, 50, 50))
    canvas.mouseMoveEvent(mouse(QEvent.Type.MouseMove, 400, 400))
    assert editor.session.tools.idle
    anns = editor.annotations()
    assert len(anns) == 1
    assert anns[0].points == [(5.0, 5.0), (50.0, 50.0)]
    # Further moves and the eventual release start nothing new
    canvas.mouseMoveEvent(mouse(QEvent.Type.MouseMove, 60, 60))
    canvas.mouseReleaseEvent(mouse(QEvent.Type.MouseButtonRelease, 400, 400))
    assert len(editor.annotations()) == 1
    editor.close()

  def test_shape_dragged_off_canvas_keeps_last_inside_end(self, image_path):
    editor = ImageAnnotator(image_path)
    editor.select_tool("rectangle")
    drag(editor.canvas, (10, 10), (40, 30), (250, 30))
    ann = editor.annotations()[0]
    assert isinstance(ann, RectangleAnnotation)
    assert ann.points == [(10.0, 10.0), (40.0, 30.0)]
    editor.close()

  def test_right_button_ignored(self, image_path):
    editor = ImageAnnotator(image_path)
    editor.canvas.mousePressEvent(
      mouse(QEvent.Type.MouseButtonPress, 5, 5, Qt.MouseButton.RightButton))
    assert editor.session.tools.idle
    editor.close()

  def test_annotations_changed_signal(self, image_path):
    editor = ImageAnnotator(image_path)
    changed = MagicMock()
    editor.annotations_changed.connect(changed)
    drag(editor.canvas, (1, 1), (9, 9))
    editor.undo()
    assert changed.call_count == 2
    editor.close()


# -- Text overlay -------------------------------------------------------------

class TestTextOverlay:
  def _open(self, image_path):
    editor = ImageAnnotator(image_path)
    editor.select_tool("text")
    editor.canvas.mousePressEvent(mouse(QEvent.Type.MouseButtonPress, 40, 60))
    editor.canvas.mouseReleaseEvent(mouse(QEvent.Type.MouseButtonRelease, 40, 60))
    return editor

  def test_click_opens_input_at_anchor(self, image_path):
    editor = self._open(image_path)
    overlay = editor.canvas.text_input()
    assert isinstance(overlay, AnnotationTextInput)
    assert (overlay.x(), overlay.y()) == (40, 60)
    assert editor.annotations() == []
    editor.close()

  def test_enter_commits_text(self, image_path):
    editor = self._open(image_path)
    overlay = editor.canvas.text_input()
    overlay.setText("  Lesion  ")
    overlay.keyPressEvent(QKeyEvent(QEvent.Type.KeyPress, Qt.Key.Key_Return,
                                    Qt.KeyboardModifier.NoModifier))
    ann = editor.annotations()[0]
    assert isinstance(ann, TextAnnotation)
    assert ann.text == "Lesion"
    assert ann.anchor == (40, 60)
    assert editor.canvas.text_input() is None
    editor.close()

  def test_escape_cancels(self, image_path):
    editor = self._open(image_path)
    overlay = editor.canvas.text_input()
    overlay.setText("discard me")
    overlay.keyPressEvent(QKeyEvent(QEvent.Type.KeyPress, Qt.Key.Key_Escape,
                                    Qt.KeyboardModifier.NoModifier))
    assert editor.annotations() == []
    assert editor.canvas.text_input() is None
    editor.close()

  def test_empty_text_not_committed(self, image_path):
    editor = self._open(image_path)
    editor.canvas.text_input().confirmed.emit("   ")
    assert editor.annotations() == []
    editor.close()

  def test_only_one_overlay(self, image_path):
    editor = self._open(image_path)
    first = editor.canvas.text_input()
    editor.canvas.mousePressEvent(mouse(QEvent.Type.MouseButtonPress, 90, 90))
    assert editor.canvas.text_input() is first
    assert editor.session.tools.text_anchor == (40, 60)
    editor.close()


# -- Actions ------------------------------------------------------------------

class TestActions:
  def test_set_color_and_width_sync_toolbar(self, image_path):
    editor = ImageAnnotator(image_path)
    editor.set_color("#0000FF")
    editor.set_line_width(8)
    assert editor.toolbar.color_btn.color() == "#0000FF"
    assert editor.toolbar.width_combo.currentData() == 8
    drag(editor.canvas, (0, 0), (5, 5))
    ann = editor.annotations()[0]
    assert (ann.color, ann.line_width) == ("#0000FF", 8)
    editor.close()

  def test_invalid_settings_ignored(self, image_path):
    editor = ImageAnnotator(image_path)
    editor.set_color("nope")
    editor.set_line_width(0)
    assert editor.session.tools.color == "#FF0000"
    assert editor.session.tools.line_width == 3
    editor.close()

  def test_custom_width_added_to_combo(self, image_path):
    editor = ImageAnnotator(image_path)
    editor.set_line_width(12)
    assert editor.toolbar.width_combo.currentData() == 12
    editor.close()

  def test_toolbar_tool_click_selects(self, image_path):
    editor = ImageAnnotator(image_path)
    editor.toolbar._tool_buttons["circle"].click()
    assert editor.session.tools.tool == "circle"
    editor.close()

  def test_select_tool_checks_button(self, image_path):
    editor = ImageAnnotator(image_path)
    editor.select_tool("eraser")
    assert editor.toolbar.current_tool() == "eraser"
    editor.close()

  def test_undo_on_empty_is_noop(self, image_path):
    editor = ImageAnnotator(image_path)
    editor.undo()
    assert editor.annotations() == []
    assert not editor.toolbar._undo_btn.isEnabled()
    editor.close()

  def test_ctrl_z_undoes(self, image_path):
    editor = ImageAnnotator(image_path)
    drag(editor.canvas, (0, 0), (5, 5))
    editor.keyPressEvent(QKeyEvent(QEvent.Type.KeyPress, Qt.Key.Key_Z,
                                   Qt.KeyboardModifier.ControlModifier))
    assert editor.annotations() == []
    editor.close()

  def test_clear_is_immediate(self, image_path):
    editor = ImageAnnotator(image_path)
    drag(editor.canvas, (0, 0), (5, 5))
    drag(editor.canvas, (9, 9), (15, 15))
    editor.clear()
    assert editor.annotations() == []
    assert not editor.toolbar._clear_btn.isEnabled()
    editor.close()

  def test_clear_button_asks_first(self, image_path):
    editor = ImageAnnotator(image_path)
    drag(editor.canvas, (0, 0), (5, 5))
    with patch("annotator.QMessageBox.question",
               return_value=QMessageBox.StandardButton.No) as ask:
      editor.toolbar._clear_btn.click()
    ask.assert_called_once()
    assert len(editor.annotations()) == 1
    with patch("annotator.QMessageBox.question",
               return_value=QMessageBox.StandardButton.Yes):
      editor.toolbar._clear_btn.click()
    assert editor.annotations() == []
    editor.close()

  def test_clear_without_confirmation(self, image_path):
    editor = ImageAnnotator(image_path, confirm_clear=False)
    drag(editor.canvas, (0, 0), (5, 5))
    with patch("annotator.QMessageBox.question") as ask:
      editor.toolbar._clear_btn.click()
    ask.assert_not_called()
    assert editor.annotations() == []
    editor.close()


# -- Save / download ----------------------------------------------------------

class TestSaveDownload:
  def test_save_hands_back_annotations_and_png(self, image_path):
    on_save = MagicMock()
    seed = [RectangleAnnotation((10, 10), (50, 40), "#FF0000", 3)]
    editor = ImageAnnotator(image_path, initial_annotations=seed, on_save=on_save)
    drag(editor.canvas, (0, 0), (5, 5))
    assert editor.save() is True
    on_save.assert_called_once()
    annotations, raster = on_save.call_args[0]
    assert annotations[0] is seed[0]
    assert len(annotations) == 2
    assert raster.startswith(PNG_MAGIC)
    editor.close()

  def test_save_without_callback(self, image_path):
    editor = ImageAnnotator(image_path)
    assert editor.save() is False
    editor.close()

  def test_download_writes_png(self, image_path, tmp_path):
    out = tmp_path / "out"
    editor = ImageAnnotator(image_path, download_folder=str(out))
    path = editor.download()
    assert os.path.basename(path) == DEFAULT_DOWNLOAD_FILENAME
    with open(path, "rb") as f:
      assert f.read().startswith(PNG_MAGIC)
    editor.close()

  def test_download_custom_name_and_folder(self, image_path, tmp_path):
    editor = ImageAnnotator(image_path)
    path = editor.download("case-17.png", folder=str(tmp_path))
    assert path == os.path.join(str(tmp_path), "case-17.png")
    editor.close()
