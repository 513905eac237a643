"""Single owner of all mutable editor state for one image-editing session."""

from __future__ import annotations

import enum
from typing import Callable

from PySide6.QtGui import QImage, QPainter

import export
import renderer
from annotations import Annotation, AnnotationModel, TextAnnotation
from geometry import EMPTY_CANVAS, CanvasSize, compute_canvas_size
from log import get_logger
from tools import DEFAULT_COLOR, DEFAULT_LINE_WIDTH, DEFAULT_TOOL, ToolSession

log = get_logger("session")


class LoadState(enum.Enum):
  LOADING = "loading"
  READY = "ready"
  FAILED = "failed"


class AnnotatorSession:
  """Image, geometry, annotation list and tool state, mutated in one place.

  Listeners registered with add_listener() are called after every change
  that needs a repaint. Gestures and list mutations are ignored until the
  image is ready, and always in read-only mode.
  """

  def __init__(self, initial_annotations=None, read_only: bool = False,
               tool: str = DEFAULT_TOOL, color: str = DEFAULT_COLOR,
               line_width: int = DEFAULT_LINE_WIDTH,
               container_size: tuple[float, float] | None = None):
    self.model = AnnotationModel(initial_annotations)
    self.tools = ToolSession(tool, color, line_width)
    self.read_only = read_only
    self.state = LoadState.LOADING
    self.error: str | None = None
    self.image: QImage | None = None
    self.canvas_size: CanvasSize = EMPTY_CANVAS
    self._container_size = container_size
    self._listeners: list[Callable[[], None]] = []

  def add_listener(self, fn: Callable[[], None]) -> None:
    self._listeners.append(fn)

  def _changed(self) -> None:
    for fn in list(self._listeners):
      fn()

  @property
  def ready(self) -> bool:
    return self.state is LoadState.READY

  @property
  def editable(self) -> bool:
    return self.ready and not self.read_only

  @property
  def annotations(self) -> list[Annotation]:
    return self.model.annotations

  # -- Image lifecycle --------------------------------------------------------

  def image_loading(self) -> None:
    self.state = LoadState.LOADING
    self.error = None
    self.image = None
    self.canvas_size = EMPTY_CANVAS
    self._reset_gesture()
    self._changed()

  def image_ready(self, image: QImage) -> None:
    self.state = LoadState.READY
    self.error = None
    self.image = image
    self._reset_gesture()
    self._recompute_geometry()
    self._changed()

  def image_failed(self, reason: str) -> None:
    self.state = LoadState.FAILED
    self.error = reason
    self.image = None
    self.canvas_size = EMPTY_CANVAS
    self._reset_gesture()
    self._changed()

  def _reset_gesture(self) -> None:
    self.tools.discard()
    self.tools.cancel_text()

  # -- Geometry ---------------------------------------------------------------

  def resize_container(self, width: float, height: float) -> None:
    self._container_size = (width, height)
    if self.ready:
      self._recompute_geometry()
      self._changed()

  def _recompute_geometry(self) -> None:
    if self.image is None:
      self.canvas_size = EMPTY_CANVAS
      return
    iw, ih = self.image.width(), self.image.height()
    if self._container_size is None:
      # No container reported yet: show at natural size
      cw, ch = iw, ih
    else:
      cw, ch = self._container_size
    self.canvas_size = compute_canvas_size(iw, ih, cw, ch)

  # -- Settings ---------------------------------------------------------------

  def select_tool(self, tool: str) -> None:
    if self.tools.select_tool(tool):
      self._changed()

  def set_color(self, value: str) -> None:
    self.tools.set_color(value)

  def set_line_width(self, value: int) -> None:
    self.tools.set_line_width(value)

  # -- Pointer input ----------------------------------------------------------

  def pointer_down(self, x: float, y: float) -> None:
    if not self.editable:
      return
    if self.tools.begin((float(x), float(y))):
      self._changed()

  def pointer_move(self, x: float, y: float) -> None:
    if not self.editable:
      return
    if self.tools.extend((float(x), float(y))):
      self._changed()

  def pointer_up(self) -> None:
    if not self.editable:
      self.tools.discard()
      return
    ann = self.tools.finish()
    if ann is None:
      return
    self.model.append(ann)
    log.debug("Committed %s annotation %s", ann.kind, ann.id)
    self._changed()

  # Leaving the canvas mid-gesture commits exactly like releasing
  pointer_leave = pointer_up

  # -- Text entry -------------------------------------------------------------

  def confirm_text(self, text: str) -> TextAnnotation | None:
    if not self.tools.awaiting_text:
      return None
    ann = self.tools.confirm_text(text) if self.editable else None
    self.tools.cancel_text()
    if ann is not None:
      self.model.append(ann)
      log.debug("Committed text annotation %s", ann.id)
    self._changed()
    return ann

  def cancel_text(self) -> None:
    if not self.tools.awaiting_text:
      return
    self.tools.cancel_text()
    self._changed()

  # -- List mutations ---------------------------------------------------------

  def undo(self) -> Annotation | None:
    if not self.editable or self.tools.dragging:
      return None
    ann = self.model.undo()
    if ann is None:
      log.debug("Nothing to undo")
      return None
    self._changed()
    return ann

  def clear(self) -> None:
    if not self.editable or self.model.is_empty():
      return
    self.model.clear()
    log.debug("Cleared all annotations")
    self._changed()

  # -- Output -----------------------------------------------------------------

  def render(self, painter: QPainter) -> None:
    if not self.ready:
      return
    renderer.render(painter, self.image, self.canvas_size,
                    self.model, self.tools.in_progress)

  def to_raster_buffer(self) -> bytes:
    """PNG of the image plus committed annotations. Empty until ready."""
    if not self.ready or self.canvas_size.is_empty():
      return b""
    return export.to_raster_buffer(self.image, self.canvas_size, self.model)
