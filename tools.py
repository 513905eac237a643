"""Tool selection and the in-progress gesture state machine."""

from __future__ import annotations

from PySide6.QtGui import QColor

from annotations import (
  TWO_POINT_CLASSES, Annotation, FreehandAnnotation, Point, TextAnnotation,
)
from log import get_logger

log = get_logger("tools")

TOOLS = ("freehand", "rectangle", "circle", "arrow", "text", "eraser")
DRAWING_TOOLS = ("freehand", "rectangle", "circle", "arrow")

DEFAULT_TOOL = "freehand"
DEFAULT_COLOR = "#FF0000"
DEFAULT_LINE_WIDTH = 3

# Label -> stroke width, in toolbar order
LINE_WIDTH_PRESETS = {
  "Thin": 1,
  "Medium": 3,
  "Thick": 5,
  "Extra": 8,
}


class ToolSession:
  """Current tool, stroke settings, and at most one pending annotation.

  A drawing gesture goes Idle -> Dragging -> Idle; the text tool goes
  Idle -> AwaitingText -> Idle and only commits on confirm_text().
  """

  def __init__(self, tool: str = DEFAULT_TOOL, color: str = DEFAULT_COLOR,
               line_width: int = DEFAULT_LINE_WIDTH):
    self.tool = tool if tool in TOOLS else DEFAULT_TOOL
    self.color = color if QColor(color).isValid() else DEFAULT_COLOR
    self.line_width = line_width if _is_valid_width(line_width) else DEFAULT_LINE_WIDTH
    self.in_progress: Annotation | None = None
    self.text_anchor: Point | None = None

  @property
  def dragging(self) -> bool:
    return self.in_progress is not None

  @property
  def awaiting_text(self) -> bool:
    return self.text_anchor is not None

  @property
  def idle(self) -> bool:
    return not self.dragging and not self.awaiting_text

  # -- Settings ---------------------------------------------------------------

  def select_tool(self, tool: str) -> bool:
    if tool not in TOOLS:
      log.debug("Ignoring unknown tool %r", tool)
      return False
    self.tool = tool
    return True

  def set_color(self, value: str) -> bool:
    if not isinstance(value, str) or not QColor(value).isValid():
      log.debug("Ignoring invalid color %r", value)
      return False
    self.color = value
    return True

  def set_line_width(self, value: int) -> bool:
    if not _is_valid_width(value):
      log.debug("Ignoring invalid line width %r", value)
      return False
    self.line_width = int(value)
    return True

  # -- Gestures ---------------------------------------------------------------

  def begin(self, point: Point) -> bool:
    """Pointer down. Returns True if the tool session changed."""
    if not self.idle:
      return False
    if self.tool == "text":
      self.text_anchor = point
      return True
    if self.tool == "freehand":
      self.in_progress = FreehandAnnotation([point], self.color, self.line_width)
      return True
    cls = TWO_POINT_CLASSES.get(self.tool)
    if cls is None:
      # eraser
      return False
    self.in_progress = cls(point, point, self.color, self.line_width)
    return True

  def extend(self, point: Point) -> bool:
    """Pointer move. Freehand samples accumulate, shapes move their end point."""
    ann = self.in_progress
    if ann is None:
      return False
    if isinstance(ann, FreehandAnnotation):
      ann.points.append(point)
    else:
      ann.end = point
    return True

  def finish(self) -> Annotation | None:
    """Pointer up. Hands back the completed annotation, if any."""
    ann = self.in_progress
    self.in_progress = None
    return ann

  def discard(self) -> None:
    self.in_progress = None

  # -- Text -------------------------------------------------------------------

  def confirm_text(self, text: str) -> TextAnnotation | None:
    anchor = self.text_anchor
    self.text_anchor = None
    text = (text or "").strip()
    if anchor is None or not text:
      return None
    return TextAnnotation(anchor, text, self.color, self.line_width)

  def cancel_text(self) -> None:
    self.text_anchor = None


def _is_valid_width(value) -> bool:
  return isinstance(value, int) and not isinstance(value, bool) and value >= 1
