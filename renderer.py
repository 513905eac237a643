"""Full-repaint renderer: source image first, then annotations in order."""

from __future__ import annotations

import functools
import math
from typing import Iterable

from PySide6.QtCore import QPointF, QRectF, Qt
from PySide6.QtGui import (
  QColor, QFont, QFontDatabase, QImage, QPainter, QPainterPath, QPen,
)

from annotations import (
  Annotation, ArrowAnnotation, CircleAnnotation, FreehandAnnotation, Point,
  RectangleAnnotation, TextAnnotation,
)
from geometry import CanvasSize

ARROW_HEAD_BASE = 10
ARROW_HEAD_SPREAD = math.pi / 6  # 30 degrees either side of the shaft
TEXT_SIZE_FACTOR = 5
TEXT_FONT_FAMILY = "Arial"


# -- Geometry helpers ---------------------------------------------------------

def circle_radius(ann: CircleAnnotation) -> float:
  (x1, y1), (x2, y2) = ann.start, ann.end
  return math.hypot(x2 - x1, y2 - y1)


def arrowhead_points(start: Point, end: Point, line_width: int) -> tuple[Point, Point]:
  """The two outer ends of the V-shaped head drawn at `end`."""
  angle = math.atan2(end[1] - start[1], end[0] - start[0])
  size = ARROW_HEAD_BASE + line_width
  left = (
    end[0] - size * math.cos(angle - ARROW_HEAD_SPREAD),
    end[1] - size * math.sin(angle - ARROW_HEAD_SPREAD),
  )
  right = (
    end[0] - size * math.cos(angle + ARROW_HEAD_SPREAD),
    end[1] - size * math.sin(angle + ARROW_HEAD_SPREAD),
  )
  return left, right


def text_font_size(ann: TextAnnotation) -> int:
  return ann.line_width * TEXT_SIZE_FACTOR


def annotation_path(ann: Annotation) -> QPainterPath | None:
  """Stroke outline for shape kinds. None for text and sub-2-point freehand."""
  path = QPainterPath()
  if isinstance(ann, FreehandAnnotation):
    if len(ann.points) < 2:
      return None
    path.moveTo(QPointF(*ann.points[0]))
    for pt in ann.points[1:]:
      path.lineTo(QPointF(*pt))
  elif isinstance(ann, RectangleAnnotation):
    # Dragging up-left of the start gives negative extents
    path.addRect(QRectF(QPointF(*ann.start), QPointF(*ann.end)).normalized())
  elif isinstance(ann, CircleAnnotation):
    r = circle_radius(ann)
    path.addEllipse(QPointF(*ann.start), r, r)
  elif isinstance(ann, ArrowAnnotation):
    tip = QPointF(*ann.end)
    path.moveTo(QPointF(*ann.start))
    path.lineTo(tip)
    for wing in arrowhead_points(ann.start, ann.end, ann.line_width):
      path.moveTo(tip)
      path.lineTo(QPointF(*wing))
  else:
    return None
  return path


# -- Painting -----------------------------------------------------------------

def _stroke_pen(ann: Annotation) -> QPen:
  return QPen(QColor(ann.color), ann.line_width, Qt.PenStyle.SolidLine,
              Qt.PenCapStyle.RoundCap, Qt.PenJoinStyle.RoundJoin)


def paint_annotation(painter: QPainter, ann: Annotation) -> None:
  """Paint one annotation. Degenerate records are skipped silently."""
  if isinstance(ann, TextAnnotation):
    _paint_text(painter, ann)
    return
  path = annotation_path(ann)
  if path is None:
    return
  painter.setPen(_stroke_pen(ann))
  painter.setBrush(Qt.BrushStyle.NoBrush)
  painter.drawPath(path)


# -- Fonts --------------------------------------------------------------------

def pick_text_family(available) -> str | None:
  """TEXT_FONT_FAMILY when installed, else None for the system font."""
  return TEXT_FONT_FAMILY if TEXT_FONT_FAMILY in available else None


@functools.lru_cache(maxsize=1)
def _text_family() -> str | None:
  return pick_text_family(QFontDatabase.families())


def text_font(pixel_size: int) -> QFont:
  """Font for text annotations and the text entry box."""
  family = _text_family()
  if family is not None:
    font = QFont(family)
  else:
    font = QFontDatabase.systemFont(QFontDatabase.SystemFont.GeneralFont)
  font.setPixelSize(max(pixel_size, 1))
  return font


def _paint_text(painter: QPainter, ann: TextAnnotation) -> None:
  if not ann.text:
    return
  painter.setFont(text_font(text_font_size(ann)))
  painter.setPen(QColor(ann.color))
  painter.drawText(QPointF(*ann.anchor), ann.text)


def render(painter: QPainter, image: QImage | None, canvas_size: CanvasSize,
           annotations: Iterable[Annotation],
           in_progress: Annotation | None = None) -> None:
  """Clear, draw the image scaled to the canvas, then every annotation."""
  target = QRectF(0, 0, canvas_size.width, canvas_size.height)
  painter.setRenderHint(QPainter.RenderHint.Antialiasing)
  painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)

  mode = painter.compositionMode()
  painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_Clear)
  painter.fillRect(target, Qt.GlobalColor.transparent)
  painter.setCompositionMode(mode)

  if image is not None and not image.isNull():
    painter.drawImage(target, image)

  for ann in annotations:
    paint_annotation(painter, ann)

  if in_progress is not None:
    paint_annotation(painter, in_progress)
