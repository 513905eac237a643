"""Vector annotation records and the ordered annotation list."""

from __future__ import annotations

import dataclasses
import time
from typing import Any, ClassVar, Iterator, Union

Point = tuple[float, float]

KINDS = ("freehand", "rectangle", "circle", "arrow", "text")

_last_id = 0


def new_annotation_id() -> str:
  """Creation timestamp in milliseconds, bumped so ids never repeat."""
  global _last_id
  now = time.time_ns() // 1_000_000
  _last_id = max(now, _last_id + 1)
  return str(_last_id)


def _point(value: Any) -> Point:
  x, y = value
  return (float(x), float(y))


# -- Data model ---------------------------------------------------------------

@dataclasses.dataclass
class FreehandAnnotation:
  points: list[Point]
  color: str
  line_width: int
  id: str = dataclasses.field(default_factory=new_annotation_id)

  kind: ClassVar[str] = "freehand"


@dataclasses.dataclass
class RectangleAnnotation:
  start: Point
  end: Point
  color: str
  line_width: int
  id: str = dataclasses.field(default_factory=new_annotation_id)

  kind: ClassVar[str] = "rectangle"

  @property
  def points(self) -> list[Point]:
    return [self.start, self.end]


@dataclasses.dataclass
class CircleAnnotation:
  start: Point  # centre
  end: Point  # any point on the rim
  color: str
  line_width: int
  id: str = dataclasses.field(default_factory=new_annotation_id)

  kind: ClassVar[str] = "circle"

  @property
  def points(self) -> list[Point]:
    return [self.start, self.end]


@dataclasses.dataclass
class ArrowAnnotation:
  start: Point
  end: Point  # tip
  color: str
  line_width: int
  id: str = dataclasses.field(default_factory=new_annotation_id)

  kind: ClassVar[str] = "arrow"

  @property
  def points(self) -> list[Point]:
    return [self.start, self.end]


@dataclasses.dataclass
class TextAnnotation:
  anchor: Point  # baseline-left
  text: str
  color: str
  line_width: int
  id: str = dataclasses.field(default_factory=new_annotation_id)

  kind: ClassVar[str] = "text"

  @property
  def points(self) -> list[Point]:
    return [self.anchor]


Annotation = Union[
  FreehandAnnotation, RectangleAnnotation, CircleAnnotation,
  ArrowAnnotation, TextAnnotation,
]

TWO_POINT_CLASSES = {
  "rectangle": RectangleAnnotation,
  "circle": CircleAnnotation,
  "arrow": ArrowAnnotation,
}


# -- Dict form ----------------------------------------------------------------

def annotation_to_dict(ann: Annotation) -> dict[str, Any]:
  """Plain JSON-friendly form: id, type, points, color, lineWidth, text."""
  data: dict[str, Any] = {
    "id": ann.id,
    "type": ann.kind,
    "points": [[x, y] for x, y in ann.points],
    "color": ann.color,
    "lineWidth": ann.line_width,
  }
  if isinstance(ann, TextAnnotation):
    data["text"] = ann.text
  return data


def annotation_from_dict(data: dict[str, Any]) -> Annotation:
  """Build an annotation from its dict form. Raises ValueError if malformed."""
  try:
    kind = data["type"]
    points = [_point(p) for p in data["points"]]
    color = str(data["color"])
    line_width = int(data["lineWidth"])
  except (KeyError, TypeError, ValueError) as e:
    raise ValueError(f"malformed annotation: {e}") from e
  if line_width < 1:
    raise ValueError(f"lineWidth must be positive, got {line_width}")
  ann_id = str(data.get("id") or new_annotation_id())

  if kind == "freehand":
    if not points:
      raise ValueError("freehand annotation needs at least one point")
    return FreehandAnnotation(points, color, line_width, id=ann_id)
  if kind in TWO_POINT_CLASSES:
    if len(points) != 2:
      raise ValueError(f"{kind} annotation needs exactly 2 points, got {len(points)}")
    cls = TWO_POINT_CLASSES[kind]
    return cls(points[0], points[1], color, line_width, id=ann_id)
  if kind == "text":
    if len(points) != 1:
      raise ValueError(f"text annotation needs exactly 1 point, got {len(points)}")
    return TextAnnotation(points[0], str(data.get("text", "")), color,
                          line_width, id=ann_id)
  raise ValueError(f"unknown annotation type: {kind!r}")


def coerce_annotations(items) -> list[Annotation]:
  """Accept a mix of annotation objects and their dict form."""
  result: list[Annotation] = []
  for item in items or ():
    if isinstance(item, dict):
      result.append(annotation_from_dict(item))
    else:
      result.append(item)
  return result


# -- Ordered list -------------------------------------------------------------

class AnnotationModel:
  """Append/undo/clear list of annotations. Order is paint order."""

  def __init__(self, initial=None):
    self._items: list[Annotation] = coerce_annotations(initial)

  def __len__(self) -> int:
    return len(self._items)

  def __iter__(self) -> Iterator[Annotation]:
    return iter(list(self._items))

  def is_empty(self) -> bool:
    return not self._items

  @property
  def annotations(self) -> list[Annotation]:
    return list(self._items)

  def append(self, ann: Annotation) -> None:
    self._items.append(ann)

  def undo(self) -> Annotation | None:
    """Remove and return the most recent annotation, or None if empty."""
    if not self._items:
      return None
    return self._items.pop()

  def clear(self) -> None:
    self._items.clear()

  def to_dicts(self) -> list[dict[str, Any]]:
    return [annotation_to_dict(a) for a in self._items]
