"""Scale-to-fit geometry for the annotation canvas."""

from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True)
class CanvasSize:
  width: float
  height: float

  def pixel_size(self) -> tuple[int, int]:
    """Whole-pixel dimensions used to allocate the canvas bitmap."""
    return int(self.width), int(self.height)

  def is_empty(self) -> bool:
    w, h = self.pixel_size()
    return w <= 0 or h <= 0


EMPTY_CANVAS = CanvasSize(0.0, 0.0)


def compute_scale(natural_width: float, natural_height: float,
                  container_width: float, container_height: float) -> float:
  """Largest scale <= 1 at which the image fits inside the container.

  Returns 0.0 for a missing image or a collapsed container.
  """
  if natural_width <= 0 or natural_height <= 0:
    return 0.0
  container_width = max(0.0, container_width)
  container_height = max(0.0, container_height)
  return min(container_width / natural_width,
             container_height / natural_height,
             1.0)


def compute_canvas_size(natural_width: float, natural_height: float,
                        container_width: float, container_height: float) -> CanvasSize:
  scale = compute_scale(natural_width, natural_height,
                        container_width, container_height)
  if scale <= 0:
    return EMPTY_CANVAS
  return CanvasSize(natural_width * scale, natural_height * scale)
