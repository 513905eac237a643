"""Flatten the image and committed annotations into a PNG buffer."""

from __future__ import annotations

import base64
import os
from typing import Iterable

from PySide6.QtCore import QBuffer, QByteArray, QIODevice, Qt
from PySide6.QtGui import QImage, QPainter

from annotations import Annotation
from geometry import CanvasSize
from log import get_logger
from platform_utils import expand_folder
from renderer import render

log = get_logger("export")

RASTER_FORMAT = "PNG"
RASTER_MIME = "image/png"
DEFAULT_DOWNLOAD_FILENAME = "annotated-image.png"


def render_flattened(image: QImage | None, canvas_size: CanvasSize,
                     annotations: Iterable[Annotation]) -> QImage:
  """Render image + annotations at canvas size, as the on-screen canvas shows them."""
  w, h = canvas_size.pixel_size()
  result = QImage(max(w, 0), max(h, 0), QImage.Format.Format_ARGB32_Premultiplied)
  if result.isNull():
    return result
  result.fill(Qt.GlobalColor.transparent)
  painter = QPainter(result)
  render(painter, image, canvas_size, annotations)
  painter.end()
  return result


def encode_png(img: QImage) -> bytes:
  if img.isNull():
    return b""
  data = QByteArray()
  buf = QBuffer(data)
  buf.open(QIODevice.OpenModeFlag.WriteOnly)
  ok = img.save(buf, RASTER_FORMAT)
  buf.close()
  if not ok:
    log.error("Failed to encode %dx%d image as %s", img.width(), img.height(), RASTER_FORMAT)
    return b""
  return bytes(data.data())


def to_raster_buffer(image: QImage | None, canvas_size: CanvasSize,
                     annotations: Iterable[Annotation]) -> bytes:
  return encode_png(render_flattened(image, canvas_size, annotations))


def to_data_url(buffer: bytes) -> str:
  return "data:%s;base64,%s" % (RASTER_MIME, base64.b64encode(buffer).decode("ascii"))


def unique_path(folder: str, filename: str) -> str:
  """First of name.png, name (1).png, name (2).png, ... that does not exist."""
  stem, ext = os.path.splitext(filename)
  candidate = os.path.join(folder, filename)
  n = 1
  while os.path.exists(candidate):
    candidate = os.path.join(folder, f"{stem} ({n}){ext}")
    n += 1
  return candidate


def write_raster(buffer: bytes, folder: str,
                 filename: str = DEFAULT_DOWNLOAD_FILENAME) -> str | None:
  """Write an encoded raster without overwriting. Returns the path or None."""
  if not buffer:
    log.error("Nothing to write: empty raster buffer")
    return None
  filename = os.path.basename(filename) or DEFAULT_DOWNLOAD_FILENAME
  try:
    folder = expand_folder(folder)
    os.makedirs(folder, exist_ok=True)
  except OSError as e:
    log.error("Cannot create download folder '%s': %s", folder, e)
    return None

  filepath = unique_path(folder, filename)
  try:
    with open(filepath, "xb") as f:
      f.write(buffer)
  except OSError as e:
    log.error("Failed to write %s: %s", filepath, e)
    return None

  log.debug("Wrote annotated image: %s", filepath)
  return filepath
