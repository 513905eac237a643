"""Decode the source image from a path, file://, data: or http(s) URL."""

from __future__ import annotations

import base64
import binascii
from urllib.parse import unquote_to_bytes

from PySide6.QtCore import QObject, QUrl, Signal
from PySide6.QtGui import QImage, QImageReader
from PySide6.QtNetwork import QNetworkAccessManager, QNetworkReply, QNetworkRequest

from log import get_logger

log = get_logger("image")

REMOTE_SCHEMES = ("http", "https")


def decode_data_url(url: str) -> bytes:
  """Payload bytes of a data: URL. Raises ValueError if malformed."""
  if not url.startswith("data:") or "," not in url:
    raise ValueError("not a data URL")
  header, _, payload = url[5:].partition(",")
  if header.endswith(";base64"):
    try:
      return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
      raise ValueError(f"bad base64 payload: {e}") from e
  return unquote_to_bytes(payload)


def image_from_bytes(data: bytes) -> QImage:
  img = QImage()
  img.loadFromData(data)
  return img


class ImageLoader(QObject):
  """Emits exactly one of loaded/failed per load() call.

  Local and data: sources resolve before load() returns; remote sources
  resolve when the network reply finishes. A newer load() supersedes any
  request still in flight.
  """
  loaded = Signal(QImage)
  failed = Signal(str)

  def __init__(self, parent: QObject | None = None):
    super().__init__(parent)
    self._generation = 0
    self._network: QNetworkAccessManager | None = None
    self._reply: QNetworkReply | None = None

  def load(self, url: str) -> None:
    self._generation += 1
    self._abort_pending()
    if not url:
      self._fail("no image URL given")
      return

    if url.startswith("data:"):
      try:
        data = decode_data_url(url)
      except ValueError as e:
        self._fail(str(e))
        return
      self._finish(image_from_bytes(data), "data URL")
      return

    qurl = QUrl(url)
    if qurl.scheme() in REMOTE_SCHEMES:
      self._load_remote(qurl, self._generation)
      return

    path = qurl.toLocalFile() if qurl.isLocalFile() else url
    reader = QImageReader(path)
    reader.setAutoTransform(True)
    img = reader.read()
    if img.isNull():
      self._fail("%s: %s" % (path, reader.errorString()))
      return
    self._finish(img, path)

  def _load_remote(self, qurl: QUrl, generation: int) -> None:
    if self._network is None:
      self._network = QNetworkAccessManager(self)
    request = QNetworkRequest(qurl)
    request.setAttribute(
      QNetworkRequest.Attribute.RedirectPolicyAttribute,
      QNetworkRequest.RedirectPolicy.NoLessSafeRedirectPolicy,
    )
    reply = self._network.get(request)
    self._reply = reply
    log.debug("Fetching image %s", qurl.toString())
    reply.finished.connect(lambda: self._on_reply_finished(reply, generation))

  def _on_reply_finished(self, reply: QNetworkReply, generation: int) -> None:
    reply.deleteLater()
    if generation != self._generation:
      return
    self._reply = None
    if reply.error() != QNetworkReply.NetworkError.NoError:
      self._fail("%s: %s" % (reply.url().toString(), reply.errorString()))
      return
    self._finish(image_from_bytes(bytes(reply.readAll().data())),
                 reply.url().toString())

  def _abort_pending(self) -> None:
    if self._reply is not None:
      reply, self._reply = self._reply, None
      reply.abort()

  def _finish(self, img: QImage, source: str) -> None:
    if img.isNull():
      self._fail("%s: could not decode image" % source)
      return
    log.debug("Loaded image %s (%dx%d)", source[:80], img.width(), img.height())
    self.loaded.emit(img)

  def _fail(self, reason: str) -> None:
    log.warning("Image load failed: %s", reason)
    self.failed.emit(reason)
