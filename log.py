"""Centralized logging for ImageMarkup."""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from logging.handlers import RotatingFileHandler

LOG_FILENAME = "imagemarkup.log"
LOGGER_PREFIX = "imagemarkup"


def _resolve_log_dir() -> str:
  """Pick a writable directory for the log file.

  Priority: app dir > %APPDATA%/ImageMarkup or $XDG_STATE_HOME/imagemarkup > temp dir.
  """
  if getattr(sys, "frozen", False):
    app_dir = os.path.dirname(sys.executable)
  else:
    app_dir = os.path.dirname(os.path.abspath(__file__))

  test_path = os.path.join(app_dir, LOG_FILENAME)
  try:
    with open(test_path, "a"):
      pass
    return app_dir
  except OSError:
    pass

  if sys.platform == "win32":
    base = os.environ.get("APPDATA", "")
    log_dir = os.path.join(base, "ImageMarkup") if base else ""
  else:
    base = os.environ.get("XDG_STATE_HOME", os.path.expanduser("~/.local/state"))
    log_dir = os.path.join(base, "imagemarkup")
  if log_dir:
    try:
      os.makedirs(log_dir, exist_ok=True)
      return log_dir
    except OSError:
      pass

  return tempfile.gettempdir()


LOG_PATH = os.path.join(_resolve_log_dir(), LOG_FILENAME)

_formatter = logging.Formatter(
  "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
  datefmt="%Y-%m-%d %H:%M:%S",
)


def _build_handlers() -> list[logging.Handler]:
  handlers: list[logging.Handler] = []
  # 1 MB, 3 backups
  try:
    file_handler = RotatingFileHandler(
      LOG_PATH, maxBytes=1_000_000, backupCount=3, encoding="utf-8",
    )
    file_handler.setFormatter(_formatter)
    handlers.append(file_handler)
  except OSError:
    pass
  console_handler = logging.StreamHandler()
  console_handler.setFormatter(_formatter)
  handlers.append(console_handler)
  return handlers


_handlers = _build_handlers()
_level = logging.DEBUG


def get_logger(name: str) -> logging.Logger:
  """Get a named logger with file and console handlers."""
  logger = logging.getLogger(f"{LOGGER_PREFIX}.{name}")
  if not logger.handlers:
    logger.setLevel(_level)
    logger.propagate = False
    for handler in _handlers:
      logger.addHandler(handler)
  return logger


def set_level(level: int) -> None:
  """Change the level of every project logger, including ones created later."""
  global _level
  _level = level
  prefix = LOGGER_PREFIX + "."
  for name, logger in logging.Logger.manager.loggerDict.items():
    if name.startswith(prefix) and isinstance(logger, logging.Logger):
      logger.setLevel(level)
