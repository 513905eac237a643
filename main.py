from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any

from PySide6.QtWidgets import QApplication, QMessageBox

import export
from annotations import Annotation, annotation_to_dict, coerce_annotations
from log import get_logger, set_level
from platform_utils import default_download_folder, expand_folder
from tools import DEFAULT_COLOR, DEFAULT_LINE_WIDTH, DEFAULT_TOOL

log = get_logger("main")

# When frozen as exe, config lives next to the executable
if getattr(sys, "frozen", False):
  APP_DIR = os.path.dirname(sys.executable)
else:
  APP_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_PATH = os.path.join(APP_DIR, "config.json")


CONFIG_VERSION = 2

DEFAULT_CONFIG = {
  "config_version": CONFIG_VERSION,
  "default_tool": DEFAULT_TOOL,
  "default_color": DEFAULT_COLOR,
  "default_line_width": DEFAULT_LINE_WIDTH,
  "download_folder": default_download_folder(),
  "download_filename": export.DEFAULT_DOWNLOAD_FILENAME,
  "confirm_clear": True,
  "save_annotations_json": True,
  "window_width": 1000,
  "window_height": 720,
}

# Keys renamed between config versions: old -> new
_RENAMED_KEYS = {
  "save_folder": "download_folder",
  "stroke_width": "default_line_width",
}


def migrate_config(config: dict[str, Any]) -> bool:
  """Fill in missing keys from defaults and bump version. Returns True if changed."""
  version = config.get("config_version", 1)
  changed = False

  for old_key, new_key in _RENAMED_KEYS.items():
    if old_key in config and new_key not in config:
      config[new_key] = config.pop(old_key)
      log.info("Config migration: renamed '%s' to '%s'", old_key, new_key)
      changed = True

  # Add any keys introduced in newer versions
  for key, default_val in DEFAULT_CONFIG.items():
    if key not in config:
      config[key] = default_val
      log.info("Config migration: added '%s' = %r", key, default_val)
      changed = True

  if version < CONFIG_VERSION:
    config["config_version"] = CONFIG_VERSION
    changed = True
    log.info("Config migrated from v%d to v%d", version, CONFIG_VERSION)

  return changed


def load_config() -> dict[str, Any]:
  if not os.path.exists(CONFIG_PATH):
    log.info("No config found, creating defaults at %s", CONFIG_PATH)
    save_config(DEFAULT_CONFIG)
    return dict(DEFAULT_CONFIG)
  try:
    with open(CONFIG_PATH) as f:
      config = json.load(f)
  except json.JSONDecodeError as e:
    log.error("Corrupted config file, resetting to defaults: %s", e)
    save_config(DEFAULT_CONFIG)
    return dict(DEFAULT_CONFIG)
  except OSError as e:
    log.error("Cannot read config file: %s", e)
    return dict(DEFAULT_CONFIG)

  if not isinstance(config, dict):
    log.error("Config file is not a JSON object, resetting to defaults")
    save_config(DEFAULT_CONFIG)
    return dict(DEFAULT_CONFIG)

  if migrate_config(config):
    save_config(config)
  return config


def save_config(config: dict[str, Any]) -> None:
  try:
    with open(CONFIG_PATH, "w") as f:
      json.dump(config, f, indent=2)
      f.write("\n")
  except OSError as e:
    log.error("Failed to save config: %s", e)


# -- Annotation sidecar files -------------------------------------------------

def load_annotations_file(path: str) -> list[Annotation]:
  """Read a JSON list of annotation dicts. Bad files yield an empty list."""
  try:
    with open(path, encoding="utf-8") as f:
      data = json.load(f)
  except (OSError, json.JSONDecodeError) as e:
    log.error("Cannot read annotations from %s: %s", path, e)
    return []
  if not isinstance(data, list):
    log.error("Annotations file %s does not contain a list", path)
    return []
  try:
    return coerce_annotations(data)
  except ValueError as e:
    log.error("Invalid annotation in %s: %s", path, e)
    return []


def save_annotations_file(annotations: list[Annotation], path: str) -> bool:
  try:
    with open(path, "w", encoding="utf-8") as f:
      json.dump([annotation_to_dict(a) for a in annotations], f, indent=2)
      f.write("\n")
  except OSError as e:
    log.error("Failed to save annotations to %s: %s", path, e)
    return False
  return True


# -- Application --------------------------------------------------------------

class MarkupApp:
  """Standalone window around one ImageAnnotator."""

  def __init__(self, image_url: str, annotations_path: str | None = None,
               read_only: bool = False,
               config: dict[str, Any] | None = None,
               print_data_url: bool = False) -> None:
    self.config: dict[str, Any] = config if config is not None else load_config()
    self.image_url = image_url
    self.annotations_path = annotations_path
    self.read_only = read_only
    self.print_data_url = print_data_url
    self.last_saved: tuple[str, str | None] | None = None
    self.window = None

  def build_window(self):
    from annotator import ImageAnnotator
    initial = load_annotations_file(self.annotations_path) if self.annotations_path else []
    self.window = ImageAnnotator(
      image_url=self.image_url,
      initial_annotations=initial,
      on_save=self._on_save,
      read_only=self.read_only,
      default_tool=self.config.get("default_tool", DEFAULT_TOOL),
      default_color=self.config.get("default_color", DEFAULT_COLOR),
      default_line_width=self.config.get("default_line_width", DEFAULT_LINE_WIDTH),
      download_folder=self.config.get("download_folder"),
      confirm_clear=self.config.get("confirm_clear", True),
    )
    self.window.setWindowTitle("ImageMarkup")
    self.window.resize(self.config.get("window_width", 1000),
                       self.config.get("window_height", 720))
    self.window.image_failed.connect(self._on_image_failed)
    return self.window

  def _on_save(self, annotations: list[Annotation], raster: bytes) -> None:
    """Write the flattened PNG and, if enabled, a JSON sidecar beside it."""
    if self.print_data_url:
      # One line per save, for piping into other tools
      sys.stdout.write(export.to_data_url(raster) + "\n")
      sys.stdout.flush()
    folder = self.config.get("download_folder") or default_download_folder()
    filename = self.config.get("download_filename") or export.DEFAULT_DOWNLOAD_FILENAME
    image_path = export.write_raster(raster, folder, filename)
    if image_path is None:
      log.error("Save failed: could not write annotated image to %s", expand_folder(folder))
      self.last_saved = None
      return

    json_path = None
    if self.config.get("save_annotations_json", True):
      json_path = os.path.splitext(image_path)[0] + ".json"
      if not save_annotations_file(annotations, json_path):
        json_path = None
    self.last_saved = (image_path, json_path)
    log.info("Saved annotated image: %s", image_path)

  def _on_image_failed(self, reason: str) -> None:
    QMessageBox.warning(self.window, "ImageMarkup", "Could not load image:\n%s" % reason)

  def run(self) -> int:
    app = QApplication.instance() or QApplication(sys.argv)
    self.build_window().show()
    log.info("ImageMarkup running (image=%s, read_only=%s)", self.image_url[:80], self.read_only)
    code = app.exec()
    log.info("ImageMarkup exiting")
    return code


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(
    prog="imagemarkup",
    description="Annotate an image with freehand, shape and text markup.",
  )
  parser.add_argument("image", help="image path or URL (file://, http(s)://, data:)")
  parser.add_argument("--annotations", metavar="FILE",
                      help="JSON file with annotations to start from")
  parser.add_argument("--read-only", action="store_true",
                      help="display the annotations without editing")
  parser.add_argument("--print-data-url", action="store_true",
                      help="also print each saved image to stdout as a data: URL")
  parser.add_argument("-v", "--verbose", action="store_true",
                      help="log debug output")
  return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
  args = parse_args(argv)
  set_level(logging.DEBUG if args.verbose else logging.INFO)
  return MarkupApp(args.image, args.annotations, args.read_only,
                   print_data_url=args.print_data_url).run()


if __name__ == "__main__":
  sys.exit(main())
