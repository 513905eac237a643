"""Platform-specific defaults for where annotated images are written."""

import os
import platform

SYSTEM = platform.system()


def default_download_folder():
  """Return a sensible default download folder per platform."""
  home = os.path.expanduser("~")

  if SYSTEM == "Windows":
    # Check OneDrive first, then local
    onedrive = os.path.join(home, "OneDrive", "Downloads")
    if os.path.isdir(onedrive):
      return "~/OneDrive/Downloads"
    return "~/Downloads"
  elif SYSTEM == "Darwin":
    return "~/Downloads"
  else:
    # Honour the XDG download dir when it lives under $HOME
    xdg = os.environ.get("XDG_DOWNLOAD_DIR", "")
    if xdg.startswith(home + os.sep):
      return "~" + xdg[len(home):]
    return "~/Downloads"


def expand_folder(folder):
  """Expand ~ and environment variables in a configured folder path."""
  return os.path.expandvars(os.path.expanduser(folder))
