import os

# Headless runs have no display server
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
