import logging
import sys


def configure_logging(level: str = "INFO"):
    """Send every named logger through one stdout handler."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    if not any(getattr(h, "_statuary", False) for h in root.handlers):
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        h._statuary = True
        root.addHandler(h)
