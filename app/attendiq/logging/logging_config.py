import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR = Path("logs")
LOG_FORMAT = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.INFO, log_file: str = "attendiq.log"):
    """
    Configures the root logger once at startup: stdout for development plus a
    5 MB x 5 rotating file for production. Handlers installed earlier (uvicorn's
    included) are replaced so every line shares one format.
    """
    root = logging.getLogger()
    root.setLevel(level)
    if root.hasHandlers():
        root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    LOG_DIR.mkdir(exist_ok=True)
    rotating = RotatingFileHandler(LOG_DIR / log_file, maxBytes=5 * 1024 * 1024, backupCount=5)
    rotating.setFormatter(formatter)
    root.addHandler(rotating)

    # httpx logs every notification request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
