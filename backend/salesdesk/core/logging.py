import logging
import sys
from pathlib import Path

from salesdesk.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
BACKEND_ROOT = Path(__file__).resolve().parents[2]

_configured = False


def configure_logging() -> None:
    """Install the root handlers once. Safe to call from every entry point."""
    global _configured
    if _configured:
        return

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        log_path = BACKEND_ROOT / settings.LOG_DIR / settings.LOG_FILE
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
