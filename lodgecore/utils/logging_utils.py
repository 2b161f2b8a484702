import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from lodgecore import config

_LOGGER_NAME = "lodgecore"
_LOG_FILE = Path(config.LOG_FILE)


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    logger.propagate = False

    try:
        handler = RotatingFileHandler(_LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    except OSError:
        handler = logging.StreamHandler()

    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger


_logger = _configure_logger()


def log_event(area: str, actor: str, action: str, detail: str = "") -> None:
    area_label = area.upper()
    message = f"{area_label} | Actor: {actor or 'system'} | Action: {action}"
    if detail:
        message += f" | Detail: {detail}"
    _logger.info(message)


def log_failure(area: str, actor: str, action: str, detail: str = "") -> None:
    message = f"{area.upper()} | Actor: {actor or 'system'} | Action: {action}"
    if detail:
        message += f" | Detail: {detail}"
    _logger.warning(message)
