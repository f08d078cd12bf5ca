import logging
import os
from datetime import datetime
from pathlib import Path

_LOGGERS = {}


def get_logger(name: str, *, runtime: str = "scoretracker") -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. api, live_sync, recorder)
    - runtime: log file prefix when file logging is enabled

    Level comes from SCORETRACKER_LOG_LEVEL. A per-run log file is written
    only when SCORETRACKER_LOG_DIR is set.
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(os.getenv("SCORETRACKER_LOG_LEVEL", "INFO").upper())

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    # ------------------------------
    # Console handler
    # ------------------------------
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    # ------------------------------
    # File handler (one per run)
    # ------------------------------
    log_dir = os.getenv("SCORETRACKER_LOG_DIR")
    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        file_handler = logging.FileHandler(
            path / f"{runtime}-{timestamp}.log", encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
