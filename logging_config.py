from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path


def setup_logging(logger_name: str | None = None, *, log_file: str | None = None) -> logging.Logger:
    level_name = str(os.getenv("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    log_file = log_file or os.getenv("LOG_FILE", "logs/spread_engine.log")

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(log_path, maxBytes=2_000_000, backupCount=5)
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    logger.addHandler(stream_handler)
    logger.addHandler(file_handler)
    logger.propagate = False

    return logger


def get_monitor_logger() -> logging.Logger:
    """Logger tree for the monitoring agents (``agents.*``)."""
    return setup_logging("agents")


def get_engine_logger() -> logging.Logger:
    """Logger tree for generation / scoring / ranking (``risk_engine.*``)."""
    return setup_logging("risk_engine")
