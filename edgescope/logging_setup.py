"""Единая настройка логгеров для стадий движка."""
from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logger(name: str) -> logging.Logger:
    """Возвращает логгер стадии с одним stream-обработчиком.

    Уровень берётся из `EDGESCOPE_LOG_LEVEL` (по умолчанию INFO).
    """
    logger = logging.getLogger(f"edgescope.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    level_name = os.environ.get("EDGESCOPE_LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    return logger
