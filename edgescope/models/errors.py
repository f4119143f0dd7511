"""Типизированные ошибки движка детекции границ.

Принципы:
- Каждая ошибка знает стадию конвейера (`stage`), на которой она возникла,
  чтобы UI мог показать понятное сообщение без знания внутренностей движка.
- Движок не повторяет операции: вход детерминирован, повтор даст ту же ошибку.
"""
from __future__ import annotations

from typing import Optional


class EdgeDetectionError(Exception):
    """Базовая ошибка движка."""

    default_stage = "engine"

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class DecodeError(EdgeDetectionError):
    """Байты не являются изображением или размеры превышают лимит."""

    default_stage = "decode"


class ConfigError(EdgeDetectionError):
    """Некорректные параметры: порядок порогов, пустой выбор алгоритмов и т.п."""

    default_stage = "config"


class ProcessingError(EdgeDetectionError):
    """Неожиданный численный сбой внутри стадии обработки."""

    default_stage = "processing"


class DetectionCancelled(EdgeDetectionError):
    """Запрос отменён вызывающей стороной между стадиями."""

    default_stage = "cancelled"
