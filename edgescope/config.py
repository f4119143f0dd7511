"""Параметры движка детекции границ.

Все значения по умолчанию документированы здесь и могут быть переопределены
через переменные окружения `EDGESCOPE_*` (в том числе из файла `.env`).
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional, Tuple, Union

from dotenv import load_dotenv

from edgescope.models.errors import ConfigError

BORDER_POLICIES = ("replicate", "zero")
MAGNITUDE_SCALES = ("max", "clip")

ENV_PREFIX = "EDGESCOPE_"


@dataclass(frozen=True)
class DetectionConfig:
    """Неизменяемая конфигурация движка.

    Fields:
        max_width, max_height: Предельные размеры декодируемого изображения, px.
        max_pixels: Предел width*height (защита от неограниченного расхода памяти).
        luminance_weights: Веса (R, G, B) для перевода в яркость.
        border: Политика краёв свёртки: "replicate" (повтор крайних пикселей) | "zero".
        magnitude_scale: Нормализация модуля для Sobel/Prewitt: "max" | "clip".
        magnitude_threshold: Бинаризация Sobel/Prewitt: None (оттенки серого),
            число 0..255 или "otsu".
        canny_low, canny_high: Фиксированные пороги Canny; None — вывод из распределения.
        canny_high_percentile: Перцентиль ненулевых модулей после NMS для верхнего порога.
        canny_low_ratio: Нижний порог = верхний * ratio.
        canny_sigma: Сглаживание Гаусса перед Canny; 0 — выключено.
        cache_size: Сколько изображений держать в кэше градиентов; 0 — без кэша.
    """
    max_width: int = 8192
    max_height: int = 8192
    max_pixels: int = 40_000_000
    luminance_weights: Tuple[float, float, float] = (0.299, 0.587, 0.114)
    border: str = "replicate"
    magnitude_scale: str = "max"
    magnitude_threshold: Union[None, float, str] = None
    canny_low: Optional[float] = None
    canny_high: Optional[float] = None
    canny_high_percentile: float = 90.0
    canny_low_ratio: float = 0.5
    canny_sigma: float = 0.0
    cache_size: int = 1

    def validate(self) -> "DetectionConfig":
        """Проверяет согласованность параметров и возвращает self."""
        if self.max_width <= 0 or self.max_height <= 0 or self.max_pixels <= 0:
            raise ConfigError("Лимиты размеров изображения должны быть положительными")
        if len(self.luminance_weights) != 3 or any(w < 0 for w in self.luminance_weights):
            raise ConfigError(f"Некорректные веса яркости: {self.luminance_weights}")
        if sum(self.luminance_weights) <= 0:
            raise ConfigError("Сумма весов яркости должна быть положительной")
        if self.border not in BORDER_POLICIES:
            raise ConfigError(f"Неизвестная политика краёв: {self.border!r}")
        if self.magnitude_scale not in MAGNITUDE_SCALES:
            raise ConfigError(f"Неизвестная нормализация: {self.magnitude_scale!r}")
        thr = self.magnitude_threshold
        if isinstance(thr, str):
            if thr != "otsu":
                raise ConfigError(f"Неизвестный порог бинаризации: {thr!r}")
        elif thr is not None and not 0 <= float(thr) <= 255:
            raise ConfigError(f"Порог бинаризации вне диапазона 0..255: {thr}")
        if (self.canny_low is None) != (self.canny_high is None):
            raise ConfigError("Пороги Canny задаются парой: оба или ни одного")
        if self.canny_low is not None and self.canny_high is not None and self.canny_high <= self.canny_low:
            raise ConfigError(
                f"Верхний порог Canny ({self.canny_high}) должен быть больше нижнего ({self.canny_low})"
            )
        if not 0 < self.canny_high_percentile <= 100:
            raise ConfigError(f"Перцентиль вне (0, 100]: {self.canny_high_percentile}")
        if not 0 < self.canny_low_ratio < 1:
            raise ConfigError(f"canny_low_ratio должен быть в (0, 1): {self.canny_low_ratio}")
        if self.canny_sigma < 0:
            raise ConfigError("canny_sigma не может быть отрицательным")
        if self.cache_size < 0:
            raise ConfigError("cache_size не может быть отрицательным")
        return self

    def with_overrides(self, **overrides: object) -> "DetectionConfig":
        return replace(self, **overrides).validate()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DetectionConfig":
        """Собирает конфигурацию из `EDGESCOPE_*` (по умолчанию — из os.environ + .env)."""
        if environ is None:
            load_dotenv()
            environ = os.environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            overrides[f.name] = _parse_env_value(f.name, raw.strip())
        return replace(cls(), **overrides).validate()


def _parse_env_value(name: str, raw: str) -> object:
    try:
        if name in ("max_width", "max_height", "max_pixels", "cache_size"):
            return int(raw)
        if name == "luminance_weights":
            parts = tuple(float(p) for p in raw.split(","))
            if len(parts) != 3:
                raise ValueError(raw)
            return parts
        if name in ("border", "magnitude_scale"):
            return raw.lower()
        if name == "magnitude_threshold":
            if raw.lower() in ("none", "off"):
                return None
            if raw.lower() == "otsu":
                return "otsu"
            return float(raw)
        if name in ("canny_low", "canny_high"):
            return None if raw.lower() in ("none", "auto") else float(raw)
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Некорректное значение {ENV_PREFIX}{name.upper()}={raw!r}") from exc
