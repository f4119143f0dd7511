"""Модели данных движка детекции границ.

Принципы:
- SRP: только структуры данных, без алгоритмов обработки.
- Чистый код: неизменяемость (`frozen=True`, read-only массивы numpy) —
  каждая стадия создаёт новый буфер и никогда не мутирует вход.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterator, Mapping, Optional, Tuple

import numpy as np
from PIL import Image

from edgescope.models.errors import ConfigError, ProcessingError


def _readonly(arr: np.ndarray) -> np.ndarray:
    """Возвращает копию массива, защищённую от записи."""
    out = np.array(arr, copy=True)
    out.setflags(write=False)
    return out


def _to_8bit(image: Image.Image) -> Image.Image:
    """Сводит 16/32-битные и float-изображения к 8-битному L с масштабированием.

    `convert("L")` у Pillow обрезает значения выше 255, а не масштабирует их.
    - I;16*: делим на 257 (65535 -> 255);
    - I: если значения укладываются в 0..255 — как есть, в 0..65535 — делим на 257,
      иначе min-max;
    - F: диапазон [0, 1] умножаем на 255, иначе min-max.
    """
    arr = np.asarray(image, dtype=np.float64)
    lo = float(arr.min()) if arr.size else 0.0
    hi = float(arr.max()) if arr.size else 0.0
    if image.mode.startswith("I;16"):
        scaled = arr / 257.0
    elif image.mode == "F" and lo >= 0.0 and hi <= 1.0:
        scaled = arr * 255.0
    elif image.mode == "I" and lo >= 0.0 and hi <= 255.0:
        scaled = arr
    elif image.mode == "I" and lo >= 0.0 and hi <= 65535.0:
        scaled = arr / 257.0
    elif hi > lo:
        scaled = (arr - lo) * (255.0 / (hi - lo))
    else:
        scaled = np.zeros_like(arr)
    return Image.fromarray(np.clip(np.rint(scaled), 0, 255).astype(np.uint8))


class Algorithm(str, Enum):
    """Алгоритмы детекции. «All» сюда намеренно не входит."""

    SOBEL = "Sobel"
    PREWITT = "Prewitt"
    CANNY = "Canny"

    @classmethod
    def parse(cls, name: "str | Algorithm") -> "Algorithm":
        if isinstance(name, Algorithm):
            return name
        for algorithm in cls:
            if algorithm.value.lower() == str(name).strip().lower():
                return algorithm
        raise ConfigError(f"Неизвестный алгоритм: {name!r}")


@dataclass(frozen=True, eq=False)
class RasterImage:
    """Неизменяемое растровое изображение.

    Fields:
        pixels: uint8-массив формы (height, width, channels), RGB или RGBA.
        mode: Режим PIL ("RGB" | "RGBA").
        source_format: Формат исходного файла, если известен ("PNG", "JPEG", ...).
    """
    pixels: np.ndarray
    mode: str = "RGB"
    source_format: Optional[str] = None

    def __post_init__(self) -> None:
        arr = np.asarray(self.pixels)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ProcessingError(f"Ожидается массив HxWx3 или HxWx4, получено {arr.shape}", stage="decode")
        if arr.shape[0] <= 0 or arr.shape[1] <= 0:
            raise ProcessingError("Изображение нулевого размера", stage="decode")
        object.__setattr__(self, "pixels", _readonly(arr.astype(np.uint8, copy=False)))

    @classmethod
    def from_pil(cls, image: Image.Image, source_format: Optional[str] = None) -> "RasterImage":
        if image.mode.startswith("I") or image.mode == "F":
            image = _to_8bit(image)
        mode = "RGBA" if image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info else "RGB"
        converted = image.convert(mode)
        return cls(pixels=np.asarray(converted, dtype=np.uint8), mode=mode, source_format=source_format)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def channels(self) -> int:
        return int(self.pixels.shape[2])

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height), как `PIL.Image.size`."""
        return self.width, self.height

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.ascontiguousarray(self.pixels))


@dataclass(frozen=True, eq=False)
class IntensityBuffer:
    """Одноканальная яркость float64 в диапазоне [0, 255]."""
    values: np.ndarray

    def __post_init__(self) -> None:
        arr = np.asarray(self.values, dtype=np.float64)
        if arr.ndim != 2 or arr.size == 0:
            raise ProcessingError(f"Некорректный буфер яркости формы {arr.shape}", stage="intensity")
        object.__setattr__(self, "values", _readonly(arr))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape  # type: ignore[return-value]


@dataclass(frozen=True, eq=False)
class GradientField:
    """Пара градиентов Gx/Gy; модуль и направление вычисляются по запросу.

    Fields:
        gx, gy: Горизонтальная и вертикальная производные (одинаковой формы).
        kernel: Семейство ядер, которым получено поле ("Sobel" | "Prewitt").
        border: Политика обработки краёв ("replicate" | "zero").
    """
    gx: np.ndarray
    gy: np.ndarray
    kernel: str = "Sobel"
    border: str = "replicate"

    def __post_init__(self) -> None:
        gx = np.asarray(self.gx, dtype=np.float64)
        gy = np.asarray(self.gy, dtype=np.float64)
        if gx.shape != gy.shape or gx.ndim != 2:
            raise ProcessingError(f"Gx {gx.shape} и Gy {gy.shape} не совпадают", stage="convolution")
        object.__setattr__(self, "gx", _readonly(gx))
        object.__setattr__(self, "gy", _readonly(gy))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.gx.shape  # type: ignore[return-value]

    @property
    def magnitude(self) -> np.ndarray:
        return np.hypot(self.gx, self.gy)

    @property
    def direction(self) -> np.ndarray:
        """Направление градиента в радианах, [-pi, pi]."""
        return np.arctan2(self.gy, self.gx)


@dataclass(frozen=True, eq=False)
class EdgeMap:
    """Итоговая карта границ одного алгоритма (uint8, 0..255)."""
    values: np.ndarray
    algorithm: Algorithm
    binary: bool = False

    def __post_init__(self) -> None:
        arr = np.asarray(self.values)
        if arr.ndim != 2:
            raise ProcessingError(f"Карта границ должна быть 2D, получено {arr.shape}", stage="reduce")
        object.__setattr__(self, "values", _readonly(arr.astype(np.uint8, copy=False)))

    @property
    def width(self) -> int:
        return int(self.values.shape[1])

    @property
    def height(self) -> int:
        return int(self.values.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def is_blank(self) -> bool:
        return not bool(self.values.any())

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.ascontiguousarray(self.values))


@dataclass(frozen=True, eq=False)
class DetectionRequest:
    """Запрос на детекцию: изображение и непустое множество алгоритмов."""
    image: RasterImage
    algorithms: FrozenSet[Algorithm]

    def __post_init__(self) -> None:
        algorithms = frozenset(Algorithm.parse(a) for a in self.algorithms)
        if not algorithms:
            raise ConfigError("Не выбран ни один алгоритм")
        object.__setattr__(self, "algorithms", algorithms)


class DetectionResult(Mapping[Algorithm, EdgeMap]):
    """Отображение «алгоритм → карта границ» (только чтение)."""

    def __init__(self, edge_maps: Mapping[Algorithm, EdgeMap]) -> None:
        self._edge_maps: Mapping[Algorithm, EdgeMap] = MappingProxyType(dict(edge_maps))

    def __getitem__(self, key: "Algorithm | str") -> EdgeMap:
        try:
            return self._edge_maps[Algorithm.parse(key)]
        except ConfigError as exc:
            raise KeyError(key) from exc

    def __iter__(self) -> Iterator[Algorithm]:
        return iter(self._edge_maps)

    def __len__(self) -> int:
        return len(self._edge_maps)

    def __contains__(self, key: object) -> bool:
        try:
            return Algorithm.parse(key) in self._edge_maps  # type: ignore[arg-type]
        except ConfigError:
            return False

    def names(self) -> FrozenSet[str]:
        return frozenset(a.value for a in self._edge_maps)

    def as_images(self) -> Dict[str, Image.Image]:
        """Карты границ как PIL-изображения, ключ — имя алгоритма."""
        return {a.value: m.to_pil() for a, m in self._edge_maps.items()}

    def __repr__(self) -> str:
        return f"DetectionResult({sorted(self.names())})"


@dataclass(frozen=True)
class DetectionOutcome:
    """Результат для UI: успех с `DetectionResult` либо отказ с причиной."""
    ok: bool
    result: Optional[DetectionResult] = None
    reason: Optional[str] = None
    stage: Optional[str] = None
    timings: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def success(cls, result: DetectionResult, timings: Optional[Mapping[str, float]] = None) -> "DetectionOutcome":
        return cls(ok=True, result=result, timings=dict(timings or {}))

    @classmethod
    def failure(cls, reason: str, stage: Optional[str] = None) -> "DetectionOutcome":
        return cls(ok=False, reason=reason, stage=stage)


@dataclass(frozen=True, eq=False)
class SourceImage:
    """Загруженный пользователем файл: путь, исходные байты и декодированный растр.

    Fields:
        path: Путь к исходному файлу.
        data: Закодированные байты (передаются движку без повторного чтения).
        raster: Декодированное изображение.
        size_bytes: Размер файла.
    """
    path: Path
    data: bytes
    raster: RasterImage
    size_bytes: Optional[int] = None
