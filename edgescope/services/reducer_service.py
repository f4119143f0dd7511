"""Редукторы «поле градиентов → карта границ».

- Sobel/Prewitt: нормализованный модуль градиента (опционально с бинаризацией).
- Canny: подавление немаксимумов → двойной порог → трассировка гистерезисом.
"""
from __future__ import annotations

from collections import deque
from typing import Optional, Tuple, Union

import numpy as np

from edgescope.config import MAGNITUDE_SCALES, DetectionConfig
from edgescope.logging_setup import setup_logger
from edgescope.models.errors import ConfigError, ProcessingError
from edgescope.models.image_model import Algorithm, EdgeMap, GradientField

logger = setup_logger("reduce")

SUPPRESSED = 0
WEAK = 1
STRONG = 2

# Смещения (строка, столбец) соседа вдоль направления градиента для 0°, 45°, 90°, 135°.
# Ось строк направлена вниз, как и Gy.
_NMS_OFFSETS = {
    0: (0, 1),
    1: (1, 1),
    2: (1, 0),
    3: (1, -1),
}

_NEIGHBORS_8 = [(di, dj) for di in (-1, 0, 1) for dj in (-1, 0, 1) if (di, dj) != (0, 0)]


# ---------- Вспомогательные функции ----------
def otsu_threshold(arr_0_255: np.ndarray) -> float:
    """
    Порог Отсу для массива значений [0..255] (float/uint8).
    Возвращает порог T в тех же единицах.
    """
    arr_u8 = np.clip(np.rint(arr_0_255), 0, 255).astype(np.uint8)
    hist = np.bincount(arr_u8.ravel(), minlength=256).astype(np.float64)
    total = arr_u8.size
    if total == 0:
        return 0.0

    prob = hist / total
    omega = np.cumsum(prob)  # кумулятивные вероятности
    mu = np.cumsum(prob * np.arange(256))  # кумулятивные средние
    mu_t = mu[-1]

    # Межклассовая дисперсия
    numerator = (mu_t * omega - mu) ** 2
    denominator = omega * (1.0 - omega)
    with np.errstate(divide="ignore", invalid="ignore"):
        sigma_b2 = np.where(denominator > 0, numerator / denominator, 0.0)
    return float(np.argmax(sigma_b2))


def normalize_magnitude(magnitude: np.ndarray, scale: str = "max") -> np.ndarray:
    """Приводит модуль градиента к диапазону [0..255] (float64).

    "max" — масштабирование по максимуму изображения, "clip" — обрезка сырых значений.
    """
    if scale == "clip":
        return np.clip(magnitude, 0.0, 255.0)
    mmax = float(magnitude.max()) if magnitude.size else 0.0
    if mmax <= 0:
        return np.zeros_like(magnitude, dtype=np.float64)
    return magnitude * (255.0 / mmax)


def suppress(magnitude: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """Подавление немаксимумов.

    Направление квантуется в 0°/45°/90°/135°; пиксель сохраняется, если его модуль
    не меньше обоих соседей вдоль градиента (равенство считается максимумом).
    Соседи за пределами изображения считаются нулевыми.
    """
    mag = np.asarray(magnitude, dtype=np.float64)
    h, w = mag.shape
    ang = np.degrees(direction) % 180.0

    bins = np.zeros(mag.shape, dtype=np.int8)
    bins[(ang >= 22.5) & (ang < 67.5)] = 1
    bins[(ang >= 67.5) & (ang < 112.5)] = 2
    bins[(ang >= 112.5) & (ang < 157.5)] = 3

    padded = np.pad(mag, 1, mode="constant", constant_values=0.0)

    def shifted(dr: int, dc: int) -> np.ndarray:
        return padded[1 + dr:1 + dr + h, 1 + dc:1 + dc + w]

    keep = np.zeros(mag.shape, dtype=bool)
    for b, (dr, dc) in _NMS_OFFSETS.items():
        ahead = shifted(dr, dc)
        behind = shifted(-dr, -dc)
        keep |= (bins == b) & (mag >= ahead) & (mag >= behind)
    return np.where(keep, mag, 0.0)


def non_max_suppression(field: GradientField) -> np.ndarray:
    return suppress(field.magnitude, field.direction)


def double_threshold(nms: np.ndarray, low: float, high: float) -> np.ndarray:
    """Классификация пикселей после NMS: STRONG (>= high), WEAK (low..high), SUPPRESSED."""
    if high <= low:
        raise ConfigError(f"Верхний порог ({high}) должен быть больше нижнего ({low})")
    labels = np.full(nms.shape, SUPPRESSED, dtype=np.int8)
    alive = nms > 0
    labels[alive & (nms >= low) & (nms < high)] = WEAK
    labels[alive & (nms >= high)] = STRONG
    return labels


def hysteresis(labels: np.ndarray, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Трассировка гистерезисом: слабые пиксели, 8-связные (в т.ч. транзитивно)
    с сильными, становятся границей; остальные слабые отбрасываются.

    Обход в ширину из сильных пикселей. `rng` перемешивает порядок затравок;
    на результат порядок не влияет.
    """
    h, w = labels.shape
    edges = labels == STRONG
    weak = labels == WEAK

    seeds = np.argwhere(edges)
    if rng is not None:
        seeds = seeds[rng.permutation(len(seeds))]

    dq = deque(map(tuple, seeds.tolist()))
    while dq:
        i, j = dq.popleft()
        for di, dj in _NEIGHBORS_8:
            ni = i + di
            nj = j + dj
            if ni < 0 or nj < 0 or ni >= h or nj >= w:
                continue
            if weak[ni, nj] and not edges[ni, nj]:
                edges[ni, nj] = True
                dq.append((ni, nj))
    return edges


# ---------- Редукторы ----------
class MagnitudeReducer:
    """Sobel/Prewitt: карта границ = нормализованный модуль градиента."""

    def __init__(
        self,
        algorithm: Algorithm,
        scale: str = "max",
        threshold: Union[None, float, str] = None,
    ) -> None:
        if algorithm is Algorithm.CANNY:
            raise ConfigError("Для Canny используйте CannyReducer")
        if scale not in MAGNITUDE_SCALES:
            raise ConfigError(f"Неизвестная нормализация: {scale!r}")
        if isinstance(threshold, str) and threshold != "otsu":
            raise ConfigError(f"Неизвестный порог бинаризации: {threshold!r}")
        self.algorithm = algorithm
        self.scale = scale
        self.threshold = threshold

    def reduce(self, field: GradientField) -> EdgeMap:
        norm = normalize_magnitude(field.magnitude, self.scale)
        if self.threshold is None:
            values = np.clip(np.rint(norm), 0, 255).astype(np.uint8)
            return EdgeMap(values=values, algorithm=self.algorithm, binary=False)

        t = otsu_threshold(norm) if self.threshold == "otsu" else float(self.threshold)
        # Нулевой модуль никогда не граница, даже при пороге 0
        mask = (norm >= t) & (norm > 0)
        logger.debug("%s binarized at T=%.2f", self.algorithm.value, t)
        return EdgeMap(values=np.where(mask, 255, 0).astype(np.uint8), algorithm=self.algorithm, binary=True)


class CannyReducer:
    """Canny поверх поля градиентов Собеля.

    Пороги в единицах сырого модуля градиента. Если не заданы, верхний —
    `high_percentile` ненулевых значений после NMS, нижний — верхний * `low_ratio`.
    """

    algorithm = Algorithm.CANNY

    def __init__(
        self,
        low: Optional[float] = None,
        high: Optional[float] = None,
        high_percentile: float = 90.0,
        low_ratio: float = 0.5,
    ) -> None:
        if (low is None) != (high is None):
            raise ConfigError("Пороги Canny задаются парой: оба или ни одного")
        if low is not None and high is not None and high <= low:
            raise ConfigError(f"Верхний порог Canny ({high}) должен быть больше нижнего ({low})")
        if not 0 < high_percentile <= 100:
            raise ConfigError(f"Перцентиль вне (0, 100]: {high_percentile}")
        if not 0 < low_ratio < 1:
            raise ConfigError(f"low_ratio должен быть в (0, 1): {low_ratio}")
        self.low = low
        self.high = high
        self.high_percentile = high_percentile
        self.low_ratio = low_ratio

    def thresholds(self, nms: np.ndarray) -> Optional[Tuple[float, float]]:
        """(low, high) для данной карты NMS; None, если ненулевых модулей нет."""
        if self.low is not None and self.high is not None:
            return float(self.low), float(self.high)
        nz = nms[nms > 0]
        if nz.size == 0:
            return None
        high = float(np.percentile(nz, self.high_percentile))
        return high * self.low_ratio, high

    def reduce(self, field: GradientField, rng: Optional[np.random.Generator] = None) -> EdgeMap:
        nms = non_max_suppression(field)
        bounds = self.thresholds(nms)
        if bounds is None:
            return EdgeMap(values=np.zeros(field.shape, dtype=np.uint8), algorithm=self.algorithm, binary=True)
        low, high = bounds
        labels = double_threshold(nms, low, high)
        edges = hysteresis(labels, rng=rng)
        if edges.shape != field.shape:
            raise ProcessingError(f"Форма карты {edges.shape} не совпадает с {field.shape}", stage="reduce")
        logger.debug(
            "canny low=%.2f high=%.2f strong=%d weak=%d edges=%d",
            low, high, int((labels == STRONG).sum()), int((labels == WEAK).sum()), int(edges.sum()),
        )
        return EdgeMap(values=np.where(edges, 255, 0).astype(np.uint8), algorithm=self.algorithm, binary=True)


Reducer = Union[MagnitudeReducer, CannyReducer]


def reducer_for(algorithm: Algorithm, config: Optional[DetectionConfig] = None) -> Reducer:
    cfg = config or DetectionConfig()
    if algorithm is Algorithm.CANNY:
        return CannyReducer(
            low=cfg.canny_low,
            high=cfg.canny_high,
            high_percentile=cfg.canny_high_percentile,
            low_ratio=cfg.canny_low_ratio,
        )
    return MagnitudeReducer(algorithm, scale=cfg.magnitude_scale, threshold=cfg.magnitude_threshold)
