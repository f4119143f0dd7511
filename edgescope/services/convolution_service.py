"""Свёртка яркости с парой ядер (Gx, Gy) и получение поля градиентов.

Общая стадия для Sobel, Prewitt и Canny (Canny по соглашению использует ядра Собеля).
"""
from __future__ import annotations

from typing import Dict, Sequence, Tuple

import numpy as np

from edgescope.config import BORDER_POLICIES
from edgescope.logging_setup import setup_logger
from edgescope.models.errors import ConfigError, ProcessingError
from edgescope.models.image_model import Algorithm, GradientField, IntensityBuffer, RasterImage

logger = setup_logger("convolution")

DEFAULT_LUMINANCE_WEIGHTS: Tuple[float, float, float] = (0.299, 0.587, 0.114)

SOBEL_X = np.array([[-1, 0, 1],
                    [-2, 0, 2],
                    [-1, 0, 1]], dtype=np.float64)
SOBEL_Y = np.array([[-1, -2, -1],
                    [0, 0, 0],
                    [1, 2, 1]], dtype=np.float64)

PREWITT_X = np.array([[-1, 0, 1],
                      [-1, 0, 1],
                      [-1, 0, 1]], dtype=np.float64)
PREWITT_Y = np.array([[-1, -1, -1],
                      [0, 0, 0],
                      [1, 1, 1]], dtype=np.float64)

KERNELS: Dict[str, Tuple[np.ndarray, np.ndarray]] = {
    "Sobel": (SOBEL_X, SOBEL_Y),
    "Prewitt": (PREWITT_X, PREWITT_Y),
}


def kernel_family(algorithm: Algorithm) -> str:
    """Имя пары ядер, градиент которой нужен алгоритму (Canny → Sobel)."""
    return "Prewitt" if algorithm is Algorithm.PREWITT else "Sobel"


def kernels_for(algorithm: Algorithm) -> Tuple[np.ndarray, np.ndarray]:
    return KERNELS[kernel_family(algorithm)]


def gaussian_kernel(size: int = 5, sigma: float = 1.0) -> np.ndarray:
    """Квадратное ядро Гаусса, нормированное к сумме 1."""
    if size % 2 != 1 or size <= 0:
        raise ConfigError(f"Размер ядра Гаусса должен быть нечётным: {size}")
    if sigma <= 0:
        raise ConfigError(f"sigma должна быть положительной: {sigma}")
    ax = np.arange(-(size // 2), size // 2 + 1, dtype=np.float64)
    xx, yy = np.meshgrid(ax, ax)
    kernel = np.exp(-(xx ** 2 + yy ** 2) / (2.0 * sigma ** 2))
    return kernel / kernel.sum()


class ConvolutionService:
    """Яркость, сглаживание и свёртка с парами ядер.

    Ядро накладывается центрированно как взаимная корреляция: положительный Gx
    означает рост яркости вправо. Модуль градиента совпадает со свёрткой
    с перевёрнутым ядром.

    Политики краёв:
    - "replicate": пиксели за границей берутся равными ближайшему краевому;
    - "zero": градиент в полосе `k // 2` у края обнуляется.
    """

    def __init__(self, border: str = "replicate") -> None:
        if border not in BORDER_POLICIES:
            raise ConfigError(f"Неизвестная политика краёв: {border!r}")
        self.border = border

    # ---------- Яркость ----------
    def to_intensity(
        self,
        image: RasterImage,
        weights: Sequence[float] = DEFAULT_LUMINANCE_WEIGHTS,
    ) -> IntensityBuffer:
        """Переводит RGB(A) в яркость по весам (R, G, B); альфа-канал игнорируется."""
        w = np.asarray(weights, dtype=np.float64)
        if w.shape != (3,):
            raise ConfigError(f"Ожидается 3 веса яркости, получено {len(w)}")
        try:
            rgb = image.pixels[..., :3].astype(np.float64)
            luminance = rgb @ w
        except (ValueError, FloatingPointError) as exc:
            raise ProcessingError(f"Не удалось вычислить яркость: {exc}", stage="intensity") from exc
        return IntensityBuffer(np.clip(luminance, 0.0, 255.0))

    # ---------- Свёртка ----------
    def filter2d(self, values: np.ndarray, kernel: np.ndarray) -> np.ndarray:
        """Центрированная фильтрация 2D-массива ядром нечётного размера.

        Векторизовано через сдвиги дополненного массива: сумма k[i, j] * p[i:i+H, j:j+W].
        """
        arr = np.asarray(values, dtype=np.float64)
        k = np.asarray(kernel, dtype=np.float64)
        if arr.ndim != 2 or arr.size == 0:
            raise ProcessingError(f"Пустой или не двумерный буфер: {arr.shape}", stage="convolution")
        if k.ndim != 2 or k.shape[0] != k.shape[1] or k.shape[0] % 2 != 1:
            raise ConfigError(f"Ядро должно быть квадратным нечётного размера: {k.shape}")

        r = k.shape[0] // 2
        h, w = arr.shape
        # Паддинг повтором краёв; для "zero" полоса у края обнуляется ниже
        p = np.pad(arr, ((r, r), (r, r)), mode="edge")
        out = np.zeros_like(arr)
        for i in range(k.shape[0]):
            for j in range(k.shape[1]):
                weight = k[i, j]
                if weight != 0.0:
                    out += weight * p[i:i + h, j:j + w]

        if self.border == "zero" and r > 0:
            out[:r, :] = 0.0
            out[-r:, :] = 0.0
            out[:, :r] = 0.0
            out[:, -r:] = 0.0
        return out

    def convolve(
        self,
        intensity: IntensityBuffer,
        kernel_x: np.ndarray,
        kernel_y: np.ndarray,
        kernel_name: str = "custom",
    ) -> GradientField:
        """Применяет пару ядер и возвращает поле градиентов той же формы.

        Ядра накладываются как взаимная корреляция (без переворота), как в
        `filter2d`: при яркости, растущей вправо, Gx > 0, а вниз — Gy > 0.
        Классическая свёртка дала бы те же поля с обратным знаком, т.е.
        направление, повёрнутое на π. Модуль от этого не зависит, а NMS
        квантует направление по модулю 180°.
        """
        if np.shape(kernel_x) != np.shape(kernel_y):
            raise ConfigError(f"Размеры ядер Gx {np.shape(kernel_x)} и Gy {np.shape(kernel_y)} различаются")
        try:
            gx = self.filter2d(intensity.values, kernel_x)
            gy = self.filter2d(intensity.values, kernel_y)
        except FloatingPointError as exc:
            raise ProcessingError(f"Численный сбой свёртки: {exc}", stage="convolution") from exc
        if not (np.isfinite(gx).all() and np.isfinite(gy).all()):
            raise ProcessingError("Градиент содержит NaN/inf", stage="convolution")
        return GradientField(gx=gx, gy=gy, kernel=kernel_name, border=self.border)

    def gradient(self, intensity: IntensityBuffer, algorithm: Algorithm) -> GradientField:
        """Поле градиентов для алгоритма (Sobel/Canny — ядра Собеля, Prewitt — Превитта)."""
        family = kernel_family(algorithm)
        kx, ky = KERNELS[family]
        return self.convolve(intensity, kx, ky, kernel_name=family)

    def smooth(self, intensity: IntensityBuffer, sigma: float, size: int = 0) -> IntensityBuffer:
        """Сглаживание Гауссом; размер ядра по умолчанию — 2*ceil(3*sigma)+1."""
        if sigma <= 0:
            return intensity
        if size <= 0:
            size = 2 * int(np.ceil(3.0 * sigma)) + 1
        kernel = gaussian_kernel(size, sigma)
        # Сглаживание всегда с повтором краёв, иначе рамка даст ложные границы
        blurred = ConvolutionService("replicate").filter2d(intensity.values, kernel)
        logger.debug("smoothed %s with sigma=%.2f size=%d", intensity.shape, sigma, size)
        return IntensityBuffer(blurred)
