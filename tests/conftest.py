from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from edgescope.models.image_model import RasterImage


def gray_raster(values: np.ndarray) -> RasterImage:
    """RGB-изображение из 2D-массива яркостей."""
    arr = np.asarray(values, dtype=np.uint8)
    return RasterImage(np.stack([arr, arr, arr], axis=-1))


def png_bytes(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def vertical_edge() -> RasterImage:
    """8x8: левая половина 0, правая 255."""
    arr = np.zeros((8, 8), dtype=np.uint8)
    arr[:, 4:] = 255
    return gray_raster(arr)


@pytest.fixture
def uniform() -> RasterImage:
    return gray_raster(np.full((6, 7), 128, dtype=np.uint8))


@pytest.fixture
def diagonal_4x4() -> RasterImage:
    """Ступень по диагонали: 255 выше главной диагонали, 0 на ней и ниже."""
    rows, cols = np.indices((4, 4))
    return gray_raster(np.where(cols > rows, 255, 0))


@pytest.fixture
def diagonal_png(diagonal_4x4: RasterImage) -> bytes:
    return png_bytes(diagonal_4x4.to_pil())
