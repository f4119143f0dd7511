"""Декодирование изображений из байтов/файлов и обратное кодирование.

Принципы:
- SRP: класс отвечает только за перевод «байты ↔ растровое изображение».
- OCP: новые источники (стрим, URL) можно добавить отдельными методами.
- Ошибки формата и превышение лимитов размеров — `DecodeError`, без побочных эффектов.
"""
from __future__ import annotations

import io
import warnings
from pathlib import Path
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError

from edgescope.config import DetectionConfig
from edgescope.logging_setup import setup_logger
from edgescope.models.errors import DecodeError
from edgescope.models.image_model import EdgeMap, RasterImage, SourceImage

logger = setup_logger("decode")


class ImageService:
    def __init__(self, config: Optional[DetectionConfig] = None) -> None:
        self._config = config or DetectionConfig()
        limit = Image.MAX_IMAGE_PIXELS
        if limit is not None and limit < self._config.max_pixels:
            # Встроенная защита Pillow не должна быть строже сконфигурированного лимита
            Image.MAX_IMAGE_PIXELS = self._config.max_pixels

    def decode(self, data: bytes) -> RasterImage:
        """Декодирует байты изображения в `RasterImage` (RGB или RGBA).

        Args:
            data: Закодированное изображение (PNG, JPEG, BMP, ... — всё, что умеет Pillow).

        Returns:
            `RasterImage` с пикселями в каноническом порядке каналов.

        Raises:
            DecodeError: если байты пусты, не распознаны как изображение,
                повреждены или размеры превышают сконфигурированный лимит.
        """
        if not data:
            raise DecodeError("Пустые данные изображения")

        try:
            with warnings.catch_warnings():
                # Лимиты проверяет _check_dimensions
                warnings.simplefilter("ignore", Image.DecompressionBombWarning)
                with Image.open(io.BytesIO(data)) as pil_image:
                    fmt = pil_image.format
                    # Размеры известны по заголовку — проверяем до загрузки пикселей
                    self._check_dimensions(*pil_image.size)
                    pil_image.load()
                    raster = RasterImage.from_pil(pil_image, source_format=fmt)
        except DecodeError:
            raise
        except UnidentifiedImageError as exc:
            raise DecodeError("Данные не являются изображением поддерживаемого формата") from exc
        except Image.DecompressionBombError as exc:
            raise DecodeError(f"Изображение слишком большое: {exc}") from exc
        except (OSError, ValueError, SyntaxError) as exc:
            # Усечённые/повреждённые файлы Pillow сообщает через OSError/SyntaxError
            raise DecodeError(f"Не удалось декодировать изображение: {exc}") from exc

        logger.debug("decoded %s %dx%d (%s)", fmt, raster.width, raster.height, raster.mode)
        return raster

    def load_image(self, file_path: Union[str, Path]) -> RasterImage:
        """Загружает изображение с диска.

        Raises:
            FileNotFoundError: если путь не существует или не указывает на файл.
            DecodeError: если файл не читается (нет прав и т.п.) или не распознан как изображение.
        """
        return self.open_source(file_path).raster

    def open_source(self, file_path: Union[str, Path]) -> SourceImage:
        """Читает файл один раз и возвращает байты вместе с декодированным растром."""
        path = Path(file_path)
        if not path.exists() or not path.is_file():
            raise FileNotFoundError(f"Файл не найден: {path}")
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise DecodeError(f"Не удалось прочитать файл {path}: {exc}") from exc
        return SourceImage(path=path, data=data, raster=self.decode(data), size_bytes=len(data))

    def encode(self, image: Union[RasterImage, EdgeMap, Image.Image], fmt: str = "PNG") -> bytes:
        """Кодирует изображение или карту границ в стандартный формат (по умолчанию PNG)."""
        pil_image = image if isinstance(image, Image.Image) else image.to_pil()
        if fmt.upper() in ("JPEG", "JPG") and pil_image.mode == "RGBA":
            pil_image = pil_image.convert("RGB")
        buf = io.BytesIO()
        pil_image.save(buf, format="JPEG" if fmt.upper() == "JPG" else fmt.upper())
        return buf.getvalue()

    def save(self, edge_map: EdgeMap, file_path: Union[str, Path]) -> Path:
        """Сохраняет карту границ на диск; формат определяется по расширению."""
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        edge_map.to_pil().save(path)
        return path

    # ---- Helpers ----
    def _check_dimensions(self, width: int, height: int) -> None:
        cfg = self._config
        if width <= 0 or height <= 0:
            raise DecodeError(f"Некорректные размеры изображения: {width}x{height}")
        if width > cfg.max_width or height > cfg.max_height:
            raise DecodeError(
                f"Размеры {width}x{height} превышают лимит {cfg.max_width}x{cfg.max_height}"
            )
        if width * height > cfg.max_pixels:
            raise DecodeError(f"Число пикселей {width * height} превышает лимит {cfg.max_pixels}")
