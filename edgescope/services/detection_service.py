"""Оркестратор детекции: декодирование → яркость → градиенты → редукторы.

Принципы:
- Яркость и поле градиентов вычисляются один раз на запрос (на семейство ядер)
  и разделяются между алгоритмами.
- «All» — только расширение множества алгоритмов на этом уровне, не отдельный алгоритм.
- Запрос либо полностью успешен, либо падает целиком: частичных результатов нет.
"""
from __future__ import annotations

import hashlib
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union

import numpy as np

from edgescope.config import DetectionConfig
from edgescope.logging_setup import setup_logger
from edgescope.models.errors import ConfigError, DetectionCancelled, EdgeDetectionError, ProcessingError
from edgescope.models.image_model import (
    Algorithm,
    DetectionOutcome,
    DetectionRequest,
    DetectionResult,
    EdgeMap,
    GradientField,
    IntensityBuffer,
    RasterImage,
)
from edgescope.services.convolution_service import ConvolutionService, kernel_family
from edgescope.services.image_service import ImageService
from edgescope.services.reducer_service import Reducer, reducer_for

logger = setup_logger("detect")

ALL_SELECTION = "All"
SELECTION_VALUES: Tuple[str, ...] = (ALL_SELECTION,) + tuple(a.value for a in Algorithm)

Selection = Union[str, Algorithm, Iterable[Union[str, Algorithm]]]


def expand_selection(selection: Selection) -> FrozenSet[Algorithm]:
    """Разворачивает выбор пользователя во множество алгоритмов.

    "All" → {Sobel, Prewitt, Canny}; имя или `Algorithm` → множество из одного;
    итерируемое — объединение. Пустой выбор или неизвестное имя — `ConfigError`.
    """
    if isinstance(selection, (str, Algorithm)):
        items: List[Union[str, Algorithm]] = [selection]
    else:
        items = list(selection)

    algorithms = set()
    for item in items:
        if isinstance(item, str) and not isinstance(item, Algorithm) and item.strip().lower() == ALL_SELECTION.lower():
            algorithms.update(Algorithm)
        else:
            algorithms.add(Algorithm.parse(item))
    if not algorithms:
        raise ConfigError("Не выбран ни один алгоритм")
    return frozenset(algorithms)


def request_for(image: RasterImage, selection: Selection) -> DetectionRequest:
    return DetectionRequest(image=image, algorithms=expand_selection(selection))


def display_layout(selection: Selection) -> List[str]:
    """Имена плиток результата в порядке отображения (Sobel, Prewitt, Canny)."""
    algorithms = expand_selection(selection)
    return [a.value for a in Algorithm if a in algorithms]


class _GradientCache:
    """LRU-кэш яркости и полей градиентов по содержимому изображения."""

    def __init__(self, size: int) -> None:
        self._size = size
        self._entries: "OrderedDict[str, Dict[str, object]]" = OrderedDict()
        self._lock = threading.Lock()

    def entry(self, key: str) -> Dict[str, object]:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return self._entries[key]
            entry: Dict[str, object] = {}
            if self._size > 0:
                self._entries[key] = entry
                while len(self._entries) > self._size:
                    self._entries.popitem(last=False)
            return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class DetectionService:
    """Выполняет запросы детекции над неизменяемыми входами.

    Между вызовами разделяется только кэш градиентов (под блокировкой),
    поэтому независимые запросы можно выполнять параллельно.
    """

    def __init__(self, config: Optional[DetectionConfig] = None) -> None:
        self.config = (config or DetectionConfig()).validate()
        self._image_service = ImageService(self.config)
        self._convolution = ConvolutionService(self.config.border)
        self._reducers: Dict[Algorithm, Reducer] = {a: reducer_for(a, self.config) for a in Algorithm}
        self._cache = _GradientCache(self.config.cache_size)

    @property
    def image_service(self) -> ImageService:
        return self._image_service

    # ---- Public API ----
    def run(self, request: DetectionRequest, cancel: Optional[threading.Event] = None) -> DetectionResult:
        """Вычисляет карты границ для всех алгоритмов запроса.

        Raises:
            ProcessingError: при численном сбое на любой стадии.
            DetectionCancelled: если `cancel` выставлен между стадиями.
        """
        started = time.perf_counter()
        image = request.image
        self._check_cancel(cancel, "intensity")
        with self._stage("intensity"):
            entry = self._cache.entry(self._cache_key(image))
        intensity = self._intensity(image, entry)

        edge_maps: Dict[Algorithm, EdgeMap] = {}
        for algorithm in Algorithm:
            if algorithm not in request.algorithms:
                continue
            self._check_cancel(cancel, algorithm.value)
            field = self._gradient(intensity, algorithm, entry)
            with self._stage("reduce"):
                edge_maps[algorithm] = self._reducers[algorithm].reduce(field)

        logger.info(
            "detected %s on %dx%d in %.1f ms",
            ",".join(a.value for a in edge_maps),
            image.width,
            image.height,
            (time.perf_counter() - started) * 1000.0,
        )
        return DetectionResult(edge_maps)

    def decode(self, data: bytes) -> RasterImage:
        return self._image_service.decode(data)

    def detect(
        self,
        data: Union[bytes, RasterImage],
        selection: Selection = ALL_SELECTION,
        cancel: Optional[threading.Event] = None,
    ) -> DetectionOutcome:
        """Граница с UI: байты (или готовое изображение) + выбор → тегированный результат.

        Любая `EdgeDetectionError` превращается в неуспешный `DetectionOutcome`
        с причиной и стадией; частичные результаты не возвращаются.
        """
        timings: Dict[str, float] = {}
        try:
            algorithms = expand_selection(selection)
            t0 = time.perf_counter()
            image = data if isinstance(data, RasterImage) else self._image_service.decode(data)
            timings["decode"] = time.perf_counter() - t0
            self._check_cancel(cancel, "decode")
            t0 = time.perf_counter()
            result = self.run(DetectionRequest(image=image, algorithms=algorithms), cancel=cancel)
            timings["detect"] = time.perf_counter() - t0
        except EdgeDetectionError as exc:
            logger.warning("detection failed at %s: %s", exc.stage, exc.message)
            return DetectionOutcome.failure(exc.message, stage=exc.stage)
        return DetectionOutcome.success(result, timings)

    def detect_in_background(
        self,
        data: Union[bytes, RasterImage],
        selection: Selection,
        on_done: Callable[[DetectionOutcome], None],
        cancel: Optional[threading.Event] = None,
    ) -> threading.Thread:
        """Запускает `detect` в фоновом потоке и передаёт результат в `on_done`.

        `on_done` вызывается ровно один раз, даже если детекция упала
        с непредвиденным исключением: тогда результат неуспешный со стадией "internal".
        """

        def work() -> None:
            try:
                outcome = self.detect(data, selection, cancel=cancel)
            except Exception as exc:
                logger.exception("unexpected failure in background detection")
                outcome = DetectionOutcome.failure(f"{type(exc).__name__}: {exc}", stage="internal")
            on_done(outcome)

        thread = threading.Thread(target=work, name="edge-detection", daemon=True)
        thread.start()
        return thread

    def run_many(
        self,
        requests: Iterable[DetectionRequest],
        max_workers: Optional[int] = None,
    ) -> List[DetectionResult]:
        """Параллельно выполняет независимые запросы; порядок результатов — как у входа."""
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(self.run, requests))

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cached_images(self) -> int:
        return len(self._cache)

    # ---- Stages ----
    def _intensity(self, image: RasterImage, entry: Dict[str, object]) -> IntensityBuffer:
        cached = entry.get("intensity")
        if isinstance(cached, IntensityBuffer):
            return cached
        with self._stage("intensity"):
            intensity = self._convolution.to_intensity(image, self.config.luminance_weights)
        entry["intensity"] = intensity
        return intensity

    def _gradient(self, intensity: IntensityBuffer, algorithm: Algorithm, entry: Dict[str, object]) -> GradientField:
        # Canny со сглаживанием получает собственное поле
        smoothed = algorithm is Algorithm.CANNY and self.config.canny_sigma > 0
        family = kernel_family(algorithm)
        key = f"gradient:{family}:{'smoothed' if smoothed else 'raw'}"
        cached = entry.get(key)
        if isinstance(cached, GradientField):
            logger.debug("reusing %s gradient for %s", family, algorithm.value)
            return cached
        with self._stage("convolution"):
            source = self._convolution.smooth(intensity, self.config.canny_sigma) if smoothed else intensity
            field = self._convolution.gradient(source, algorithm)
        entry[key] = field
        return field

    # ---- Helpers ----
    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        except EdgeDetectionError:
            raise
        except (ValueError, FloatingPointError, IndexError, MemoryError) as exc:
            raise ProcessingError(f"{type(exc).__name__}: {exc}", stage=name) from exc
        finally:
            logger.debug("stage %s took %.2f ms", name, (time.perf_counter() - started) * 1000.0)

    def _cache_key(self, image: RasterImage) -> str:
        digest = hashlib.sha1(np.ascontiguousarray(image.pixels).tobytes())
        digest.update(repr(image.pixels.shape).encode("ascii"))
        return digest.hexdigest()

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event], stage: str) -> None:
        if cancel is not None and cancel.is_set():
            raise DetectionCancelled(f"Отменено перед стадией {stage}")
