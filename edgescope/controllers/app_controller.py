"""Контроллер приложения: оркестрация UI и движка детекции.

SOLID:
- SRP: класс управляет связями между UI и сервисами (без логики обработки изображений).
- DIP: общается с движком только через `DetectionService.detect` и `DetectionOutcome`.
Clean Code:
- Обработчики компактны; детекция выполняется в фоне, результат возвращается в цикл Tk через `after`.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from tkinter import filedialog, TclError
from typing import Optional

import customtkinter as ctk

from edgescope.logging_setup import setup_logger
from edgescope.models.errors import DecodeError
from edgescope.models.image_model import DetectionOutcome, SourceImage
from edgescope.services.detection_service import ALL_SELECTION, DetectionService, display_layout
from edgescope.ui.bottom_bar import BottomBar
from edgescope.ui.results_grid import ResultsGrid
from edgescope.ui.sidebar import Sidebar

logger = setup_logger("ui")


@dataclass
class AppController:
    """Связывает элементы UI с движком детекции.

    Ответственности:
    - Бинд событий (UI -> контроллер).
    - Загрузка изображения через `ImageService` (валидация формата при открытии).
    - Запуск детекции в фоновом потоке и отображение результата или ошибки.
    Контроллер хранит только состояние представления: текущий файл и выбор.
    """
    grid: ResultsGrid
    sidebar: Sidebar
    bottom: BottomBar
    window: ctk.CTk
    service: DetectionService = field(default_factory=DetectionService)

    _current: Optional[SourceImage] = None
    _selection: str = ALL_SELECTION
    _cancel: Optional[threading.Event] = None

    def bind_events(self) -> None:
        """Регистрирует обработчики событий между UI-компонентами."""
        self.sidebar.on_open_file = self._handle_open_file
        self.sidebar.on_selection_change = self._handle_selection_change
        self.sidebar.on_run = self._handle_run
        self.grid.set_layout(display_layout(self._selection))

    # ---- Handlers ----
    def _handle_open_file(self) -> None:
        try:
            file_path = filedialog.askopenfilename(
                title="Выберите изображение",
                filetypes=(
                    ("Images", "*.png *.jpg *.jpeg *.bmp *.gif *.tiff *.webp"),
                    ("All files", "*.*"),
                ),
            )
        except TclError:
            # Silent fail if dialog cannot open
            return

        if not file_path:
            return

        try:
            source = self.service.image_service.open_source(file_path)
        except (DecodeError, OSError) as exc:
            logger.warning("rejected upload %s: %s", file_path, exc)
            self.bottom.notify("Некорректный файл", "Загрузите корректное изображение.", level="error")
            return

        self._cancel_pending()
        self._current = source
        self.sidebar.set_image_info(source)
        self.grid.set_image(source.raster.to_pil())
        self.bottom.set_timings(None)
        self.bottom.notify("Файл загружен", source.path.name)

    def _handle_selection_change(self, selection: str) -> None:
        self._cancel_pending()
        self._selection = selection
        self.grid.set_layout(display_layout(selection))
        self.grid.clear_results()

    def _handle_run(self) -> None:
        if self._current is None:
            self.bottom.notify("Нет изображения", "Сначала загрузите изображение.", level="error")
            return

        self._cancel_pending()
        cancel = threading.Event()
        self._cancel = cancel
        source, selection = self._current, self._selection

        self.sidebar.set_busy(True)
        self.bottom.notify("Обработка", "Выполняется детекция границ…")

        self.service.detect_in_background(
            source.raster,
            selection,
            # Обратно в главный поток Tk
            on_done=lambda outcome: self.window.after(0, lambda: self._show_outcome(outcome, cancel)),
            cancel=cancel,
        )

    # ---- Helpers ----
    def _show_outcome(self, outcome: DetectionOutcome, cancel: threading.Event) -> None:
        if cancel is not self._cancel:
            # Устаревший запуск: пользователь уже сменил файл или выбор
            return
        self._cancel = None
        self.sidebar.set_busy(False)
        if not outcome.ok or outcome.result is None:
            self.bottom.notify("Ошибка", outcome.reason or "Не удалось выполнить детекцию", level="error")
            self.bottom.set_timings(None)
            return
        try:
            images = outcome.result.as_images()
        except (ValueError, MemoryError) as exc:
            logger.exception("cannot render detection result")
            self.bottom.notify("Ошибка", f"Не удалось отобразить результат: {exc}", level="error")
            self.bottom.set_timings(None)
            return
        self.grid.set_results(images)
        self.bottom.set_timings(outcome.timings)
        self.bottom.notify("Готово", "Детекция границ завершена.", level="success")

    def _cancel_pending(self) -> None:
        if self._cancel is not None:
            self._cancel.set()
            self._cancel = None
            self.sidebar.set_busy(False)
