"""Боковая панель: загрузка файла, информация об изображении, выбор детектора.

Принципы:
- SRP: управляет только UI параметров, не содержит алгоритмов.
- ISP: выдаёт параметры через компактные методы `get_*`, события через `on_*`.
"""
from __future__ import annotations

from typing import Callable, Optional, Sequence

import customtkinter as ctk

from edgescope.models.image_model import SourceImage


class Sidebar(ctk.CTkFrame):
    """Панель инструментов с блоками: файл, информация, детектор, запуск."""
    def __init__(self, master: ctk.CTk, selections: Sequence[str], **kwargs) -> None:
        super().__init__(master, width=280, **kwargs)

        self.grid_columnconfigure(0, weight=1)

        # Callbacks
        self.on_open_file: Optional[Callable[[], None]] = None
        self.on_selection_change: Optional[Callable[[str], None]] = None
        self.on_run: Optional[Callable[[], None]] = None

        self._title = ctk.CTkLabel(self, text="Детекция границ", font=ctk.CTkFont(size=18, weight="bold"))
        self._title.grid(row=0, column=0, padx=8, pady=(8, 2), sticky="w")
        self._subtitle = ctk.CTkLabel(
            self,
            text="Загрузите изображение и выберите алгоритм",
            wraplength=250,
            anchor="w",
            justify="left",
        )
        self._subtitle.grid(row=1, column=0, padx=8, pady=(0, 8), sticky="ew")

        self._open_btn = ctk.CTkButton(self, text="Загрузить изображение…", command=self._emit_open_file)
        self._open_btn.grid(row=2, column=0, padx=8, pady=(0, 12), sticky="ew")

        # Info section
        self._info_title = ctk.CTkLabel(self, text="Информация", font=ctk.CTkFont(size=16, weight="bold"))
        self._info_title.grid(row=3, column=0, padx=8, pady=(8, 4), sticky="w")

        self._path_val = ctk.StringVar(value="—")
        self._size_val = ctk.StringVar(value="—")
        self._dims_val = ctk.StringVar(value="—")

        self._info_path = ctk.CTkLabel(self, textvariable=self._path_val, wraplength=250, anchor="w", justify="left")
        self._info_size = ctk.CTkLabel(self, textvariable=self._size_val, anchor="w", justify="left")
        self._info_dims = ctk.CTkLabel(self, textvariable=self._dims_val, anchor="w", justify="left")

        self._info_path.grid(row=4, column=0, padx=8, pady=(0, 2), sticky="ew")
        self._info_size.grid(row=5, column=0, padx=8, pady=(0, 2), sticky="ew")
        self._info_dims.grid(row=6, column=0, padx=8, pady=(0, 10), sticky="ew")

        # Детектор
        self._det_title = ctk.CTkLabel(self, text="Детектор", font=ctk.CTkFont(size=16, weight="bold"))
        self._det_title.grid(row=7, column=0, padx=8, pady=(8, 4), sticky="w")

        self._selection = ctk.StringVar(value=selections[0])
        self._radio_buttons = []
        for idx, value in enumerate(selections):
            rb = ctk.CTkRadioButton(
                self, text=value, variable=self._selection, value=value, command=self._emit_selection_change
            )
            rb.grid(row=8 + idx, column=0, padx=12, pady=(2, 2), sticky="w")
            self._radio_buttons.append(rb)

        # filler
        self.grid_rowconfigure(98, weight=1)

        self._run_btn = ctk.CTkButton(self, text="Запустить детекцию", command=self._emit_run)
        self._run_btn.grid(row=99, column=0, padx=8, pady=(8, 8), sticky="ew")

    # ---- Public API ----
    def set_image_info(self, source: SourceImage) -> None:
        """Отображает метаданные загруженного изображения."""
        self._path_val.set(str(source.path))
        self._size_val.set(self._format_size(source.size_bytes))
        self._dims_val.set(f"{source.raster.width} × {source.raster.height} px, {source.raster.mode}")

    def get_selection(self) -> str:
        return self._selection.get()

    def set_busy(self, busy: bool) -> None:
        """Блокирует кнопки на время выполнения детекции."""
        state = "disabled" if busy else "normal"
        self._run_btn.configure(state=state)
        self._open_btn.configure(state=state)

    # ---- Events ----
    def _emit_open_file(self) -> None:
        if self.on_open_file:
            self.on_open_file()

    def _emit_selection_change(self) -> None:
        if self.on_selection_change:
            self.on_selection_change(self._selection.get())

    def _emit_run(self) -> None:
        if self.on_run:
            self.on_run()

    # ---- Helpers ----
    def _format_size(self, size_bytes: Optional[int]) -> str:
        if size_bytes is None:
            return "—"
        thresholds = [("Б", 1024), ("КБ", 1024**2), ("МБ", 1024**3)]
        for label, limit in thresholds:
            if size_bytes < limit:
                if label == "Б":
                    return f"{size_bytes} {label}"
                value = size_bytes / (limit // 1024)
                return f"{value:.1f} {label}"
        value = size_bytes / (1024**3)
        return f"{value:.1f} ГБ"
