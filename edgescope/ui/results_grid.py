"""Виджет результатов: исходное изображение и сетка карт границ.

Принципы:
- SRP: отвечает только за отрисовку, алгоритмов здесь нет.
- Раскладка: одна плитка для одного алгоритма, три — для «All».
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import customtkinter as ctk
import tkinter as tk
from PIL import Image, ImageTk

TILE_GAP = 16
LABEL_H = 24


class ResultsGrid(ctk.CTkFrame):
    """Канва с превью оригинала сверху и плитками результатов снизу."""
    def __init__(self, master: ctk.CTk | tk.Misc, **kwargs) -> None:
        super().__init__(master, **kwargs)
        self.grid_rowconfigure(0, weight=1)
        self.grid_columnconfigure(0, weight=1)

        self._canvas = tk.Canvas(self, highlightthickness=0, bg=self._get_canvas_bg())
        self._canvas.grid(row=0, column=0, sticky="nsew")

        self._original_image: Optional[Image.Image] = None
        self._layout: List[str] = []
        self._results: Dict[str, Image.Image] = {}
        # PhotoImage нужно держать живыми, иначе Tk их не покажет
        self._tk_images: List[ImageTk.PhotoImage] = []

        self._canvas.bind("<Configure>", self._on_canvas_resize)

    # ---- Public API ----
    def set_image(self, image: Image.Image) -> None:
        """Устанавливает исходное изображение и очищает результаты."""
        self._original_image = image
        self._results = {}
        self._render()

    def set_layout(self, names: List[str]) -> None:
        """Задаёт плитки, которые будут показаны (имена алгоритмов)."""
        self._layout = list(names)
        self._render()

    def set_results(self, results: Dict[str, Image.Image]) -> None:
        self._results = dict(results)
        self._render()

    def clear_results(self) -> None:
        self._results = {}
        self._render()

    # ---- Internals ----
    def _on_canvas_resize(self, _event: tk.Event) -> None:
        self._render()

    def _render(self) -> None:
        self._canvas.delete("all")
        self._tk_images = []
        canvas_w = max(1, int(self._canvas.winfo_width()))
        canvas_h = max(1, int(self._canvas.winfo_height()))

        if self._original_image is None:
            self._canvas.create_text(
                canvas_w // 2, canvas_h // 2, text="Загрузите изображение", fill="gray60"
            )
            return

        # верхняя половина — оригинал, нижняя — плитки
        top_h = canvas_h // 2 - LABEL_H
        self._draw_tile("Оригинал", self._original_image, (0, 0), (canvas_w, top_h))

        tiles = self._layout or []
        if not tiles:
            return
        tile_w = (canvas_w - TILE_GAP * (len(tiles) - 1)) // len(tiles)
        tile_h = canvas_h - (top_h + LABEL_H) - LABEL_H - TILE_GAP
        y = top_h + LABEL_H + TILE_GAP
        for idx, name in enumerate(tiles):
            x = idx * (tile_w + TILE_GAP)
            image = self._results.get(name)
            if image is None:
                self._canvas.create_rectangle(x, y + LABEL_H, x + tile_w, y + LABEL_H + tile_h, outline="gray50")
                self._canvas.create_text(x + 6, y + 4, text=name, anchor="nw", fill=self._get_text_color())
                continue
            self._draw_tile(name, image, (x, y), (tile_w, tile_h))

    def _draw_tile(self, label: str, image: Image.Image, origin: Tuple[int, int], box: Tuple[int, int]) -> None:
        x, y = origin
        box_w, box_h = max(1, box[0]), max(1, box[1])
        img_w, img_h = image.size
        scale = min(box_w / img_w, box_h / img_h)
        # Маленькие изображения (4x4) увеличиваем без сглаживания, чтобы видеть пиксели
        resample = Image.Resampling.NEAREST if scale > 1 else Image.Resampling.LANCZOS
        scaled = image.resize((max(1, int(img_w * scale)), max(1, int(img_h * scale))), resample)
        tk_image = ImageTk.PhotoImage(scaled)
        self._tk_images.append(tk_image)
        self._canvas.create_text(x + 6, y + 4, text=label, anchor="nw", fill=self._get_text_color())
        ox = x + (box_w - scaled.width) // 2
        self._canvas.create_image(ox, y + LABEL_H, image=tk_image, anchor="nw")

    def _get_canvas_bg(self) -> str:
        mode = ctk.get_appearance_mode()
        return "#1e1e1e" if mode == "Dark" else "#f2f2f2"

    def _get_text_color(self) -> str:
        return "gray85" if ctk.get_appearance_mode() == "Dark" else "gray15"
