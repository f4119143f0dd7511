from __future__ import annotations

from typing import Mapping, Optional

import customtkinter as ctk

# level -> цвет текста
_LEVEL_COLORS = {
    "info": ("gray20", "gray80"),
    "success": ("#1b7f3a", "#5fd68a"),
    "error": ("#b3261e", "#f2867e"),
}


class BottomBar(ctk.CTkFrame):
    """Строка состояния: уведомления о ходе детекции и время стадий."""
    def __init__(self, master: ctk.CTk, **kwargs) -> None:
        super().__init__(master, height=48, **kwargs)

        self.grid_rowconfigure(0, weight=1)
        self.grid_columnconfigure(1, weight=1)

        self._title_val = ctk.StringVar(value="")
        self._message_val = ctk.StringVar(value="Готово к работе")
        self._timings_val = ctk.StringVar(value="")

        self._title_label = ctk.CTkLabel(self, textvariable=self._title_val, font=ctk.CTkFont(weight="bold"))
        self._title_label.grid(row=0, column=0, padx=(10, 6), pady=8, sticky="w")
        self._message_label = ctk.CTkLabel(self, textvariable=self._message_val, anchor="w")
        self._message_label.grid(row=0, column=1, padx=6, pady=8, sticky="ew")
        self._timings_label = ctk.CTkLabel(self, textvariable=self._timings_val, anchor="e")
        self._timings_label.grid(row=0, column=2, padx=(6, 12), pady=8, sticky="e")

    # public API (sync from controller)
    def notify(self, title: str, message: str, level: str = "info") -> None:
        """Показывает уведомление: level = "info" | "success" | "error"."""
        color = _LEVEL_COLORS.get(level, _LEVEL_COLORS["info"])
        self._title_val.set(title)
        self._message_val.set(message)
        self._title_label.configure(text_color=color)

    def set_timings(self, timings: Optional[Mapping[str, float]]) -> None:
        if not timings:
            self._timings_val.set("")
            return
        # секунды -> мс
        parts = [f"{name}: {value * 1000:.0f} мс" for name, value in timings.items()]
        self._timings_val.set(" · ".join(parts))
