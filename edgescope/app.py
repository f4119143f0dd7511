from typing import Optional

import customtkinter as ctk

from edgescope.config import DetectionConfig
from edgescope.controllers.app_controller import AppController
from edgescope.services.detection_service import SELECTION_VALUES, DetectionService
from edgescope.ui.bottom_bar import BottomBar
from edgescope.ui.results_grid import ResultsGrid
from edgescope.ui.sidebar import Sidebar


class EdgeScopeApp(ctk.CTk):
    def __init__(self, config: Optional[DetectionConfig] = None) -> None:
        super().__init__()
        ctk.set_appearance_mode("system")
        ctk.set_default_color_theme("blue")

        self.title("Edge Detection")
        self.minsize(900, 600)

        # root layout: left sidebar, right results
        self.grid_columnconfigure(1, weight=1)
        self.grid_rowconfigure(0, weight=1)
        self.grid_rowconfigure(1, weight=0)

        self._sidebar = Sidebar(self, selections=SELECTION_VALUES)
        self._sidebar.grid(row=0, column=0, sticky="ns", padx=(12, 6), pady=(12, 6))

        self._grid = ResultsGrid(self)
        self._grid.grid(row=0, column=1, sticky="nsew", padx=(6, 12), pady=(12, 6))

        self._bottom = BottomBar(self)
        self._bottom.grid(row=1, column=0, columnspan=2, sticky="ew", padx=12, pady=(0, 12))

        self._controller = AppController(
            grid=self._grid,
            sidebar=self._sidebar,
            bottom=self._bottom,
            window=self,
            service=DetectionService(config or DetectionConfig.from_env()),
        )
        self._controller.bind_events()
