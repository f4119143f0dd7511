"""Точка входа: окно приложения или пакетная обработка без UI."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from edgescope.config import DetectionConfig
from edgescope.models.errors import ConfigError, DecodeError
from edgescope.services.detection_service import ALL_SELECTION, SELECTION_VALUES, DetectionService


def run_headless(images: List[Path], selection: str, out_dir: Path, config: DetectionConfig) -> int:
    """Сохраняет `{stem}_{algorithm}.png` для каждого изображения; возвращает код выхода."""
    service = DetectionService(config)
    failed = 0
    for path in images:
        try:
            source = service.image_service.open_source(path)
        except (FileNotFoundError, DecodeError) as exc:
            print(f"  FAIL {path}: {exc}", file=sys.stderr)
            failed += 1
            continue
        outcome = service.detect(source.raster, selection)
        if not outcome.ok or outcome.result is None:
            print(f"  FAIL {path} [{outcome.stage}]: {outcome.reason}", file=sys.stderr)
            failed += 1
            continue
        for algorithm, edge_map in outcome.result.items():
            try:
                target = service.image_service.save(edge_map, out_dir / f"{path.stem}_{algorithm.value.lower()}.png")
            except OSError as exc:
                print(f"  FAIL {path} [save]: {exc}", file=sys.stderr)
                failed += 1
                break
            print(f"  OK   {path} -> {target}")
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    """Без аргументов открывает окно; с путями к изображениям — обрабатывает их без UI."""
    parser = argparse.ArgumentParser(description="Edge detection: Sobel, Prewitt, Canny")
    parser.add_argument("images", nargs="*", type=Path, help="Images to process without the UI")
    parser.add_argument("--selection", default=ALL_SELECTION, choices=list(SELECTION_VALUES))
    parser.add_argument("--out", type=Path, default=Path("edges"), help="Output directory")
    args = parser.parse_args(argv)

    try:
        config = DetectionConfig.from_env()
    except ConfigError as exc:
        print(f"Некорректная конфигурация: {exc}", file=sys.stderr)
        return 2
    if args.images:
        return run_headless(args.images, args.selection, args.out, config)

    from edgescope.app import EdgeScopeApp

    app = EdgeScopeApp(config)
    app.mainloop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
