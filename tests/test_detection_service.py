import gc
import threading
import weakref

import numpy as np
import pytest

from conftest import gray_raster, png_bytes
from edgescope.config import DetectionConfig
from edgescope.models.errors import ConfigError, DetectionCancelled, ProcessingError
from edgescope.models.image_model import Algorithm, DetectionRequest
from edgescope.services.detection_service import (
    DetectionService,
    display_layout,
    expand_selection,
    request_for,
)

ALL = {Algorithm.SOBEL, Algorithm.PREWITT, Algorithm.CANNY}


# ---------- Selection ----------
@pytest.mark.parametrize(
    "selection, expected",
    [
        ("All", ALL),
        ("all", ALL),
        ("Sobel", {Algorithm.SOBEL}),
        (Algorithm.CANNY, {Algorithm.CANNY}),
        (["Prewitt", "Canny"], {Algorithm.PREWITT, Algorithm.CANNY}),
    ],
)
def test_expand_selection(selection, expected):
    assert expand_selection(selection) == expected


@pytest.mark.parametrize("selection", [[], "Laplace", ["Sobel", "Roberts"]])
def test_expand_selection_errors(selection):
    with pytest.raises(ConfigError):
        expand_selection(selection)


def test_display_layout_order():
    assert display_layout("All") == ["Sobel", "Prewitt", "Canny"]
    assert display_layout("Prewitt") == ["Prewitt"]


def test_request_rejects_empty_algorithms(diagonal_4x4):
    with pytest.raises(ConfigError):
        DetectionRequest(image=diagonal_4x4, algorithms=frozenset())


# ---------- End-to-end ----------
def test_all_on_diagonal_step(diagonal_4x4):
    result = DetectionService().run(request_for(diagonal_4x4, "All"))
    assert set(result) == ALL
    assert result.names() == {"Sobel", "Prewitt", "Canny"}

    rows, cols = np.indices((4, 4))
    band = (cols - rows >= -1) & (cols - rows <= 2)
    for algorithm, edge_map in result.items():
        assert edge_map.size == (4, 4)
        assert edge_map.algorithm is algorithm
        assert edge_map.values.any()
        assert not edge_map.values[~band].any()
    for algorithm in (Algorithm.SOBEL, Algorithm.PREWITT):
        assert (np.diag(result[algorithm].values) > 0).all()


def test_single_selection_has_one_key(diagonal_4x4):
    result = DetectionService().run(request_for(diagonal_4x4, "Canny"))
    assert list(result) == [Algorithm.CANNY]
    assert "Sobel" not in result
    assert "Prewitt" not in result
    assert result.get("Sobel") is None


def test_uniform_image_gives_blank_maps(uniform):
    result = DetectionService().run(request_for(uniform, "All"))
    assert all(edge_map.is_blank() for edge_map in result.values())


def test_detect_from_bytes(diagonal_png):
    outcome = DetectionService().detect(diagonal_png, "All")
    assert outcome.ok
    assert outcome.reason is None
    images = outcome.result.as_images()
    assert set(images) == {"Sobel", "Prewitt", "Canny"}
    assert all(img.size == (4, 4) for img in images.values())
    assert "decode" in outcome.timings


def test_detect_reports_decode_failure():
    outcome = DetectionService().detect(b"not an image", "All")
    assert not outcome.ok
    assert outcome.result is None
    assert outcome.stage == "decode"
    assert outcome.reason


def test_detect_reports_bad_selection(diagonal_png):
    outcome = DetectionService().detect(diagonal_png, [])
    assert not outcome.ok
    assert outcome.stage == "config"


def test_invalid_canny_thresholds_rejected_up_front():
    with pytest.raises(ConfigError):
        DetectionService(DetectionConfig(canny_low=50, canny_high=50))


# ---------- Shared stages ----------
def test_gradient_computed_once_per_kernel_family(diagonal_4x4, monkeypatch):
    service = DetectionService(DetectionConfig(cache_size=0))
    calls = []
    original = service._convolution.gradient

    def counting(intensity, algorithm):
        calls.append(algorithm)
        return original(intensity, algorithm)

    monkeypatch.setattr(service._convolution, "gradient", counting)
    service.run(request_for(diagonal_4x4, "All"))
    # Sobel и Canny делят одно поле, Prewitt — своё
    assert calls == [Algorithm.SOBEL, Algorithm.PREWITT]


def test_cache_reused_across_selections(diagonal_4x4, vertical_edge, monkeypatch):
    service = DetectionService(DetectionConfig(cache_size=1))
    calls = []
    original = service._convolution.to_intensity

    def counting(image, weights):
        calls.append(image)
        return original(image, weights)

    monkeypatch.setattr(service._convolution, "to_intensity", counting)
    service.run(request_for(diagonal_4x4, "Sobel"))
    service.run(request_for(diagonal_4x4, "Canny"))
    assert len(calls) == 1
    assert service.cached_images == 1

    service.run(request_for(vertical_edge, "Sobel"))
    service.run(request_for(diagonal_4x4, "Sobel"))
    assert len(calls) == 3
    assert service.cached_images == 1


def test_cache_eviction_releases_arrays(diagonal_4x4, vertical_edge):
    service = DetectionService()
    assert service.config.cache_size == 1
    service.run(request_for(diagonal_4x4, "All"))
    entry = service._cache.entry(service._cache_key(diagonal_4x4))
    intensity = weakref.ref(entry["intensity"])
    del entry

    service.run(request_for(vertical_edge, "All"))
    gc.collect()
    assert service.cached_images == 1
    assert intensity() is None


def test_cache_disabled(diagonal_4x4):
    service = DetectionService(DetectionConfig(cache_size=0))
    service.run(request_for(diagonal_4x4, "All"))
    assert service.cached_images == 0


def test_canny_smoothing_uses_separate_gradient(vertical_edge):
    plain = DetectionService().run(request_for(vertical_edge, "All"))
    smoothed = DetectionService(DetectionConfig(canny_sigma=1.0)).run(request_for(vertical_edge, "All"))
    np.testing.assert_array_equal(plain[Algorithm.SOBEL].values, smoothed[Algorithm.SOBEL].values)
    assert smoothed[Algorithm.CANNY].values.any()


# ---------- Failures / cancellation / parallelism ----------
def test_cancelled_before_reducers(diagonal_4x4):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(DetectionCancelled):
        DetectionService().run(request_for(diagonal_4x4, "All"), cancel=cancel)


def test_cancelled_detect_returns_no_partial_result(diagonal_png):
    cancel = threading.Event()
    cancel.set()
    outcome = DetectionService().detect(diagonal_png, "All", cancel=cancel)
    assert not outcome.ok
    assert outcome.result is None
    assert outcome.stage == "cancelled"


def test_numeric_failure_wrapped_with_stage(diagonal_4x4, monkeypatch):
    service = DetectionService()

    def broken(field):
        raise ValueError("boom")

    monkeypatch.setattr(service._reducers[Algorithm.PREWITT], "reduce", broken)
    with pytest.raises(ProcessingError) as info:
        service.run(request_for(diagonal_4x4, "All"))
    assert info.value.stage == "reduce"

    outcome = service.detect(diagonal_4x4, "All")
    assert not outcome.ok
    assert outcome.stage == "reduce"


def test_hashing_failure_is_intensity_stage(diagonal_4x4, monkeypatch):
    service = DetectionService()

    def exhausted(image):
        raise MemoryError("cannot hash pixels")

    monkeypatch.setattr(service, "_cache_key", exhausted)
    with pytest.raises(ProcessingError) as info:
        service.run(request_for(diagonal_4x4, "All"))
    assert info.value.stage == "intensity"

    outcome = service.detect(diagonal_4x4, "All")
    assert not outcome.ok
    assert outcome.stage == "intensity"


def test_background_detection_delivers_outcome(diagonal_png):
    outcomes = []
    thread = DetectionService().detect_in_background(diagonal_png, "Canny", on_done=outcomes.append)
    thread.join(timeout=10)
    assert len(outcomes) == 1
    assert outcomes[0].ok
    assert list(outcomes[0].result) == [Algorithm.CANNY]


def test_background_detection_reports_unexpected_errors(diagonal_4x4, monkeypatch):
    service = DetectionService()

    def broken(field):
        raise RuntimeError("kernel exploded")

    monkeypatch.setattr(service._reducers[Algorithm.SOBEL], "reduce", broken)
    outcomes = []
    service.detect_in_background(diagonal_4x4, "All", on_done=outcomes.append).join(timeout=10)
    assert len(outcomes) == 1
    assert not outcomes[0].ok
    assert outcomes[0].stage == "internal"
    assert "kernel exploded" in outcomes[0].reason


def test_run_many_preserves_order(diagonal_4x4):
    images = [
        diagonal_4x4,
        gray_raster(np.tile(np.arange(0, 250, 25, dtype=np.uint8), (5, 1))),
        gray_raster(np.zeros((3, 6), dtype=np.uint8)),
    ]
    requests = [request_for(image, "All") for image in images]
    results = DetectionService().run_many(requests, max_workers=3)
    assert [r[Algorithm.CANNY].size for r in results] == [(4, 4), (10, 5), (6, 3)]


def test_rgba_png_input(diagonal_4x4):
    from PIL import Image

    pixels = np.dstack([diagonal_4x4.pixels, np.full((4, 4), 255, dtype=np.uint8)])
    outcome = DetectionService().detect(png_bytes(Image.fromarray(pixels)), "Sobel")
    assert outcome.ok
    np.testing.assert_array_equal(
        outcome.result["Sobel"].values,
        DetectionService().run(request_for(diagonal_4x4, "Sobel"))["Sobel"].values,
    )
