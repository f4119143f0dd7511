import numpy as np
import pytest

from edgescope.models.errors import ConfigError, DecodeError, ProcessingError
from edgescope.models.image_model import (
    Algorithm,
    DetectionOutcome,
    DetectionResult,
    EdgeMap,
    GradientField,
    RasterImage,
)


def test_algorithm_parse():
    assert Algorithm.parse("sobel") is Algorithm.SOBEL
    assert Algorithm.parse(" Canny ") is Algorithm.CANNY
    assert Algorithm.parse(Algorithm.PREWITT) is Algorithm.PREWITT
    with pytest.raises(ConfigError):
        Algorithm.parse("All")


@pytest.mark.parametrize("shape", [(4, 4), (4, 4, 2), (0, 4, 3)])
def test_raster_image_validates_shape(shape):
    with pytest.raises(ProcessingError):
        RasterImage(np.zeros(shape, dtype=np.uint8))


def test_raster_image_copies_input():
    src = np.zeros((2, 3, 3), dtype=np.uint8)
    raster = RasterImage(src)
    src[0, 0, 0] = 99
    assert raster.pixels[0, 0, 0] == 0
    assert raster.size == (3, 2)
    assert raster.to_pil().size == (3, 2)


def test_gradient_field_derived_values():
    field = GradientField(gx=np.array([[3.0, 0.0]]), gy=np.array([[4.0, -2.0]]))
    np.testing.assert_allclose(field.magnitude, [[5.0, 2.0]])
    np.testing.assert_allclose(field.direction, [[np.arctan2(4, 3), -np.pi / 2]])
    with pytest.raises(ProcessingError):
        GradientField(gx=np.zeros((2, 2)), gy=np.zeros((2, 3)))


def test_detection_result_is_read_only_mapping():
    edge_map = EdgeMap(values=np.zeros((2, 2)), algorithm=Algorithm.SOBEL)
    result = DetectionResult({Algorithm.SOBEL: edge_map})
    assert result["Sobel"] is edge_map
    assert len(result) == 1
    with pytest.raises(KeyError):
        result["Canny"]
    with pytest.raises(TypeError):
        result._edge_maps[Algorithm.CANNY] = edge_map  # type: ignore[index]
    assert set(result.as_images()) == {"Sobel"}


def test_outcome_factories():
    ok = DetectionOutcome.success(DetectionResult({}), {"decode": 0.1})
    assert ok.ok and ok.timings["decode"] == 0.1
    failed = DetectionOutcome.failure("bad bytes", stage="decode")
    assert not failed.ok and failed.result is None and failed.stage == "decode"


def test_error_stage_defaults():
    assert DecodeError("x").stage == "decode"
    assert ConfigError("x").stage == "config"
    assert ProcessingError("x", stage="convolution").stage == "convolution"
    assert str(ConfigError("bad")) == "[config] bad"
