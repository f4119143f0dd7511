import numpy as np
import pytest

from conftest import gray_raster
from edgescope.models.errors import ConfigError, ProcessingError
from edgescope.models.image_model import Algorithm, IntensityBuffer, RasterImage
from edgescope.services.convolution_service import (
    PREWITT_X,
    PREWITT_Y,
    SOBEL_X,
    SOBEL_Y,
    ConvolutionService,
    gaussian_kernel,
    kernel_family,
)


def test_luminance_weights_ignore_alpha():
    pixels = np.zeros((1, 3, 4), dtype=np.uint8)
    pixels[0, 0] = (255, 0, 0, 10)
    pixels[0, 1] = (0, 255, 0, 255)
    pixels[0, 2] = (0, 0, 255, 0)
    intensity = ConvolutionService().to_intensity(RasterImage(pixels, mode="RGBA"))
    np.testing.assert_allclose(intensity.values[0], [0.299 * 255, 0.587 * 255, 0.114 * 255])


def test_intensity_is_read_only(uniform):
    intensity = ConvolutionService().to_intensity(uniform)
    assert intensity.shape == (6, 7)
    with pytest.raises(ValueError):
        intensity.values[0, 0] = 1.0


def test_uniform_image_has_zero_gradient(uniform):
    service = ConvolutionService("replicate")
    field = service.gradient(service.to_intensity(uniform), Algorithm.SOBEL)
    assert field.shape == (6, 7)
    assert not field.magnitude.any()


@pytest.mark.parametrize(
    "kernels, peak",
    [((SOBEL_X, SOBEL_Y), 4 * 255), ((PREWITT_X, PREWITT_Y), 3 * 255)],
)
def test_vertical_edge_peaks_on_boundary_columns(vertical_edge, kernels, peak):
    service = ConvolutionService()
    field = service.convolve(service.to_intensity(vertical_edge), *kernels)
    mag = field.magnitude
    np.testing.assert_allclose(mag[:, 3], peak)
    np.testing.assert_allclose(mag[:, 4], peak)
    assert not mag[:, [0, 1, 2, 5, 6, 7]].any()
    # положительный Gx — рост яркости вправо
    assert (field.gx[:, 3] > 0).all()
    assert not field.gy.any()


def test_kernels_applied_without_flipping(vertical_edge):
    service = ConvolutionService()
    field = service.gradient(service.to_intensity(vertical_edge), Algorithm.SOBEL)
    np.testing.assert_allclose(field.direction[:, 3], 0.0)

    # яркость растёт вниз: Gy > 0, направление π/2
    horizontal = gray_raster(vertical_edge.pixels[..., 0].T)
    field = service.gradient(service.to_intensity(horizontal), Algorithm.SOBEL)
    assert (field.gy[3] > 0).all()
    np.testing.assert_allclose(field.direction[3], np.pi / 2)

    # перевёрнутое ядро (классическая свёртка) даёт тот же модуль и обратный знак
    flipped = service.convolve(service.to_intensity(horizontal), SOBEL_X[::-1, ::-1], SOBEL_Y[::-1, ::-1])
    np.testing.assert_allclose(flipped.gy, -field.gy)
    np.testing.assert_allclose(flipped.magnitude, field.magnitude)


def test_zero_border_policy_clears_frame():
    arr = np.random.default_rng(0).integers(0, 256, size=(5, 6))
    service = ConvolutionService("zero")
    field = service.gradient(service.to_intensity(gray_raster(arr)), Algorithm.PREWITT)
    mag = field.magnitude
    assert field.border == "zero"
    assert not mag[0].any() and not mag[-1].any()
    assert not mag[:, 0].any() and not mag[:, -1].any()
    assert mag[1:-1, 1:-1].any()


def test_unknown_border_policy():
    with pytest.raises(ConfigError):
        ConvolutionService("wrap")


def test_even_kernel_rejected(uniform):
    service = ConvolutionService()
    with pytest.raises(ConfigError):
        service.filter2d(service.to_intensity(uniform).values, np.ones((2, 2)))


def test_mismatched_kernel_pair_rejected(uniform):
    service = ConvolutionService()
    with pytest.raises(ConfigError):
        service.convolve(service.to_intensity(uniform), SOBEL_X, np.ones((5, 5)))


def test_empty_buffer_is_processing_error():
    with pytest.raises(ProcessingError):
        ConvolutionService().filter2d(np.zeros((0, 3)), SOBEL_X)
    with pytest.raises(ProcessingError):
        IntensityBuffer(np.zeros((0, 0)))


def test_canny_uses_sobel_kernels():
    assert kernel_family(Algorithm.CANNY) == "Sobel"
    assert kernel_family(Algorithm.PREWITT) == "Prewitt"


def test_gaussian_kernel_normalized():
    kernel = gaussian_kernel(5, 1.0)
    assert kernel.shape == (5, 5)
    assert kernel.sum() == pytest.approx(1.0)
    assert kernel[2, 2] == kernel.max()
    with pytest.raises(ConfigError):
        gaussian_kernel(4, 1.0)


def test_smoothing_keeps_uniform_image(uniform):
    service = ConvolutionService("zero")
    intensity = service.to_intensity(uniform)
    smoothed = service.smooth(intensity, sigma=1.2)
    np.testing.assert_allclose(smoothed.values, intensity.values)
    assert service.smooth(intensity, sigma=0) is intensity
