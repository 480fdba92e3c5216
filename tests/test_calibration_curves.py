"""Tests for urbansnail.calibration.curves."""

import math

import numpy as np
import pytest

from urbansnail.calibration.curves import (
    CalibrationCurve,
    CalibrationSample,
    exponential,
    fit_channel_curve,
    fit_curve,
    predict,
)
from urbansnail.exceptions import FitDivergence, IllPosedFit, InvalidCurve

PIXELS = np.array([20.0, 45.0, 70.0, 95.0, 120.0, 145.0, 170.0, 195.0])


def noiseless(a=7.0, b=0.015, pixels=PIXELS):
    return pixels, exponential(pixels, a, b)


class TestFitCurve:
    def test_recovers_known_parameters(self):
        x, y = noiseless()
        curve = fit_curve(x, y, "G")
        assert curve.a == pytest.approx(7.0, rel=1e-4)
        assert curve.b == pytest.approx(0.015, rel=1e-4)
        assert curve.sigma == pytest.approx(0.0, abs=1e-6)
        assert curve.correlation == pytest.approx(1.0)
        assert curve.n_samples == len(x)
        assert curve.channel == "G"

    def test_sigma_is_residual_sd(self):
        x, y = noiseless()
        noise = np.tile([0.4, -0.4], len(x) // 2)
        curve = fit_curve(x, y + noise, "R")
        fitted = exponential(x, curve.a, curve.b)
        expected = math.sqrt(np.sum((y + noise - fitted) ** 2) / (len(x) - 2))
        assert curve.sigma == pytest.approx(expected)
        assert curve.sigma > 0

    def test_two_points_give_undefined_sigma(self):
        x, y = noiseless(pixels=np.array([50.0, 150.0]))
        curve = fit_curve(x, y, "B")
        assert curve.is_finite
        assert math.isnan(curve.sigma)

    def test_iteration_cap_raises_fit_divergence(self):
        x, y = noiseless()
        with pytest.raises(FitDivergence) as excinfo:
            fit_curve(x, y, "R", photo="IMG_001", max_iter=1)
        assert excinfo.value.photo == "IMG_001"
        assert excinfo.value.channel == "R"
        assert "IMG_001" in str(excinfo.value)

    def test_rejects_single_distinct_pixel(self):
        with pytest.raises(IllPosedFit, match="distinct") as excinfo:
            fit_curve([100.0, 100.0, 100.0], [10.0, 11.0, 12.0], "R", photo="P7")
        assert excinfo.value.photo == "P7"
        assert isinstance(excinfo.value, ValueError)

    def test_rejects_length_mismatch(self):
        with pytest.raises(ValueError):
            fit_curve([1.0, 2.0, 3.0], [1.0, 2.0], "R")

    def test_rejects_missing_values(self):
        with pytest.raises(ValueError, match="non-finite"):
            fit_curve([10.0, np.nan, 30.0], [1.0, 2.0, 3.0], "R")


class TestFitChannelCurve:
    def test_picks_requested_channel(self):
        samples = [
            CalibrationSample(red=p, green=p + 10, blue=p + 20, reflectance=float(r))
            for p, r in zip(*noiseless())
        ]
        red = fit_channel_curve(samples, "R", photo="P1")
        blue = fit_channel_curve(samples, "B", photo="P1")
        assert red.b == pytest.approx(0.015, rel=1e-4)
        assert blue.b == pytest.approx(0.015, rel=1e-4)
        assert blue.a < red.a
        assert red.photo == "P1"

    def test_empty_samples(self):
        with pytest.raises(IllPosedFit):
            fit_channel_curve([], "R")

    def test_unknown_channel(self):
        sample = CalibrationSample(red=1.0, green=2.0, blue=3.0, reflectance=5.0)
        with pytest.raises(ValueError, match="Unknown channel"):
            sample.intensity("UV")


class TestPredict:
    def test_scalar_prediction(self):
        curve = CalibrationCurve(
            a=2.0, b=0.01, sigma=0.3, correlation=0.99, channel="R", n_samples=9
        )
        value, sigma = predict(curve, 100.0)
        assert value == pytest.approx(2.0 * math.e)
        assert sigma == 0.3
        assert isinstance(value, float)

    def test_array_prediction(self):
        curve = CalibrationCurve(
            a=1.0, b=0.0, sigma=0.1, correlation=np.nan, channel="G", n_samples=3
        )
        value, _ = curve.predict(np.array([0.0, 50.0, 255.0]))
        np.testing.assert_allclose(value, [1.0, 1.0, 1.0])

    def test_extrapolates_without_clamping(self):
        x, y = noiseless()
        curve = fit_curve(x, y, "R")
        value, _ = predict(curve, 0.0)
        assert value == pytest.approx(7.0, rel=1e-3)
        assert value < y.min()

    @pytest.mark.parametrize("a, b", [(np.nan, 0.01), (2.0, np.inf)])
    def test_non_finite_curve_raises(self, a, b):
        curve = CalibrationCurve(
            a=a, b=b, sigma=0.1, correlation=np.nan, channel="B", n_samples=5, photo="P9"
        )
        assert not curve.is_finite
        with pytest.raises(InvalidCurve) as excinfo:
            predict(curve, 100.0)
        assert excinfo.value.photo == "P9"
        assert excinfo.value.channel == "B"
