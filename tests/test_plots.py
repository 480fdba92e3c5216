"""Smoke tests for urbansnail.plots and urbansnail.utils."""

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from urbansnail.calibration import estimate_reflectance, fit_photo_curves
from urbansnail.plots import PAPER_CONFIG, PlotConfig, plot_utils
from urbansnail.transforms import BoundedProportionTransform
from urbansnail.utils import create_output_dir_path, sanitize_filename


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


class TestPlotConfig:
    def test_update_returns_new_instance(self):
        updated = PAPER_CONFIG.update(title="Food intake")
        assert updated.title == "Food intake"
        assert PAPER_CONFIG.title is None

    def test_override_skips_none(self):
        config = plot_utils.override_config_with_kwargs(
            PlotConfig(xlabel="x"), xlabel=None, ylabel="y"
        )
        assert config.xlabel == "x"
        assert config.ylabel == "y"

    def test_copy(self):
        assert PAPER_CONFIG.copy() == PAPER_CONFIG


class TestFigures:
    def test_calibration_curves(self, colour_table, tmp_path):
        curves = fit_photo_curves(colour_table, verbose=False)
        fig = plot_utils.plot_calibration_curves(
            colour_table, curves, "P1", tmp_path / "cal" / "p1.png"
        )
        assert (tmp_path / "cal" / "p1.png").exists()
        assert len(fig.axes[0].get_lines()) == 3

    def test_reflectance_uncertainty(self, colour_table):
        reflectance = estimate_reflectance(colour_table, verbose=False)
        fig = plot_utils.plot_reflectance_uncertainty(reflectance)
        assert fig.axes[0].get_xlabel() == "Reflectance (%)"

    def test_proportion_predictions_back_transformed(self):
        transform = BoundedProportionTransform(10)
        x = np.linspace(0, 1, 5)
        draws = np.full((20, 5), transform.transform(0.3))
        fig = plot_utils.plot_proportion_predictions(x, draws, transform)
        median = fig.axes[0].get_lines()[0].get_ydata()
        np.testing.assert_allclose(median, 0.3)

    def test_correlogram(self):
        corr = pd.DataFrame(
            {
                "mean_distance": [1000.0, 5000.0, np.nan],
                "morans_i": [0.4, -0.2, np.nan],
                "expected": [-0.25] * 3,
                "p_value": [0.01, 0.6, np.nan],
            }
        )
        fig = plot_utils.plot_correlogram(corr)
        assert fig.axes[0].get_ylabel() == "Moran's I"

    def test_correlation_matrix(self, tmp_path):
        corr = pd.DataFrame(
            [[1.0, -0.4], [-0.4, 1.0]], index=["a", "b"], columns=["a", "b"]
        )
        plot_utils.plot_correlation_matrix(corr, tmp_path / "corr.png")
        assert (tmp_path / "corr.png").exists()


class TestUtils:
    @pytest.mark.parametrize(
        "name, expected",
        [("IMG 001 (2).jpg", "img_001_2_.jpg"), ("a/b\\c", "a_b_c"), (42, "42")],
    )
    def test_sanitize_filename(self, name, expected):
        assert sanitize_filename(name) == expected

    def test_output_dir_created(self, tmp_path):
        path = create_output_dir_path(tmp_path, prefix="test")
        assert path.is_dir()
        assert path.name.startswith("test_")
