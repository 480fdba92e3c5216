"""Tests for urbansnail.calibration.reflectance."""

import math

import numpy as np
import pandas as pd
import pytest

from conftest import CARD_REFLECTANCE, CHANNEL_PARAMS, expected_shell_reflectance
from urbansnail.calibration.curves import CalibrationCurve
from urbansnail.calibration.reflectance import (
    average_with_uncertainty,
    curves_to_frame,
    estimate_reflectance,
    fit_photo_curves,
    samples_from_table,
)
from urbansnail.exceptions import (
    AnalysisError,
    IllPosedFit,
    IncompleteChannels,
    InvalidCurve,
)


class TestAverageWithUncertainty:
    def test_three_channels(self):
        result = average_with_uncertainty([(10.0, 0.3), (12.0, 0.4), (11.0, 0.5)])
        assert result.value == pytest.approx(11.0)
        assert result.sd == pytest.approx(math.sqrt(0.5) / 3, abs=1e-4)
        assert result.sd == pytest.approx(0.2357, abs=1e-4)
        assert result.n_channels == 3

    def test_mapping_input(self):
        result = average_with_uncertainty(
            {"B": (11.0, 0.5), "R": (10.0, 0.3), "G": (12.0, 0.4)}
        )
        assert result.value == pytest.approx(11.0)

    def test_sd_no_larger_than_largest_channel_sd(self):
        result = average_with_uncertainty([(5.0, 1.0), (5.0, 1.0), (5.0, 1.0)])
        assert result.sd == pytest.approx(1 / math.sqrt(3))

    def test_two_channels_incomplete(self):
        with pytest.raises(IncompleteChannels):
            average_with_uncertainty([(10.0, 0.3), (12.0, 0.4)])

    def test_missing_named_channel(self):
        with pytest.raises(IncompleteChannels) as excinfo:
            average_with_uncertainty({"R": (10.0, 0.3), "G": (12.0, 0.4)})
        assert excinfo.value.channel == "B"

    def test_too_many_channels(self):
        with pytest.raises(ValueError):
            average_with_uncertainty([(1.0, 0.1)] * 4)

    def test_undefined_sigma(self):
        with pytest.raises(IncompleteChannels) as excinfo:
            average_with_uncertainty([(10.0, 0.3), (12.0, np.nan), (11.0, 0.5)])
        assert excinfo.value.channel == "G"

    def test_custom_channel_set(self):
        result = average_with_uncertainty([(2.0, 0.6), (4.0, 0.8)], channels=("R", "G"))
        assert result.value == pytest.approx(3.0)
        assert result.sd == pytest.approx(0.5)


class TestSamplesFromTable:
    def test_builds_one_sample_per_card_cell(self, colour_table):
        samples = samples_from_table(colour_table, "P1")
        assert len(samples) == len(CARD_REFLECTANCE)
        assert sorted(s.reflectance for s in samples) == sorted(CARD_REFLECTANCE)

    def test_ignores_specimen_rows(self, colour_table):
        samples = samples_from_table(colour_table, "P2")
        assert all(not math.isnan(s.reflectance) for s in samples)

    def test_missing_columns(self, colour_table):
        with pytest.raises(ValueError, match="mean_pixel"):
            samples_from_table(colour_table.drop(columns="mean_pixel"), "P1")


class TestFitPhotoCurves:
    def test_fits_every_photo_and_channel(self, colour_table):
        curves = fit_photo_curves(colour_table, verbose=False)
        assert set(curves) == {(p, c) for p in ("P1", "P2") for c in "RGB"}
        for (_, channel), curve in curves.items():
            a, b = CHANNEL_PARAMS[channel]
            assert curve.a == pytest.approx(a, rel=1e-4)
            assert curve.b == pytest.approx(b, rel=1e-4)

    def test_raise_mode_names_photo(self, colour_table_with_bad_photo):
        with pytest.raises(IllPosedFit, match="photo=P3") as excinfo:
            fit_photo_curves(colour_table_with_bad_photo, verbose=False)
        assert excinfo.value.channel == "R"

    def test_mark_mode_stores_error(self, colour_table_with_bad_photo):
        curves = fit_photo_curves(
            colour_table_with_bad_photo, on_error="mark", verbose=False
        )
        error = curves[("P3", "R")]
        assert isinstance(error, IllPosedFit)
        assert not isinstance(error, IncompleteChannels)
        assert error.photo == "P3"
        assert "Ill-posed fit" in str(error)
        assert isinstance(curves[("P1", "R")], CalibrationCurve)

    def test_invalid_on_error(self, colour_table):
        with pytest.raises(ValueError, match="on_error"):
            fit_photo_curves(colour_table, on_error="ignore", verbose=False)

    def test_curves_to_frame_skips_errors(self, colour_table_with_bad_photo):
        curves = fit_photo_curves(
            colour_table_with_bad_photo, on_error="mark", verbose=False
        )
        frame = curves_to_frame(curves)
        assert len(frame) == 6
        assert "P3" not in set(frame["photo"])


class TestEstimateReflectance:
    def test_batch_matches_noiseless_prediction(self, colour_table):
        result = estimate_reflectance(colour_table, verbose=False)
        assert list(result["individual"]) == ["S1", "S2"]
        assert result["valid"].all()
        np.testing.assert_allclose(
            result["reflectance"], expected_shell_reflectance(), rtol=1e-4
        )
        np.testing.assert_allclose(result["reflectance_sd"], 0.0, atol=1e-4)

    def test_mark_mode_flags_bad_photo(self, colour_table_with_bad_photo):
        result = estimate_reflectance(
            colour_table_with_bad_photo, on_error="mark", verbose=False
        )
        bad = result.set_index("photo").loc["P3"]
        assert not bad["valid"]
        assert math.isnan(bad["reflectance"])
        assert "S3" in bad["error"]
        assert result.set_index("photo").loc[["P1", "P2"], "valid"].all()

    def test_raise_mode_stops_on_bad_photo(self, colour_table_with_bad_photo):
        with pytest.raises(ValueError):
            estimate_reflectance(colour_table_with_bad_photo, verbose=False)

    def test_missing_shell_channel_is_incomplete(self, colour_table):
        df = colour_table[
            ~((colour_table["photo"] == "P2") & (colour_table["region"] == "shell")
              & (colour_table["channel"] == "B"))
        ]
        with pytest.raises(IncompleteChannels) as excinfo:
            estimate_reflectance(df, verbose=False)
        assert excinfo.value.photo == "P2"
        assert excinfo.value.individual == "S2"

    def test_invalid_curve_is_reported(self, colour_table):
        curves = fit_photo_curves(colour_table, verbose=False)
        curves[("P1", "G")] = CalibrationCurve(
            a=np.nan, b=0.01, sigma=0.1, correlation=np.nan, channel="G",
            n_samples=9, photo="P1",
        )
        result = estimate_reflectance(
            colour_table, curves=curves, on_error="mark", verbose=False
        )
        assert list(result["valid"]) == [False, True]
        with pytest.raises(InvalidCurve):
            estimate_reflectance(colour_table, curves=curves, verbose=False)

    def test_duplicate_shell_reading(self, colour_table):
        shell = colour_table[colour_table["region"] == "shell"].head(1)
        with pytest.raises(ValueError, match="More than one"):
            estimate_reflectance(pd.concat([colour_table, shell]), verbose=False)

    def test_requires_individual_column(self, colour_table):
        with pytest.raises(ValueError, match="individual"):
            estimate_reflectance(colour_table.drop(columns="individual"), verbose=False)

    def test_errors_share_base_class(self, colour_table_with_bad_photo):
        result = estimate_reflectance(
            colour_table_with_bad_photo, on_error="mark", verbose=False
        )
        assert issubclass(IncompleteChannels, AnalysisError)
        assert "Ill-posed fit" in result.loc[result["photo"] == "P3", "error"].item()
        assert (~result["valid"]).sum() == 1
