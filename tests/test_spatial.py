"""Tests for urbansnail.processing.spatial."""

import numpy as np
import pandas as pd
import pytest

from urbansnail.processing.spatial import (
    correlogram,
    distance_breaks,
    distance_matrix,
    morans_i,
    project_sites,
    site_residuals,
)

LINE_COORDS = np.array([[0.0, 0.0], [1.0, 0.0], [10.0, 0.0], [11.0, 0.0]])
CLUSTERED = [1.0, 1.0, -1.0, -1.0]


class TestMoransI:
    def test_perfect_positive_autocorrelation(self):
        weights = np.array(
            [[0, 1, 0, 0], [1, 0, 0, 0], [0, 0, 0, 1], [0, 0, 1, 0]], dtype=float
        )
        assert morans_i(CLUSTERED, weights) == pytest.approx(1.0)

    def test_constant_values(self):
        assert np.isnan(morans_i([2.0, 2.0, 2.0], np.ones((3, 3)) - np.eye(3)))

    def test_no_neighbours(self):
        assert np.isnan(morans_i([1.0, 2.0, 3.0], np.zeros((3, 3))))

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            morans_i([1.0, 2.0, 3.0], np.zeros((2, 2)))


class TestCorrelogram:
    def test_distance_classes(self):
        result = correlogram(
            CLUSTERED, LINE_COORDS, breaks=[0, 2, 20], n_permutations=0
        )
        assert len(result) == 2
        assert result.loc[0, "morans_i"] == pytest.approx(1.0)
        assert result.loc[1, "morans_i"] == pytest.approx(-1.0)
        assert list(result["n_pairs"]) == [2, 4]
        assert result.loc[0, "mean_distance"] == pytest.approx(1.0)
        assert result.loc[0, "expected"] == pytest.approx(-1 / 3)
        assert result["p_value"].isna().all()

    def test_permutation_p_value(self):
        result = correlogram(
            CLUSTERED, LINE_COORDS, breaks=[0, 2, 20], n_permutations=99, random_seed=1
        )
        assert ((result["p_value"] > 0) & (result["p_value"] <= 1)).all()

    def test_reproducible(self):
        kwargs = dict(breaks=[0, 2, 20], n_permutations=49, random_seed=7)
        first = correlogram(CLUSTERED, LINE_COORDS, **kwargs)
        second = correlogram(CLUSTERED, LINE_COORDS, **kwargs)
        pd.testing.assert_frame_equal(first, second)

    def test_empty_class(self):
        result = correlogram(
            CLUSTERED, LINE_COORDS, breaks=[0, 2, 5, 20], n_permutations=0
        )
        assert result.loc[1, "n_pairs"] == 0
        assert np.isnan(result.loc[1, "morans_i"])

    def test_default_breaks_cover_all_pairs(self):
        result = correlogram(CLUSTERED, LINE_COORDS, n_classes=3, n_permutations=0)
        assert result["n_pairs"].sum() == 6

    def test_too_few_locations(self):
        with pytest.raises(ValueError, match="At least 3"):
            correlogram([1.0, 2.0], LINE_COORDS[:2])

    def test_missing_values(self):
        with pytest.raises(ValueError, match="missing"):
            correlogram([1.0, np.nan, 0.0, 2.0], LINE_COORDS)


class TestGeometry:
    def test_distance_matrix(self):
        d = distance_matrix(LINE_COORDS)
        assert d.shape == (4, 4)
        assert d[0, 3] == pytest.approx(11.0)
        np.testing.assert_array_equal(np.diag(d), 0.0)

    def test_breaks_include_largest_distance(self):
        d = distance_matrix(LINE_COORDS)
        breaks = distance_breaks(d, n_classes=4)
        assert len(breaks) == 5
        assert breaks[0] == 0
        assert breaks[-1] > 11.0

    def test_project_sites_in_metres(self, site_table):
        coords = project_sites(site_table)
        assert coords.shape == (4, 2)
        d = distance_matrix(coords)
        # sites A and B are a few kilometres apart
        assert 1_000 < d[0, 1] < 10_000


class TestSiteResiduals:
    def test_averages_per_site(self, site_table):
        df = pd.DataFrame(
            {
                "site": ["A", "A", "B", "C"],
                "observed": [2.0, 4.0, 1.0, np.nan],
                "predicted": [2.5, 2.5, 1.0, 1.0],
            }
        ).merge(site_table, on="site")
        result = site_residuals(df, "observed", "predicted").set_index("site")
        assert list(result.index) == ["A", "B"]
        assert result.loc["A", "residual"] == pytest.approx(0.5)
        assert result.loc["A", "n"] == 2
        assert result.loc["B", "lon"] == pytest.approx(4.40)
