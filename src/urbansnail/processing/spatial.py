"""
Residual spatial autocorrelation between sampling sites.

Model residuals are averaged per site and tested for spatial structure with
a Moran's I correlogram: for each distance class, sites whose pairwise
distance falls in the class are neighbours (binary weights), and Moran's I
is compared against its expectation -1/(N-1) with a permutation test.
"""

from typing import Optional, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from tqdm import tqdm

from urbansnail import config


def project_sites(
    df: pd.DataFrame,
    lon_col: str = "lon",
    lat_col: str = "lat",
    crs: str = config.SITE_CRS,
    projected_crs: str = config.PROJECTED_CRS,
) -> np.ndarray:
    """
    Project site coordinates to a metric CRS.

    Parameters
    ----------
    df : pd.DataFrame
        Table with longitude and latitude columns
    lon_col, lat_col : str
        Coordinate column names
    crs : str
        CRS of the input coordinates
    projected_crs : str
        Target CRS, in metres

    Returns
    -------
    np.ndarray
        (n, 2) array of projected x, y
    """
    points = gpd.GeoDataFrame(
        df[[lon_col, lat_col]].copy(),
        geometry=gpd.points_from_xy(df[lon_col], df[lat_col]),
        crs=crs,
    ).to_crs(projected_crs)
    return np.column_stack([points.geometry.x.values, points.geometry.y.values])


def distance_matrix(coords: np.ndarray) -> np.ndarray:
    """Euclidean pairwise distances between rows of coords."""
    coords = np.asarray(coords, dtype=float)
    if coords.ndim != 2:
        raise ValueError(f"coords must be 2-D, got shape {coords.shape}")
    return squareform(pdist(coords))


def morans_i(values: Sequence[float], weights: np.ndarray) -> float:
    """
    Global Moran's I.

    I = (N / W) * sum_ij w_ij z_i z_j / sum_i z_i^2, with z the deviations
    from the mean and W the sum of all weights.

    Returns NaN when there are no neighbour pairs or the values are constant.
    """
    x = np.asarray(values, dtype=float)
    w = np.asarray(weights, dtype=float)
    if w.shape != (len(x), len(x)):
        raise ValueError(
            f"weights must be ({len(x)}, {len(x)}), got {w.shape}"
        )

    z = x - x.mean()
    total_weight = w.sum()
    denominator = np.sum(z**2)
    if total_weight == 0 or denominator == 0:
        return float("nan")

    return float(len(x) / total_weight * (z @ w @ z) / denominator)


def distance_breaks(distances: np.ndarray, n_classes: int = 5) -> np.ndarray:
    """Equal-width class edges from 0 to the largest pairwise distance."""
    upper = distances[np.triu_indices_from(distances, k=1)].max()
    breaks = np.linspace(0, upper, n_classes + 1)
    # include the largest distance in the last class
    breaks[-1] = np.nextafter(upper, np.inf)
    return breaks


def correlogram(
    values: Sequence[float],
    coords: np.ndarray,
    n_classes: int = 5,
    breaks: Optional[Sequence[float]] = None,
    n_permutations: int = 999,
    random_seed: int = 42,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Moran's I correlogram over distance classes.

    Parameters
    ----------
    values : array-like
        One value per location (e.g. site-mean residual)
    coords : np.ndarray
        (n, 2) projected coordinates
    n_classes : int
        Number of equal-width distance classes, used when breaks is None
    breaks : sequence of float, optional
        Class edges; class k holds pairs with breaks[k] <= d < breaks[k+1]
    n_permutations : int
        Permutations for the p-value. 0 disables the test.
    random_seed : int
        Seed for the permutations
    verbose : bool
        Show a progress bar over classes

    Returns
    -------
    pd.DataFrame
        lower, upper, mean_distance, n_pairs, morans_i, expected, p_value
    """
    x = np.asarray(values, dtype=float)
    if len(x) < 3:
        raise ValueError(f"At least 3 locations are needed, got {len(x)}")
    if np.isnan(x).any():
        raise ValueError("values contain missing entries")

    distances = distance_matrix(coords)
    if len(distances) != len(x):
        raise ValueError("values and coords must have the same length")

    if breaks is None:
        breaks = distance_breaks(distances, n_classes)
    breaks = np.asarray(breaks, dtype=float)

    rng = np.random.default_rng(random_seed)
    expected = -1.0 / (len(x) - 1)
    off_diagonal = ~np.eye(len(x), dtype=bool)

    rows = []
    for lower, upper in tqdm(
        zip(breaks[:-1], breaks[1:]),
        total=len(breaks) - 1,
        desc="Correlogram",
        disable=not verbose,
    ):
        weights = ((distances >= lower) & (distances < upper) & off_diagonal).astype(float)
        n_pairs = int(weights.sum() // 2)
        observed = morans_i(x, weights)

        p_value = np.nan
        if n_permutations > 0 and np.isfinite(observed):
            permuted = np.array(
                [morans_i(rng.permutation(x), weights) for _ in range(n_permutations)]
            )
            extreme = np.sum(np.abs(permuted - expected) >= abs(observed - expected))
            p_value = (extreme + 1) / (n_permutations + 1)

        rows.append(
            {
                "lower": lower,
                "upper": upper,
                "mean_distance": distances[weights.astype(bool)].mean()
                if n_pairs
                else np.nan,
                "n_pairs": n_pairs,
                "morans_i": observed,
                "expected": expected,
                "p_value": p_value,
            }
        )

    return pd.DataFrame(rows)


def site_residuals(
    df: pd.DataFrame,
    observed: str,
    predicted: str,
    site_col: str = "site",
    lon_col: str = "lon",
    lat_col: str = "lat",
) -> pd.DataFrame:
    """
    Average residuals (observed - predicted) per site.

    Parameters
    ----------
    df : pd.DataFrame
        Individual-level table with observed and predicted columns and site coordinates
    observed, predicted : str
        Column names

    Returns
    -------
    pd.DataFrame
        site, lon, lat, residual, n
    """
    work = df[[site_col, lon_col, lat_col, observed, predicted]].dropna()
    work = work.assign(residual=work[observed] - work[predicted])
    return (
        work.groupby(site_col)
        .agg(
            lon=(lon_col, "first"),
            lat=(lat_col, "first"),
            residual=("residual", "mean"),
            n=("residual", "count"),
        )
        .reset_index()
    )
