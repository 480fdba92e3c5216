"""
Loading, cleaning and joining of the snail, site and colour tables.

Covariates are standardized once on the full dataset; the resulting
statistics are kept in an immutable StandardizationStats object and reused
for every later prediction instead of being recomputed.
"""

import warnings
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

import numpy as np
import pandas as pd

from urbansnail import config
from urbansnail.exceptions import DomainError

REQUIRED_SITE_COLUMNS = ["site", "lon", "lat", config.URBANIZATION_COLUMN]
REQUIRED_SNAIL_COLUMNS = ["individual", "site"]

# =============================================================================
# DATA LOADING
# =============================================================================


def _read_table(filepath: Path, required: list[str]) -> pd.DataFrame:
    df = pd.read_csv(filepath).rename(columns=str.lower)
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns in {filepath}: {missing}")
    return df


def load_site_data(filepath: Optional[Path] = None) -> pd.DataFrame:
    """
    Load site coordinates and urbanization covariates.

    Parameters
    ----------
    filepath : Path, optional
        Path to sites.csv. If None, uses default location.

    Returns
    -------
    pd.DataFrame
        One row per site
    """
    if filepath is None:
        filepath = config.site_data_path
    df = _read_table(filepath, REQUIRED_SITE_COLUMNS)
    df["site"] = df["site"].astype(str)
    if df["site"].duplicated().any():
        raise ValueError(f"Duplicate site identifiers in {filepath}")
    return df


def load_snail_data(filepath: Optional[Path] = None) -> pd.DataFrame:
    """
    Load individual snail measurements.

    Parameters
    ----------
    filepath : Path, optional
        Path to snails.csv. If None, uses default location.

    Returns
    -------
    pd.DataFrame
        One row per individual
    """
    if filepath is None:
        filepath = config.snail_data_path
    df = _read_table(filepath, REQUIRED_SNAIL_COLUMNS)
    df["site"] = df["site"].astype(str)
    df["individual"] = df["individual"].astype(str)
    return df


def load_colour_data(filepath: Optional[Path] = None) -> pd.DataFrame:
    """
    Load the long-format colour table (one row per photo, region and channel).

    Parameters
    ----------
    filepath : Path, optional
        Path to colour.csv. If None, uses default location.

    Returns
    -------
    pd.DataFrame
        Colour table with upper-case channel labels
    """
    if filepath is None:
        filepath = config.colour_data_path
    df = _read_table(filepath, config.REQUIRED_COLOUR_COLUMNS)
    df["photo"] = df["photo"].astype(str)
    df["channel"] = df["channel"].astype(str).str.upper()
    if "individual" in df.columns:
        df["individual"] = df["individual"].astype("string")
    return df


# =============================================================================
# CLEANING
# =============================================================================


def clean_snail_data(df: pd.DataFrame) -> pd.DataFrame:
    """
    Remove unusable rows and derive model responses.

    Adds food_proportion (food_consumed / food_offered) and log_speed.
    Proportions outside [0, 1] indicate an entry or unit error and are
    rejected rather than clamped.

    Parameters
    ----------
    df : pd.DataFrame
        Raw snail data

    Returns
    -------
    pd.DataFrame
        Cleaned data

    Raises
    ------
    DomainError
        If any food proportion lies outside [0, 1]
    """
    df = df.copy()
    df.rename(columns=str.lower, inplace=True)

    df = df[df["individual"].notna() & df["site"].notna()]
    if df["individual"].duplicated().any():
        dupes = sorted(df.loc[df["individual"].duplicated(), "individual"].unique())
        raise ValueError(f"Duplicate individuals: {dupes}")

    if {"food_consumed", "food_offered"} <= set(df.columns):
        with np.errstate(divide="ignore", invalid="ignore"):
            proportion = df["food_consumed"] / df["food_offered"]
        proportion = proportion.where(df["food_offered"] > 0)
        bad = proportion.notna() & ((proportion < 0) | (proportion > 1))
        if bad.any():
            rows = [str(i) for i in df.loc[bad, "individual"]]
            raise DomainError(
                f"Food proportion outside [0, 1] for individual(s) {rows}",
                individual=",".join(rows),
            )
        df["food_proportion"] = proportion

    if "speed" in df.columns:
        speed = df["speed"].where(df["speed"] > 0)
        n_dropped = int(df["speed"].notna().sum() - speed.notna().sum())
        if n_dropped:
            warnings.warn(f"{n_dropped} non-positive speed value(s) set to missing")
        df["log_speed"] = np.log(speed)

    return df.reset_index(drop=True)


# =============================================================================
# STANDARDIZATION
# =============================================================================


@dataclass(frozen=True)
class StandardizationStats:
    """
    Mean and standard deviation of each standardized column.

    Computed once on the full dataset and passed explicitly to anything that
    needs to put new covariate values on the model scale.
    """

    stats: Mapping[str, tuple[float, float]]

    def __post_init__(self):
        object.__setattr__(
            self,
            "stats",
            MappingProxyType(
                {k: (float(m), float(s)) for k, (m, s) in dict(self.stats).items()}
            ),
        )

    def __contains__(self, column: str) -> bool:
        return column in self.stats

    def __getitem__(self, column: str) -> tuple[float, float]:
        return self.stats[column]

    def standardize(self, column: str, values):
        mean_val, std_val = self.stats[column]
        return (values - mean_val) / std_val

    def unstandardize(self, column: str, values):
        mean_val, std_val = self.stats[column]
        return values * std_val + mean_val

    def apply(self, df: pd.DataFrame) -> pd.DataFrame:
        """Add <col>_stzd columns for every known column present in df."""
        df = df.copy()
        for col in self.stats:
            if col in df.columns:
                df[f"{col}_stzd"] = self.standardize(col, df[col])
        return df

    def to_dict(self) -> dict[str, tuple[float, float]]:
        return dict(self.stats)


def standardize_variables(
    df: pd.DataFrame, columns: list[str]
) -> tuple[pd.DataFrame, StandardizationStats]:
    """
    Standardize explanatory variables (zero mean, unit variance).

    Parameters
    ----------
    df : pd.DataFrame
        Data with variables to standardize
    columns : list of str
        Column names to standardize

    Returns
    -------
    pd.DataFrame
        Data with standardized columns
    StandardizationStats
        (mean, std) for each column for later un-standardization
    """
    stats_dict = {}
    for col in columns:
        if col not in df.columns:
            warnings.warn(f"Column '{col}' not found, not standardized")
            continue
        mean_val = df[col].dropna().mean()
        std_val = df[col].dropna().std()
        if not np.isfinite(std_val) or std_val == 0:
            raise ValueError(f"Cannot standardize '{col}': standard deviation is {std_val}")
        stats_dict[col] = (mean_val, std_val)

    stats = StandardizationStats(stats_dict)
    return stats.apply(df), stats


# =============================================================================
# JOINS AND INDICES
# =============================================================================


def build_model_table(
    snails: pd.DataFrame,
    sites: pd.DataFrame,
    reflectance: Optional[pd.DataFrame] = None,
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Join individuals to their site covariates and reflectance estimates.

    Only valid reflectance estimates are joined; individuals whose estimate
    was marked invalid keep missing reflectance.

    Parameters
    ----------
    snails : pd.DataFrame
        Cleaned snail data
    sites : pd.DataFrame
        Site data
    reflectance : pd.DataFrame, optional
        Output of calibration.estimate_reflectance
    verbose : bool
        Report specimens left without reflectance

    Returns
    -------
    pd.DataFrame
        One row per individual
    """
    unknown = sorted(set(snails["site"]) - set(sites["site"]))
    if unknown:
        raise ValueError(f"Snails recorded at unknown site(s): {unknown}")

    df = snails.merge(sites, on="site", how="left", validate="many_to_one")

    if reflectance is not None:
        valid = reflectance[reflectance["valid"].astype(bool)]
        valid = valid[["individual", "reflectance", "reflectance_sd"]].copy()
        valid["individual"] = valid["individual"].astype(str)
        if valid["individual"].duplicated().any():
            raise ValueError("More than one valid reflectance estimate per individual")
        df = df.merge(valid, on="individual", how="left", validate="one_to_one")

        n_invalid = int((~reflectance["valid"].astype(bool)).sum())
        if n_invalid and verbose:
            print(f"\t{n_invalid} specimens with invalid reflectance left missing")

    return df


def build_site_index(df: pd.DataFrame, site_col: str = "site") -> tuple[np.ndarray, dict]:
    """
    Dense 0-based site codes.

    Returns
    -------
    np.ndarray
        Site index of every row
    dict
        site id -> index, needed to map later predictions onto the same effects
    """
    sites = sorted(df[site_col].unique())
    site_map = {site: i for i, site in enumerate(sites)}
    return df[site_col].map(site_map).to_numpy(dtype=int), site_map


# =============================================================================
# DESCRIPTIVE STATISTICS
# =============================================================================


def summarise_by_site(df: pd.DataFrame) -> pd.DataFrame:
    """
    Per-site sample sizes, trait means and parasite prevalence.

    Parameters
    ----------
    df : pd.DataFrame
        Model table

    Returns
    -------
    pd.DataFrame
        One row per site
    """
    aggregations = {"n_individuals": ("individual", "count")}
    for col in [
        "shell_diameter",
        "reflectance",
        "speed",
        "food_proportion",
    ]:
        if col in df.columns:
            aggregations[f"mean_{col}"] = (col, "mean")
    if "parasite" in df.columns:
        aggregations["parasite_prevalence"] = ("parasite", "mean")
    if config.URBANIZATION_COLUMN in df.columns:
        aggregations[config.URBANIZATION_COLUMN] = (config.URBANIZATION_COLUMN, "first")

    return df.groupby("site").agg(**aggregations).reset_index()


def compute_correlation_matrix(
    df: pd.DataFrame, columns: Optional[list[str]] = None
) -> pd.DataFrame:
    """
    Compute correlation matrix for specified columns.

    Parameters
    ----------
    df : pd.DataFrame
        Input data
    columns : list of str, optional
        Columns to include. If None, uses all numeric site covariates.

    Returns
    -------
    pd.DataFrame
        Correlation matrix
    """
    if columns is None:
        columns = [
            config.URBANIZATION_COLUMN,
            "impervious",
            "temperature",
            "shell_diameter",
            "reflectance",
            "speed",
            "food_proportion",
        ]

    # Filter to available columns
    available_cols = [c for c in columns if c in df.columns]
    if len(set(columns) - set(available_cols)) > 0:
        print(
            f"\tThe following columns were unavailable: {set(columns) - set(available_cols)}"
        )

    return df[available_cols].corr()
