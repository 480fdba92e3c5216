"""Shared fixtures: synthetic colour, site and snail tables."""

from __future__ import annotations

from pathlib import Path

import matplotlib
import numpy as np
import pandas as pd
import pytest

matplotlib.use("Agg")

# per-channel (a, b) of the synthetic exponential calibration
CHANNEL_PARAMS = {"R": (2.0, 0.016), "G": (2.5, 0.015), "B": (1.5, 0.018)}
CARD_REFLECTANCE = [3.0, 5.0, 8.0, 12.0, 20.0, 30.0, 45.0, 65.0, 90.0]
SHELL_PIXELS = {"R": 120.0, "G": 130.0, "B": 110.0}


def pixel_for(reflectance: float, channel: str) -> float:
    a, b = CHANNEL_PARAMS[channel]
    return float(np.log(reflectance / a) / b)


def expected_shell_reflectance() -> float:
    """Mean of the noiseless channel predictions for SHELL_PIXELS."""
    values = [a * np.exp(b * SHELL_PIXELS[c]) for c, (a, b) in CHANNEL_PARAMS.items()]
    return float(np.mean(values))


def make_photo_rows(photo: str, individual: str) -> list[dict]:
    rows = []
    for i, reflectance in enumerate(CARD_REFLECTANCE):
        for channel in CHANNEL_PARAMS:
            rows.append(
                {
                    "photo": photo,
                    "region": f"grey_{i + 1}",
                    "channel": channel,
                    "mean_pixel": pixel_for(reflectance, channel),
                    "reference_reflectance": reflectance,
                    "individual": None,
                }
            )
    for channel, pixel in SHELL_PIXELS.items():
        rows.append(
            {
                "photo": photo,
                "region": "shell",
                "channel": channel,
                "mean_pixel": pixel,
                "reference_reflectance": np.nan,
                "individual": individual,
            }
        )
    return rows


@pytest.fixture
def colour_table() -> pd.DataFrame:
    """Two photos with noiseless grey-standard cards and one shell each."""
    rows = make_photo_rows("P1", "S1") + make_photo_rows("P2", "S2")
    return pd.DataFrame(rows)


@pytest.fixture
def colour_table_with_bad_photo(colour_table: pd.DataFrame) -> pd.DataFrame:
    """Adds photo P3 whose card has a single usable cell."""
    rows = [
        {
            "photo": "P3",
            "region": "grey_1",
            "channel": channel,
            "mean_pixel": 100.0,
            "reference_reflectance": 20.0,
            "individual": None,
        }
        for channel in CHANNEL_PARAMS
    ] + [
        {
            "photo": "P3",
            "region": "shell",
            "channel": channel,
            "mean_pixel": 90.0,
            "reference_reflectance": np.nan,
            "individual": "S3",
        }
        for channel in CHANNEL_PARAMS
    ]
    return pd.concat([colour_table, pd.DataFrame(rows)], ignore_index=True)


@pytest.fixture
def site_table() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "site": ["A", "B", "C", "D"],
            "lon": [4.35, 4.40, 4.70, 4.75],
            "lat": [50.85, 50.86, 50.60, 50.62],
            "urbanization": [0.9, 0.7, 0.2, 0.1],
        }
    )


@pytest.fixture
def snail_table() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "individual": ["S1", "S2", "S3", "S4", "S5", "S6"],
            "site": ["A", "A", "B", "C", "D", "D"],
            "shell_diameter": [20.1, 21.5, 19.8, 23.0, 24.2, 22.7],
            "parasite": [1, 0, 1, 0, 0, 1],
            "speed": [1.2, 1.5, 0.9, 2.1, 1.8, 0.0],
            "food_offered": [1.0, 1.0, 1.0, 1.0, 1.0, 1.0],
            "food_consumed": [0.0, 0.25, 0.5, 0.1, np.nan, 0.8],
        }
    )


@pytest.fixture
def data_dir(
    tmp_path: Path,
    colour_table: pd.DataFrame,
    site_table: pd.DataFrame,
    snail_table: pd.DataFrame,
) -> Path:
    """Input CSVs as the pipeline expects them on disk."""
    directory = tmp_path / "data"
    directory.mkdir()
    colour_table.to_csv(directory / "colour.csv", index=False)
    site_table.to_csv(directory / "sites.csv", index=False)
    snail_table.to_csv(directory / "snails.csv", index=False)
    return directory
