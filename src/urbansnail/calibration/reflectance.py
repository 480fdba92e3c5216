"""
Reflectance estimates per specimen with propagated uncertainty.

The three channel predictions of a shell (one per calibration curve) are
averaged into a single reflectance value.  Channel errors are treated as
independent, so the standard deviation of the unweighted mean of k channels
is sqrt(sum(sigma_i^2)) / k.  This is an approximation: the R, G and B curves
share the same card and lighting.
"""

from dataclasses import dataclass
from typing import Literal, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from tqdm import tqdm

from urbansnail import config
from urbansnail.calibration.curves import (
    CalibrationCurve,
    CalibrationSample,
    fit_channel_curve,
    predict,
)
from urbansnail.exceptions import AnalysisError, IllPosedFit, IncompleteChannels


@dataclass(frozen=True)
class ReflectanceEstimate:
    """Averaged reflectance of one specimen."""

    value: float
    sd: float
    n_channels: int


Estimates = Union[Sequence[tuple[float, float]], Mapping[str, tuple[float, float]]]


def average_with_uncertainty(
    estimates: Estimates, channels: Sequence[str] = config.CHANNELS
) -> ReflectanceEstimate:
    """
    Average channel predictions and propagate their uncertainty.

    Parameters
    ----------
    estimates : sequence of (value, sigma) or mapping channel -> (value, sigma)
        One prediction per channel
    channels : sequence of str
        Channels that must all be present

    Returns
    -------
    ReflectanceEstimate
        mean of the values and sqrt(sum(sigma^2)) / k

    Raises
    ------
    IncompleteChannels
        If fewer estimates than channels are given, a named channel is
        missing, or any value or sigma is not finite
    ValueError
        If more estimates than channels are given
    """
    k = len(channels)

    if isinstance(estimates, Mapping):
        missing = [c for c in channels if c not in estimates]
        if missing:
            raise IncompleteChannels(
                f"Missing channel estimates for {missing}; {k} channels required",
                channel=",".join(missing),
            )
        extra = [c for c in estimates if c not in channels]
        if extra:
            raise ValueError(f"Unexpected channels {extra}; expected {list(channels)}")
        pairs = [estimates[c] for c in channels]
    else:
        pairs = list(estimates)
        if len(pairs) < k:
            raise IncompleteChannels(
                f"Got {len(pairs)} channel estimates; {k} channels required"
            )
        if len(pairs) > k:
            raise ValueError(f"Got {len(pairs)} channel estimates; expected exactly {k}")

    values = np.array([float(v) for v, _ in pairs])
    sigmas = np.array([float(s) for _, s in pairs])

    undefined = ~(np.isfinite(values) & np.isfinite(sigmas))
    if undefined.any():
        bad = [channels[i] for i in np.flatnonzero(undefined)]
        raise IncompleteChannels(
            f"Undefined prediction for channel(s) {bad}", channel=",".join(bad)
        )

    return ReflectanceEstimate(
        value=float(values.mean()),
        sd=float(np.sqrt(np.sum(sigmas**2)) / k),
        n_channels=k,
    )


# =============================================================================
# BATCH OVER PHOTOS
# =============================================================================


def _validate_colour_table(df: pd.DataFrame) -> None:
    missing = [c for c in config.REQUIRED_COLOUR_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def _card_rows(df: pd.DataFrame) -> pd.DataFrame:
    return df[
        (df["region"] != config.SPECIMEN_REGION) & df["reference_reflectance"].notna()
    ]


def samples_from_table(df: pd.DataFrame, photo: str) -> list[CalibrationSample]:
    """
    Build calibration samples for one photo from the long colour table.

    Card cells are every region other than the specimen that carries a
    reference reflectance. Cells lacking one of the channels are dropped.
    """
    _validate_colour_table(df)
    card = _card_rows(df[df["photo"] == photo])
    wide = card.pivot_table(
        index="region", columns="channel", values="mean_pixel", aggfunc="mean"
    )
    reference = card.groupby("region")["reference_reflectance"].first()
    wide = wide.reindex(columns=list(config.CHANNELS)).dropna()

    return [
        CalibrationSample(
            red=float(row["R"]),
            green=float(row["G"]),
            blue=float(row["B"]),
            reflectance=float(reference[region]),
        )
        for region, row in wide.iterrows()
    ]


def fit_photo_curves(
    df: pd.DataFrame,
    channels: Sequence[str] = config.CHANNELS,
    max_iter: int = config.MAX_ITERATIONS,
    on_error: Literal["raise", "mark"] = "raise",
    verbose: bool = True,
) -> dict[tuple[str, str], Union[CalibrationCurve, AnalysisError]]:
    """
    Fit a calibration curve for every photo and channel.

    Parameters
    ----------
    df : pd.DataFrame
        Long colour table (photo, region, channel, mean_pixel, reference_reflectance)
    channels : sequence of str
        Channels to fit
    max_iter : int
        Iteration cap of each fit
    on_error : {"raise", "mark"}
        "raise" stops at the first failing fit. "mark" stores the error,
        with photo and channel filled in, in place of the curve.
    verbose : bool
        Show a progress bar

    Returns
    -------
    dict
        (photo, channel) -> CalibrationCurve, or the error in "mark" mode

    Raises
    ------
    AnalysisError
        Re-raised with the failing photo and channel named, including
        IllPosedFit when a photo has too few calibration cells
    ValueError
        If a calibration set contains unusable values, naming the photo
    """
    if on_error not in ("raise", "mark"):
        raise ValueError(f"on_error must be 'raise' or 'mark', got {on_error!r}")
    _validate_colour_table(df)
    curves = {}
    photos = sorted(df["photo"].unique())

    for photo in tqdm(photos, desc="Fitting calibration curves", disable=not verbose):
        samples = samples_from_table(df, photo)
        for channel in channels:
            try:
                curves[(photo, channel)] = fit_channel_curve(
                    samples, channel, photo=photo, max_iter=max_iter
                )
            except AnalysisError as err:
                if on_error == "raise":
                    raise err.with_context(photo=photo, channel=channel) from err
                curves[(photo, channel)] = err.with_context(photo=photo, channel=channel)
            except ValueError as err:
                if on_error == "raise":
                    raise ValueError(f"Photo {photo}, channel {channel}: {err}") from err
                curves[(photo, channel)] = IllPosedFit(
                    f"Calibration set unusable: {err}", photo=photo, channel=channel
                )

    return curves


def _specimen_rows(df: pd.DataFrame) -> pd.DataFrame:
    specimen = df[df["region"] == config.SPECIMEN_REGION]
    duplicated = specimen.duplicated(subset=["photo", "channel"], keep=False)
    if duplicated.any():
        photos = sorted(specimen.loc[duplicated, "photo"].unique())
        raise ValueError(
            f"More than one '{config.SPECIMEN_REGION}' reading per channel in photo(s) {photos}"
        )
    return specimen


def estimate_reflectance(
    df: pd.DataFrame,
    curves: Optional[dict[tuple[str, str], CalibrationCurve]] = None,
    channels: Sequence[str] = config.CHANNELS,
    on_error: Literal["raise", "mark"] = "raise",
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Estimate the reflectance of every photographed specimen.

    Parameters
    ----------
    df : pd.DataFrame
        Long colour table. Specimen rows have region == config.SPECIMEN_REGION
        and an 'individual' column linking them to the snail table.
    curves : dict, optional
        Pre-fitted curves. If None, fitted with fit_photo_curves
    channels : sequence of str
        Channels averaged per specimen
    on_error : {'raise', 'mark'}
        'raise' aborts at the first failing specimen. 'mark' records the
        failure in the row (valid=False) and carries on.
    verbose : bool
        Print progress

    Returns
    -------
    pd.DataFrame
        photo, individual, reflectance, reflectance_sd, valid, error
    """
    if on_error not in ("raise", "mark"):
        raise ValueError(f"on_error must be 'raise' or 'mark', got {on_error!r}")
    _validate_colour_table(df)
    if "individual" not in df.columns:
        raise ValueError("Missing required columns: ['individual']")

    specimen = _specimen_rows(df)

    if curves is None:
        curves = fit_photo_curves(
            df, channels=channels, on_error=on_error, verbose=verbose
        )

    rows = []
    for photo, readings in specimen.groupby("photo", sort=True):
        individual = readings["individual"].dropna()
        individual = str(individual.iloc[0]) if len(individual) else None
        by_channel = readings.set_index("channel")["mean_pixel"]

        try:
            channel_estimates = {}
            for channel in channels:
                if channel not in by_channel.index or pd.isna(by_channel[channel]):
                    continue
                curve = curves.get((photo, channel))
                if isinstance(curve, AnalysisError):
                    raise curve
                if curve is None:
                    continue
                channel_estimates[channel] = predict(curve, float(by_channel[channel]))
            estimate = average_with_uncertainty(channel_estimates, channels=channels)
        except AnalysisError as err:
            err = err.with_context(photo=str(photo), individual=individual)
            if on_error == "raise":
                raise err from None
            rows.append(
                {
                    "photo": photo,
                    "individual": individual,
                    "reflectance": np.nan,
                    "reflectance_sd": np.nan,
                    "valid": False,
                    "error": str(err),
                }
            )
            continue

        rows.append(
            {
                "photo": photo,
                "individual": individual,
                "reflectance": estimate.value,
                "reflectance_sd": estimate.sd,
                "valid": True,
                "error": None,
            }
        )

    result = pd.DataFrame(
        rows,
        columns=["photo", "individual", "reflectance", "reflectance_sd", "valid", "error"],
    )
    if verbose:
        n_invalid = int((~result["valid"]).sum())
        print(f"\tEstimated reflectance for {len(result)} specimens ({n_invalid} invalid)")
    return result


def curves_to_frame(curves: dict[tuple[str, str], CalibrationCurve]) -> pd.DataFrame:
    """Tabulate fitted curves, one row per photo and channel."""
    records = [
        {
            "photo": photo,
            "channel": channel,
            "a": curve.a,
            "b": curve.b,
            "sigma": curve.sigma,
            "correlation": curve.correlation,
            "n_samples": curve.n_samples,
        }
        for (photo, channel), curve in curves.items()
        if isinstance(curve, CalibrationCurve)
    ]
    return pd.DataFrame(
        records,
        columns=["photo", "channel", "a", "b", "sigma", "correlation", "n_samples"],
    )
