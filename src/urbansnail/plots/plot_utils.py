from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.axes import Axes
from matplotlib.figure import Figure

from urbansnail import config as project_config
from urbansnail.calibration.curves import CalibrationCurve, exponential
from urbansnail.transforms import BoundedProportionTransform

from .plot_config import PlotConfig


def override_config_with_kwargs(config: Optional[PlotConfig] = None, **kwargs) -> PlotConfig:
    """
    Override a config object with provided keyword arguments if they are not None.
    Returns a new config instance.
    """
    config = config if config is not None else PlotConfig()
    override_args = {key: value for key, value in kwargs.items() if value is not None}
    if override_args:
        return config.update(**override_args)
    return config


def finish_figure(
    fig: Figure, ax: Axes, config: PlotConfig, output_path: Optional[Path] = None
) -> Figure:
    """Apply labels from config, lay out and optionally save."""
    if config.title:
        ax.set_title(config.title, fontsize=config.title_fontsize)
    if config.xlabel:
        ax.set_xlabel(config.xlabel, fontsize=config.label_fontsize)
    if config.ylabel:
        ax.set_ylabel(config.ylabel, fontsize=config.label_fontsize)
    ax.tick_params(labelsize=config.tick_fontsize)

    if config.tight_layout:
        fig.tight_layout()

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=config.save_dpi, bbox_inches="tight")

    return fig


def plot_calibration_curves(
    colour_df: pd.DataFrame,
    curves: dict[tuple[str, str], CalibrationCurve],
    photo: str,
    output_path: Optional[Path] = None,
    config: Optional[PlotConfig] = None,
) -> Figure:
    """
    Plot the grey-standard cells of one photo with its fitted channel curves.

    The shell readings are marked on each curve, including any that lie
    outside the calibrated pixel range.
    """
    config = override_config_with_kwargs(
        config,
        title=f"Calibration, photo {photo}",
        xlabel="Mean pixel intensity",
        ylabel="Reflectance (%)",
    )
    channel_colors = {"R": "tab:red", "G": "tab:green", "B": "tab:blue"}
    rows = colour_df[colour_df["photo"] == photo]
    card = rows[
        (rows["region"] != project_config.SPECIMEN_REGION)
        & rows["reference_reflectance"].notna()
    ]
    shell = rows[rows["region"] == project_config.SPECIMEN_REGION]

    fig, ax = plt.subplots(figsize=config.figsize, dpi=config.dpi)
    pixel_max = max(rows["mean_pixel"].max(), 1.0)
    grid = np.linspace(0, pixel_max * 1.05, 200)

    for channel, color in channel_colors.items():
        curve = curves.get((photo, channel))
        if not isinstance(curve, CalibrationCurve):
            continue
        points = card[card["channel"] == channel]
        ax.scatter(
            points["mean_pixel"],
            points["reference_reflectance"],
            color=color,
            alpha=config.point_alpha,
        )
        if curve.is_finite:
            ax.plot(
                grid,
                exponential(grid, curve.a, curve.b),
                color=color,
                label=f"{channel}: a={curve.a:.2f}, b={curve.b:.4f}, r={curve.correlation:.3f}",
            )
            for pixel in shell.loc[shell["channel"] == channel, "mean_pixel"]:
                ax.scatter(
                    pixel,
                    exponential(pixel, curve.a, curve.b),
                    marker="x",
                    s=80,
                    color=color,
                )

    ax.legend(loc="upper left", fontsize=config.tick_fontsize)
    return finish_figure(fig, ax, config, output_path)


def plot_reflectance_uncertainty(
    reflectance_df: pd.DataFrame,
    output_path: Optional[Path] = None,
    config: Optional[PlotConfig] = None,
) -> Figure:
    """Propagated SD against estimated reflectance for every valid specimen."""
    config = override_config_with_kwargs(
        config, xlabel="Reflectance (%)", ylabel="Propagated SD (%)"
    )
    valid = reflectance_df[reflectance_df["valid"].astype(bool)]

    fig, ax = plt.subplots(figsize=config.figsize, dpi=config.dpi)
    ax.scatter(
        valid["reflectance"],
        valid["reflectance_sd"],
        color=config.point_color,
        alpha=config.point_alpha,
    )
    return finish_figure(fig, ax, config, output_path)


def plot_proportion_predictions(
    x: np.ndarray,
    draws: np.ndarray,
    transform: BoundedProportionTransform,
    observed_x: Optional[np.ndarray] = None,
    observed_y: Optional[np.ndarray] = None,
    interval: float = 0.95,
    output_path: Optional[Path] = None,
    config: Optional[PlotConfig] = None,
) -> Figure:
    """
    Posterior expectation of a proportion along a covariate gradient.

    Parameters
    ----------
    x : np.ndarray
        Covariate values on the original scale (n_points)
    draws : np.ndarray
        Posterior expectation draws on the transformed scale (n_draws x n_points)
    transform : BoundedProportionTransform
        The transform used for the response; its inverse maps draws back
    observed_x, observed_y : np.ndarray, optional
        Raw observations (proportions on the original scale)
    interval : float
        Width of the credible band
    """
    config = override_config_with_kwargs(config, ylabel="Proportion of food eaten")
    draws_original = transform.inverse(draws)

    tail = (1 - interval) / 2 * 100
    lower, median, upper = np.percentile(draws_original, [tail, 50, 100 - tail], axis=0)

    fig, ax = plt.subplots(figsize=config.figsize, dpi=config.dpi)
    if observed_x is not None and observed_y is not None:
        ax.scatter(
            observed_x,
            observed_y,
            color=config.point_color,
            alpha=config.point_alpha,
            s=15,
        )
    ax.fill_between(x, lower, upper, color=config.line_color, alpha=config.band_alpha)
    ax.plot(x, median, color=config.line_color)
    return finish_figure(fig, ax, config, output_path)


def plot_correlogram(
    correlogram_df: pd.DataFrame,
    alpha: float = 0.05,
    output_path: Optional[Path] = None,
    config: Optional[PlotConfig] = None,
) -> Figure:
    """Moran's I per distance class; filled markers where p < alpha."""
    config = override_config_with_kwargs(
        config, xlabel="Distance (km)", ylabel="Moran's I"
    )
    distance_km = correlogram_df["mean_distance"] / 1000
    significant = correlogram_df["p_value"] < alpha

    fig, ax = plt.subplots(figsize=config.figsize, dpi=config.dpi)
    ax.plot(distance_km, correlogram_df["morans_i"], color=config.line_color)
    ax.scatter(
        distance_km[significant],
        correlogram_df.loc[significant, "morans_i"],
        color=config.line_color,
        zorder=3,
    )
    ax.scatter(
        distance_km[~significant],
        correlogram_df.loc[~significant, "morans_i"],
        facecolor="white",
        edgecolor=config.line_color,
        zorder=3,
    )
    ax.axhline(correlogram_df["expected"].iloc[0], color="gray", linestyle="--")
    return finish_figure(fig, ax, config, output_path)


def plot_correlation_matrix(
    corr_matrix: pd.DataFrame,
    output_path: Optional[Path] = None,
    config: Optional[PlotConfig] = None,
    cmap: str = "RdBu_r",
) -> Figure:
    """
    Create correlation plot.

    Parameters
    ----------
    corr_matrix : pd.DataFrame
        Correlation matrix
    output_path : Path, optional
        Path to save figure
    config : PlotConfig, optional
        Figure settings
    cmap : str
        Colormap name

    Returns
    -------
    matplotlib.figure.Figure
        The figure object
    """
    config = override_config_with_kwargs(config)
    fig, ax = plt.subplots(figsize=config.figsize, dpi=config.dpi)

    # Create mask for upper triangle
    mask = np.triu(np.ones_like(corr_matrix, dtype=bool))

    sns.heatmap(
        corr_matrix,
        mask=mask,
        cmap=cmap,
        vmin=-1,
        vmax=1,
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.5},
        annot=True,
        fmt=".2f",
        ax=ax,
    )
    return finish_figure(fig, ax, config, output_path)
