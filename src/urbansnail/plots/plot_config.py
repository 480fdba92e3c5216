"""
Plotting configuration for reproducible, consistent figure generation.
"""

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass
class PlotConfig:
    """Base configuration for all plots."""

    # Figure settings
    figsize: Tuple[float, float] = (8, 6)
    dpi: int = 100

    # Font settings
    title_fontsize: int = 14
    label_fontsize: int = 12
    tick_fontsize: int = 10

    # Color settings
    cmap: str = "viridis"
    point_color: str = "0.3"
    line_color: str = "black"
    band_alpha: float = 0.3
    point_alpha: float = 0.7

    # Title and labels
    title: Optional[str] = None
    xlabel: Optional[str] = None
    ylabel: Optional[str] = None

    # Save settings
    save_dpi: int = 300
    save_format: str = "png"
    tight_layout: bool = True

    def copy(self) -> "PlotConfig":
        """Create a copy of this config."""
        return PlotConfig(**self.__dict__)

    def update(self, **kwargs) -> "PlotConfig":
        """Update config with new values and return a new instance."""
        new_dict = self.__dict__.copy()
        new_dict.update(kwargs)
        return PlotConfig(**new_dict)


# Paper-ready config
PAPER_CONFIG = PlotConfig(
    figsize=(6, 4.5),
    title_fontsize=12,
    label_fontsize=11,
    tick_fontsize=9,
    save_dpi=600,
)
