"""
Diagnostic and result figures for the snail urbanization analysis.
"""

from . import plot_utils
from .plot_config import PAPER_CONFIG, PlotConfig

__all__ = [
    "PlotConfig",
    "PAPER_CONFIG",
    "plot_utils",
]
