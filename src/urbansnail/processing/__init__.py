"""
Data preparation and spatial diagnostics.

This module provides:
- Loading and cleaning of the site, snail and colour tables
- Covariate standardization with pinned statistics
- Joins into a model-ready table and per-site summaries
- Moran's I correlograms of site-level residuals
"""

from .processdata import (
    StandardizationStats,
    build_model_table,
    build_site_index,
    clean_snail_data,
    compute_correlation_matrix,
    load_colour_data,
    load_site_data,
    load_snail_data,
    standardize_variables,
    summarise_by_site,
)
from .spatial import (
    correlogram,
    distance_breaks,
    distance_matrix,
    morans_i,
    project_sites,
    site_residuals,
)

__all__ = [
    # Data loading
    "load_site_data",
    "load_snail_data",
    "load_colour_data",
    "clean_snail_data",
    # Standardization
    "StandardizationStats",
    "standardize_variables",
    # Joins
    "build_model_table",
    "build_site_index",
    "summarise_by_site",
    "compute_correlation_matrix",
    # Spatial
    "project_sites",
    "distance_matrix",
    "distance_breaks",
    "morans_i",
    "correlogram",
    "site_residuals",
]
