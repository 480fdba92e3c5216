"""
Urban Snails

A Python package for the analysis of shell size, shell colour, parasite
prevalence and behaviour of land snails along an urbanization gradient:
colour calibration with propagated measurement error, bounded-proportion
transforms for Beta regressions, hierarchical Bayesian models and residual
spatial autocorrelation.
"""

__version__ = "0.1.0"

from .exceptions import (
    AnalysisError,
    DomainError,
    FitDivergence,
    IllPosedFit,
    IncompleteChannels,
    InvalidCurve,
)
from .transforms import (
    BoundedProportionTransform,
    inverse_transform_beta,
    transform_to_beta,
)

__all__ = [
    # Errors
    "AnalysisError",
    "FitDivergence",
    "IllPosedFit",
    "InvalidCurve",
    "IncompleteChannels",
    "DomainError",
    # Transforms
    "BoundedProportionTransform",
    "transform_to_beta",
    "inverse_transform_beta",
]
