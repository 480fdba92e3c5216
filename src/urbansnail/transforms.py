"""
Bounded-proportion transform for Beta-likelihood responses.

Food intake is recorded as a proportion of the food offered and contains
exact zeros, which lie outside the support of a Beta distribution.  The
Smithson & Verkuilen (2006) shrinkage

    y_beta = (y * (n - 1) + 0.5) / n

maps the closed interval [0, 1] into the open interval (0, 1).  n is the
number of non-missing observations in the dataset the model is fitted to.
It is a dataset-level constant: it must be computed once and the same value
used for the forward transform and for back-transforming posterior
predictions, otherwise the round trip is biased.

Reference: Smithson, M. & Verkuilen, J. (2006) "A better lemon squeezer?
Maximum-likelihood regression with beta-distributed dependent variables".
Psychological Methods 11(1), 54-71.
"""

from dataclasses import dataclass
from numbers import Real
from typing import Union

import numpy as np
import pandas as pd

from urbansnail.exceptions import DomainError

ArrayLike = Union[float, np.ndarray, pd.Series, list]


def _check_n(n: float) -> None:
    if isinstance(n, bool) or not isinstance(n, (Real, np.integer, np.floating)):
        raise DomainError(f"Sample size n must be a number, got {type(n).__name__}")
    if not np.isfinite(n) or n <= 1:
        raise DomainError(f"Sample size n must be > 1, got {n}")


def _check_unit_interval(values: np.ndarray, name: str) -> None:
    observed = values[~np.isnan(values)]
    if np.any((observed < 0) | (observed > 1)):
        bad = observed[(observed < 0) | (observed > 1)]
        raise DomainError(
            f"{name} must lie in [0, 1]; found {bad.size} value(s) outside, "
            f"e.g. {bad[0]!r}"
        )


def _as_float_array(values: ArrayLike) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _restore_shape(result: np.ndarray, original: ArrayLike):
    if result.ndim == 0:
        return float(result)
    if isinstance(original, pd.Series):
        return pd.Series(result, index=original.index, name=original.name)
    return result


def transform_to_beta(y: ArrayLike, n: float):
    """
    Transform [0,1] bounded data for beta distribution.

    Applies the transformation: y_beta = (y * (n-1) + 0.5) / n
    This avoids exact 0s and 1s which are problematic for beta distribution.
    Missing values (NaN) are passed through.

    Parameters
    ----------
    y : float or array-like
        Original response values in [0, 1]
    n : int
        Number of non-missing observations in the dataset, > 1

    Returns
    -------
    float or np.ndarray
        Transformed values in (0, 1)

    Raises
    ------
    DomainError
        If any value of y lies outside [0, 1] or n <= 1
    """
    _check_n(n)
    values = _as_float_array(y)
    _check_unit_interval(values, "Proportion")
    return _restore_shape((values * (n - 1) + 0.5) / n, y)


def inverse_transform_beta(y_beta: ArrayLike, n: float):
    """
    Inverse of beta transformation.

    Values below 0.5/n or above (n-0.5)/n, which posterior draws can reach,
    map outside [0, 1] and are returned as-is. The round trip
    transform_to_beta(inverse_transform_beta(v, n), n) == v therefore holds
    only on [0.5/n, (n-0.5)/n]; outside it the forward transform raises
    DomainError.

    Parameters
    ----------
    y_beta : float or array-like
        Transformed values in [0, 1]
    n : int
        Sample size used in original transformation

    Returns
    -------
    float or np.ndarray
        Original scale values

    Raises
    ------
    DomainError
        If any value of y_beta lies outside [0, 1] or n <= 1
    """
    _check_n(n)
    values = _as_float_array(y_beta)
    _check_unit_interval(values, "Transformed proportion")
    return _restore_shape((values * n - 0.5) / (n - 1), y_beta)


@dataclass(frozen=True)
class BoundedProportionTransform:
    """
    Transform with its sample size pinned.

    Build it once from the full set of observations and pass the same
    instance to every forward and inverse call.

    Attributes
    ----------
    n : int
        Number of non-missing observations the transform is calibrated against
    """

    n: int

    def __post_init__(self):
        _check_n(self.n)

    @classmethod
    def from_observations(cls, values: ArrayLike) -> "BoundedProportionTransform":
        """Pin n to the number of non-missing values."""
        n = int(np.count_nonzero(~np.isnan(_as_float_array(values))))
        return cls(n)

    def transform(self, y: ArrayLike):
        return transform_to_beta(y, self.n)

    def inverse(self, y_beta: ArrayLike):
        return inverse_transform_beta(y_beta, self.n)

    @property
    def bounds(self) -> tuple[float, float]:
        """Images of 0 and 1."""
        return self.transform(0.0), self.transform(1.0)
