"""
Exponential calibration curves mapping pixel intensity to reflectance.

Every photograph contains a grey-standard card whose cells have a known
(spectrometer-measured) reflectance.  For each photo and colour channel a
curve

    reflectance = a * exp(b * pixel)

is fitted to the card cells by nonlinear least squares and then used to
predict the reflectance of the shell photographed alongside.  The residual
standard deviation of the fit is carried forward as the measurement
uncertainty of that prediction.
"""

import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit
from scipy.stats import pearsonr

from urbansnail import config
from urbansnail.exceptions import FitDivergence, IllPosedFit, InvalidCurve

# =============================================================================
# DATA STRUCTURES
# =============================================================================


@dataclass(frozen=True)
class CalibrationSample:
    """One grey-standard cell: mean pixel intensity per channel and its reference reflectance."""

    red: float
    green: float
    blue: float
    reflectance: float

    def intensity(self, channel: str) -> float:
        """Mean pixel intensity for channel 'R', 'G' or 'B'."""
        try:
            return {"R": self.red, "G": self.green, "B": self.blue}[channel]
        except KeyError:
            raise ValueError(
                f"Unknown channel {channel!r}; expected one of {config.CHANNELS}"
            ) from None


@dataclass(frozen=True)
class CalibrationCurve:
    """
    Fitted curve for one photo and channel.

    Attributes
    ----------
    a, b : float
        Parameters of reflectance = a * exp(b * pixel)
    sigma : float
        Residual standard deviation, sqrt(RSS / (n - 2)). NaN when n == 2.
    correlation : float
        Pearson correlation of fitted and observed reflectance (diagnostic only)
    channel : str
        Colour channel the curve was fitted on
    n_samples : int
        Number of calibration samples used
    photo : str, optional
        Photo identifier
    """

    a: float
    b: float
    sigma: float
    correlation: float
    channel: str
    n_samples: int
    photo: Optional[str] = None

    @property
    def is_finite(self) -> bool:
        return bool(np.isfinite(self.a) and np.isfinite(self.b))

    def predict(self, pixel_intensity):
        return predict(self, pixel_intensity)


# =============================================================================
# FITTING
# =============================================================================


def exponential(pixel, a: float, b: float):
    return a * np.exp(b * pixel)


def fit_curve(
    pixel: Sequence[float],
    reflectance: Sequence[float],
    channel: str,
    photo: Optional[str] = None,
    start: tuple[float, float] = (config.START_A, config.START_B),
    max_iter: int = config.MAX_ITERATIONS,
) -> CalibrationCurve:
    """
    Fit reflectance = a * exp(b * pixel) by Levenberg-Marquardt.

    Parameters
    ----------
    pixel : array-like
        Mean pixel intensities of the calibration cells
    reflectance : array-like
        Reference reflectances of the same cells
    channel : str
        Channel label stored on the curve
    photo : str, optional
        Photo label stored on the curve
    start : tuple
        Starting values (a, b)
    max_iter : int
        Iteration cap. MINPACK counts function evaluations, and an iteration
        with a finite-difference Jacobian costs one evaluation per parameter
        plus one, so the evaluation cap is max_iter * (len(start) + 1).

    Returns
    -------
    CalibrationCurve

    Raises
    ------
    ValueError
        If the inputs differ in length or contain non-finite values
    IllPosedFit
        If there are fewer than two distinct pixel intensities
    FitDivergence
        If the optimizer does not converge within the cap
    """
    x = np.asarray(pixel, dtype=float)
    y = np.asarray(reflectance, dtype=float)

    if x.shape != y.shape or x.ndim != 1:
        raise ValueError(
            f"pixel and reflectance must be 1-D and of equal length, got {x.shape} and {y.shape}"
        )
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise ValueError("Calibration samples contain missing or non-finite values")
    if len(np.unique(x)) < 2:
        raise IllPosedFit(
            f"Ill-posed fit: at least 2 distinct pixel intensities are needed, "
            f"got {len(np.unique(x))}",
            photo=photo,
            channel=channel,
        )

    max_nfev = max_iter * (len(start) + 1)
    with np.errstate(over="ignore", invalid="ignore"), warnings.catch_warnings():
        # parameter covariance is not used
        warnings.simplefilter("ignore", OptimizeWarning)
        try:
            params, _ = curve_fit(
                exponential, x, y, p0=start, method="lm", maxfev=max_nfev
            )
        except RuntimeError as err:
            raise FitDivergence(
                f"Exponential fit did not converge within {max_iter} iterations: {err}",
                photo=photo,
                channel=channel,
            ) from err

    a, b = (float(p) for p in params)
    n = len(x)

    with np.errstate(over="ignore", invalid="ignore"):
        fitted = exponential(x, a, b)
        rss = float(np.sum((y - fitted) ** 2))
    sigma = float(np.sqrt(rss / (n - 2))) if n > 2 else float("nan")

    if np.all(np.isfinite(fitted)) and np.ptp(fitted) > 0 and np.ptp(y) > 0:
        correlation = float(pearsonr(fitted, y)[0])
    else:
        correlation = float("nan")

    return CalibrationCurve(
        a=a,
        b=b,
        sigma=sigma,
        correlation=correlation,
        channel=channel,
        n_samples=n,
        photo=photo,
    )


def fit_channel_curve(
    samples: Sequence[CalibrationSample],
    channel: str,
    photo: Optional[str] = None,
    max_iter: int = config.MAX_ITERATIONS,
) -> CalibrationCurve:
    """
    Fit the calibration curve of one channel from a set of card samples.

    Parameters
    ----------
    samples : sequence of CalibrationSample
        Calibration set of one photographic session
    channel : str
        'R', 'G' or 'B'
    photo : str, optional
        Photo label for error messages and bookkeeping
    max_iter : int
        Iteration cap passed to fit_curve

    Returns
    -------
    CalibrationCurve
    """
    if len(samples) == 0:
        raise IllPosedFit("Ill-posed fit: no calibration samples", photo=photo, channel=channel)
    pixel = [s.intensity(channel) for s in samples]
    reflectance = [s.reflectance for s in samples]
    return fit_curve(pixel, reflectance, channel, photo=photo, max_iter=max_iter)


# =============================================================================
# PREDICTION
# =============================================================================


def predict(
    curve: CalibrationCurve, pixel_intensity: Union[float, np.ndarray]
) -> tuple[Union[float, np.ndarray], float]:
    """
    Predict reflectance for a pixel intensity.

    No clamping is applied: the darkest shells lie below the darkest card
    cell and are extrapolated.

    Parameters
    ----------
    curve : CalibrationCurve
        Fitted curve
    pixel_intensity : float or np.ndarray
        Mean pixel intensity of the specimen

    Returns
    -------
    value : float or np.ndarray
        Predicted reflectance
    sigma : float
        The curve's residual standard deviation

    Raises
    ------
    InvalidCurve
        If the curve parameters are not finite
    """
    if not curve.is_finite:
        raise InvalidCurve(
            f"Calibration curve has non-finite parameters (a={curve.a}, b={curve.b})",
            photo=curve.photo,
            channel=curve.channel,
        )
    value = exponential(np.asarray(pixel_intensity, dtype=float), curve.a, curve.b)
    if np.ndim(value) == 0:
        value = float(value)
    return value, curve.sigma
