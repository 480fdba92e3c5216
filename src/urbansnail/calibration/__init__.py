"""
Colour calibration of shell photographs.

This module provides:
- Exponential pixel-to-reflectance curves fitted per photo and channel
- Prediction of specimen reflectance from those curves
- Averaging of channel predictions with propagated uncertainty
- Batch processing of the long-format colour table
"""

from .curves import (
    CalibrationCurve,
    CalibrationSample,
    fit_channel_curve,
    fit_curve,
    predict,
)
from .reflectance import (
    ReflectanceEstimate,
    average_with_uncertainty,
    curves_to_frame,
    estimate_reflectance,
    fit_photo_curves,
    samples_from_table,
)

__all__ = [
    # Curves
    "CalibrationSample",
    "CalibrationCurve",
    "fit_curve",
    "fit_channel_curve",
    "predict",
    # Reflectance
    "ReflectanceEstimate",
    "average_with_uncertainty",
    "samples_from_table",
    "fit_photo_curves",
    "estimate_reflectance",
    "curves_to_frame",
]
