"""Exception classes for calibration and proportion transforms."""

from typing import Optional


class AnalysisError(Exception):
    """Base exception for all analysis errors.

    Carries optional context identifying the photo, colour channel and
    individual the failure belongs to, so the source row can be inspected.
    """

    def __init__(
        self,
        message: str,
        photo: Optional[str] = None,
        channel: Optional[str] = None,
        individual: Optional[str] = None,
    ) -> None:
        self.reason = message
        self.photo = photo
        self.channel = channel
        self.individual = individual
        super().__init__(self._format())

    def _format(self) -> str:
        context = [
            f"{label}={value}"
            for label, value in (
                ("photo", self.photo),
                ("channel", self.channel),
                ("individual", self.individual),
            )
            if value is not None
        ]
        if context:
            return f"{self.reason} [{', '.join(context)}]"
        return self.reason

    def with_context(self, **context) -> "AnalysisError":
        """Return a copy of this error with extra context filled in."""
        merged = {
            "photo": self.photo,
            "channel": self.channel,
            "individual": self.individual,
        }
        merged.update({k: v for k, v in context.items() if v is not None})
        return type(self)(self.reason, **merged)


class FitDivergence(AnalysisError):
    """Raised when a calibration curve fit does not converge within its iteration cap."""


class IllPosedFit(AnalysisError, ValueError):
    """Raised when a calibration set cannot determine a curve (too few distinct cells)."""


class InvalidCurve(AnalysisError):
    """Raised when a calibration curve has non-finite parameters."""


class IncompleteChannels(AnalysisError):
    """Raised when fewer channel predictions than required are available."""


class DomainError(AnalysisError, ValueError):
    """Raised when a proportion or sample size is outside the transform's domain."""
