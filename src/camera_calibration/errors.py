"""Exception types raised by the calibration package."""

from __future__ import annotations


class CalibrationError(Exception):
    """Base class for calibration errors."""


class SolveFailedError(CalibrationError, RuntimeError):
    """The solver could not produce a calibration.

    Raised when too few views are available or the underlying solver
    rejects the input geometry.
    """


class DegenerateSolutionError(SolveFailedError):
    """The solver returned non-finite or out-of-range parameters."""


class ArtifactIOError(CalibrationError, OSError):
    """A calibration artifact could not be written or read."""
