"""
Exception hierarchy for stereo calibration.

Per-cycle problems (bad frame size, divergent solve) are recovered by the
session controller; settings errors and running out of input are surfaced.
"""


class CalibrationError(Exception):
    """Base class for all calibration errors."""


class InvalidSettingsError(CalibrationError, ValueError):
    """Settings failed validation. Fatal at session start."""


class InvalidPatternSpecError(InvalidSettingsError):
    """Bad board size, square size or unknown pattern name."""


class InvalidFrameSizeError(CalibrationError, ValueError):
    """Frame is smaller than the expected stereo layout."""

    def __init__(self, frame_size: tuple[int, int], expected_size: tuple[int, int]):
        self.frame_size = frame_size
        self.expected_size = expected_size
        super().__init__(
            f"Frame of size {frame_size[0]}x{frame_size[1]} is smaller than the "
            f"stereo layout {expected_size[0]}x{expected_size[1]}"
        )


class EstimationError(CalibrationError, RuntimeError):
    """Camera model estimation did not produce a usable result."""


class DivergentEstimationError(EstimationError):
    """Solved intrinsics or distortion contain non-finite or out-of-range values."""


class InsufficientViewsError(CalibrationError, RuntimeError):
    """Input ended before a calibration could be produced."""
