"""
Calibration utilities package for stereo camera calibration.

This package provides modular tools for:
- Pattern geometry and sub-pixel feature detection
- Per-camera intrinsic calibration and reprojection scoring
- The capture session state machine for a side-by-side stereo rig
- Visualization and result persistence
"""

from .accumulator import CorrespondenceAccumulator, ViewCorrespondence
from .calibration import compute_reprojection_errors, estimate_camera_model, run_calibration
from .data_structures import (
    CalibrationConfig,
    CalibrationFlags,
    CameraCalibration,
    CameraIndex,
    CameraModel,
    PatternSpec,
    PatternType,
    ReprojectionReport,
    SessionMode,
    Settings,
    StereoCalibration,
)
from .detection import (
    StereoDetection,
    detect_pattern,
    detect_stereo_frame,
    detect_stereo_images,
    split_stereo_frame,
)
from .errors import (
    CalibrationError,
    DivergentEstimationError,
    EstimationError,
    InsufficientViewsError,
    InvalidFrameSizeError,
    InvalidPatternSpecError,
    InvalidSettingsError,
)
from .io import load_stereo_calibration, save_stereo_calibration
from .pattern import board_corner_positions
from .session import CameraSession, CycleResult, SessionCommand, StereoCalibrationSession
from .sources import FrameSource, ImageListSource, VideoSource, open_frame_source
from .visualization import (
    plot_imagepoints_coverage,
    plot_reprojection_errors,
    render_view,
    save_diagnostic_plots,
)

__all__ = [
    # Enums and data structures
    "CalibrationConfig",
    "CalibrationFlags",
    "CameraCalibration",
    "CameraIndex",
    "CameraModel",
    "PatternSpec",
    "PatternType",
    "ReprojectionReport",
    "SessionMode",
    "Settings",
    "StereoCalibration",
    # Errors
    "CalibrationError",
    "DivergentEstimationError",
    "EstimationError",
    "InsufficientViewsError",
    "InvalidFrameSizeError",
    "InvalidPatternSpecError",
    "InvalidSettingsError",
    # Pattern and detection
    "board_corner_positions",
    "StereoDetection",
    "detect_pattern",
    "detect_stereo_frame",
    "detect_stereo_images",
    "split_stereo_frame",
    # Accumulation and calibration
    "CorrespondenceAccumulator",
    "ViewCorrespondence",
    "compute_reprojection_errors",
    "estimate_camera_model",
    "run_calibration",
    # Session
    "CameraSession",
    "CycleResult",
    "SessionCommand",
    "StereoCalibrationSession",
    # Sources
    "FrameSource",
    "ImageListSource",
    "VideoSource",
    "open_frame_source",
    # Visualization
    "plot_imagepoints_coverage",
    "plot_reprojection_errors",
    "render_view",
    "save_diagnostic_plots",
    # I/O
    "load_stereo_calibration",
    "save_stereo_calibration",
]
