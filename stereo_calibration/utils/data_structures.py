"""
Data structures for stereo camera calibration.

Provides type-safe containers for pattern geometry, solver options,
calibration results and session settings.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from .errors import InvalidPatternSpecError, InvalidSettingsError

MIN_SQUARE_SIZE = 1e-5
OUTPUT_FORMATS = ("yaml", "json", "npz")


class CameraIndex(IntEnum):
    """Enum for camera indices in stereo rig."""

    LEFT = 0
    RIGHT = 1


class SessionMode(IntEnum):
    """Capture state of a calibration session."""

    DETECTION = 0
    CAPTURING = 1
    CALIBRATED = 2


class PatternType(Enum):
    """Supported planar calibration targets."""

    CHESSBOARD = "CHESSBOARD"
    CIRCLES_GRID = "CIRCLES_GRID"
    ASYMMETRIC_CIRCLES_GRID = "ASYMMETRIC_CIRCLES_GRID"

    @classmethod
    def from_name(cls, name: str) -> "PatternType":
        """Map a configuration string to a pattern type (case-insensitive)."""
        try:
            return cls(str(name).strip().upper())
        except ValueError:
            raise InvalidPatternSpecError(f"Inexistent calibration pattern: {name!r}") from None


@dataclass(frozen=True)
class PatternSpec:
    """
    Geometry of the calibration target.

    Attributes:
        pattern_type: Chessboard or circle grid variant
        board_size: (width, height) count of interior points
        square_size: Spacing between points in a physical unit
    """

    pattern_type: PatternType
    board_size: tuple[int, int]
    square_size: float

    def __post_init__(self) -> None:
        width, height = self.board_size
        if width <= 0 or height <= 0:
            raise InvalidPatternSpecError(f"Invalid board size: {width} {height}")
        if not self.square_size > MIN_SQUARE_SIZE:
            raise InvalidPatternSpecError(f"Invalid square size {self.square_size}")

    @property
    def width(self) -> int:
        return self.board_size[0]

    @property
    def height(self) -> int:
        return self.board_size[1]

    @property
    def num_points(self) -> int:
        """Number of feature points on the board."""
        return self.width * self.height


@dataclass(frozen=True)
class CalibrationFlags:
    """
    Solver constraints selected in the settings.

    k4 and k5 are always fixed to zero; that is not configurable.
    """

    fix_aspect_ratio: bool = False
    zero_tangent_dist: bool = False
    fix_principal_point: bool = False

    def to_cv_flags(self) -> int:
        """Translate to the bit flags expected by cv2.calibrateCamera."""
        flags = cv2.CALIB_FIX_K4 | cv2.CALIB_FIX_K5
        if self.fix_principal_point:
            flags |= cv2.CALIB_FIX_PRINCIPAL_POINT
        if self.zero_tangent_dist:
            flags |= cv2.CALIB_ZERO_TANGENT_DIST
        if self.fix_aspect_ratio:
            flags |= cv2.CALIB_FIX_ASPECT_RATIO
        return flags

    def names(self) -> list[str]:
        """Human-readable names of the enabled options."""
        names = []
        if self.fix_aspect_ratio:
            names.append("fix_aspect_ratio")
        if self.fix_principal_point:
            names.append("fix_principal_point")
        if self.zero_tangent_dist:
            names.append("zero_tangent_dist")
        return names


@dataclass(frozen=True, eq=False)
class CameraModel:
    """
    Solved camera model for one camera.

    Attributes:
        camera_matrix: Intrinsic matrix (3x3)
        dist_coeffs: Distortion coefficients (8,), k4 and k5 are zero
        rvecs: Per-view rotation vectors (3x1)
        tvecs: Per-view translation vectors (3x1)
    """

    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray
    rvecs: tuple[np.ndarray, ...] = ()
    tvecs: tuple[np.ndarray, ...] = ()

    @property
    def num_views(self) -> int:
        return len(self.rvecs)

    def extrinsics(self) -> np.ndarray:
        """Stack per-view poses as an Nx6 array of (rvec | tvec) rows."""
        if not self.rvecs:
            return np.zeros((0, 6), dtype=np.float64)
        rows = [np.hstack([np.ravel(r), np.ravel(t)]) for r, t in zip(self.rvecs, self.tvecs, strict=True)]
        return np.vstack(rows).astype(np.float64)


@dataclass(frozen=True, eq=False)
class ReprojectionReport:
    """Per-view and aggregate RMS reprojection errors in pixels."""

    per_view_errors: np.ndarray
    rms: float

    @property
    def num_views(self) -> int:
        return len(self.per_view_errors)


@dataclass(frozen=True, eq=False)
class CameraCalibration:
    """
    Container for a single camera calibration result.

    Attributes:
        model: Solved camera model
        report: Reprojection errors recomputed from the model
        solver_rms: RMS reported by the solver (informational)
        image_size: Image dimensions (width, height)
        flags: Solver constraints used
        imgpoints: Image point arrays the model was solved from
    """

    model: CameraModel
    report: ReprojectionReport
    solver_rms: float
    image_size: tuple[int, int]
    flags: CalibrationFlags = field(default_factory=CalibrationFlags)
    imgpoints: list[np.ndarray] = field(default_factory=list)

    @property
    def K(self) -> np.ndarray:
        return self.model.camera_matrix

    @property
    def dist(self) -> np.ndarray:
        return self.model.dist_coeffs

    def num_detections(self) -> int:
        """Return number of views used."""
        return len(self.imgpoints)


@dataclass
class StereoCalibration:
    """
    Calibration results of both cameras of a stereo rig.

    Attributes:
        left: Left camera calibration
        right: Right camera calibration
        pattern: Target geometry the views were taken of
        image_size: Per-camera image dimensions (width, height)
    """

    left: CameraCalibration | None = None
    right: CameraCalibration | None = None
    pattern: PatternSpec | None = None
    image_size: tuple[int, int] | None = None

    def is_calibrated(self) -> bool:
        """Check if both cameras are calibrated."""
        return self.left is not None and self.right is not None

    def get_camera(self, idx: CameraIndex) -> CameraCalibration | None:
        """Get camera by index."""
        return self.left if idx == CameraIndex.LEFT else self.right

    def summary(self) -> str:
        """Generate human-readable summary."""
        lines = ["Stereo Calibration Summary:"]
        for idx in CameraIndex:
            cam = self.get_camera(idx)
            name = idx.name.lower()
            if cam is None:
                lines.append(f"  {name:<5}: not calibrated")
                continue
            K = cam.K
            lines.append(
                f"  {name:<5}: views={cam.num_detections()} "
                f"fx={K[0, 0]:.2f} fy={K[1, 1]:.2f} cx={K[0, 2]:.2f} cy={K[1, 2]:.2f} "
                f"rms={cam.report.rms:.4f} px"
            )
        return "\n".join(lines)


@dataclass(frozen=True)
class Settings:
    """
    Immutable session settings.

    Attributes:
        pattern: Calibration target geometry
        flags: Solver constraints
        target_frames: Number of joint views to collect before calibrating
        frame_width: Width of one camera inside the stereo frame
        frame_height: Height of the stereo frame
        input: Input descriptor (camera index, video path, image list)
        flip_vertical: Flip frames around the horizontal axis
        delay_ms: Display delay between frames of a non-live input
        output_path: Where calibration results are written (None = not written)
        output_format: 'yaml', 'json' or 'npz'
        write_points: Persist detected image points
        write_extrinsics: Persist per-view poses
        show_undistorted: Start with the undistorted preview once calibrated
        plots_dir: Directory for diagnostic plots (None = no plots)
        visualization_mode: 'show', 'save' or 'both'
    """

    pattern: PatternSpec
    flags: CalibrationFlags = field(default_factory=CalibrationFlags)
    target_frames: int = 25
    frame_width: int = 640
    frame_height: int = 400
    input: str = ""
    flip_vertical: bool = False
    delay_ms: int = 100
    output_path: Path | None = None
    output_format: str = "yaml"
    write_points: bool = True
    write_extrinsics: bool = True
    show_undistorted: bool = False
    plots_dir: Path | None = None
    visualization_mode: str = "save"

    def __post_init__(self) -> None:
        if self.target_frames <= 0:
            raise InvalidSettingsError(f"Invalid number of frames {self.target_frames}")
        if self.frame_width <= 0 or self.frame_height <= 0:
            raise InvalidSettingsError(f"Invalid frame size: {self.frame_width} {self.frame_height}")
        if self.output_format not in OUTPUT_FORMATS:
            raise InvalidSettingsError(f"Unsupported output format: {self.output_format}")

    @property
    def image_size(self) -> tuple[int, int]:
        """Per-camera image size (width, height)."""
        return self.frame_width, self.frame_height


@dataclass
class CalibrationConfig:
    """
    Configuration container loaded from YAML.

    Wraps configuration dictionary with type hints for common access patterns.
    """

    config: dict[str, Any]

    @classmethod
    def from_yaml(cls, path: Path) -> "CalibrationConfig":
        """Load configuration from YAML file."""
        import yaml

        with Path(path).open() as f:
            config = yaml.safe_load(f)
        if not isinstance(config, dict):
            raise InvalidSettingsError(f"Configuration file {path} does not contain a mapping")
        return cls(config=config)

    def get(self, key: str, default: Any = None) -> Any:
        """Get nested config value using dot notation (e.g., 'pattern.board_width')."""
        keys = key.split(".")
        value = self.config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default
        return value

    @property
    def pattern(self) -> PatternSpec:
        """Build and validate the calibration target."""
        return PatternSpec(
            pattern_type=PatternType.from_name(self.get("pattern.type", "CHESSBOARD")),
            board_size=(int(self.get("pattern.board_width", 0)), int(self.get("pattern.board_height", 0))),
            square_size=float(self.get("pattern.square_size", 0.0)),
        )

    @property
    def flags(self) -> CalibrationFlags:
        return CalibrationFlags(
            fix_aspect_ratio=bool(self.get("calibration.fix_aspect_ratio", False)),
            zero_tangent_dist=bool(self.get("calibration.zero_tangent_dist", False)),
            fix_principal_point=bool(self.get("calibration.fix_principal_point", False)),
        )

    @property
    def output_path(self) -> Path | None:
        path = self.get("output.path", "stereo_calibration.yaml")
        return Path(path) if path else None

    @property
    def output_format(self) -> str:
        """Get output format, inferred from the output extension when not set."""
        fmt = self.get("output.format")
        if fmt:
            return str(fmt).lower()
        path = self.output_path
        if path is not None and path.suffix.lower() in (".json", ".npz"):
            return path.suffix.lower()[1:]
        return "yaml"

    @property
    def visualization_mode(self) -> str:
        """Get visualization mode ('show', 'save', or 'both')."""
        return self.get("visualization.mode", "save")

    def to_settings(self) -> Settings:
        """Validate the configuration and freeze it into Settings."""
        plots_dir = self.get("visualization.plots_dir")
        return Settings(
            pattern=self.pattern,
            flags=self.flags,
            target_frames=int(self.get("calibration.target_frames", 25)),
            frame_width=int(self.get("input.frame_width", 640)),
            frame_height=int(self.get("input.frame_height", 400)),
            input=str(self.get("input.source", "") or ""),
            flip_vertical=bool(self.get("input.flip_vertical", False)),
            delay_ms=int(self.get("input.delay_ms", 100)),
            output_path=self.output_path,
            output_format=self.output_format,
            write_points=bool(self.get("output.write_points", True)),
            write_extrinsics=bool(self.get("output.write_extrinsics", True)),
            show_undistorted=bool(self.get("visualization.show_undistorted", False)),
            plots_dir=Path(plots_dir) if plots_dir else None,
            visualization_mode=self.visualization_mode,
        )
