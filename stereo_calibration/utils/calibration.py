"""
Intrinsic camera calibration and reprojection error scoring.

Wraps cv2.calibrateCamera with the session's constraint options and checks
the solved parameters before they are accepted.
"""

import logging
from collections.abc import Callable

import cv2
import numpy as np

from .data_structures import CalibrationFlags, CameraCalibration, CameraModel, ReprojectionReport
from .errors import DivergentEstimationError, EstimationError

logger = logging.getLogger(__name__)

NUM_DIST_COEFFS = 8
MAX_PARAMETER_MAGNITUDE = 1e12


# -------------------------
# Helper functions
# -------------------------


def _standardize_points(
    obj_list: list[np.ndarray], img_list: list[np.ndarray]
) -> tuple[list[np.ndarray], list[np.ndarray]]:
    """Standardize object and image point arrays to consistent dtypes."""
    o_list = [np.array(o, dtype=np.float32).reshape(-1, 3) for o in obj_list]
    i_list = [np.array(i, dtype=np.float32).reshape(-1, 1, 2) for i in img_list]
    return o_list, i_list


def _in_range(values: np.ndarray) -> bool:
    """Check that every value is finite and below the magnitude bound."""
    values = np.asarray(values, dtype=np.float64)
    return bool(np.all(np.isfinite(values)) and np.all(np.abs(values) < MAX_PARAMETER_MAGNITUDE))


def _initial_camera_matrix(flags: CalibrationFlags) -> np.ndarray:
    K = np.eye(3, dtype=np.float64)
    if flags.fix_aspect_ratio:
        # Solver keeps fx/fy at the ratio of the initial guess
        K[0, 0] = 1.0
    return K


# -------------------------
# Main calibration functions
# -------------------------


def estimate_camera_model(
    objpoints: np.ndarray,
    imgpoints_list: list[np.ndarray],
    image_size: tuple[int, int],
    flags: CalibrationFlags | None = None,
) -> tuple[CameraModel, float]:
    """
    Solve intrinsics, distortion and per-view poses for one camera.

    The intrinsic matrix starts at identity and the distortion at zero.
    k4 and k5 are always held at zero; the other constraints come from flags.

    Args:
        objpoints: Board object points (Nx3), shared by every view
        imgpoints_list: One Nx2 image point array per view
        image_size: Image dimensions (width, height)
        flags: Solver constraints

    Returns:
        Tuple of (model, solver_rms)

    Raises:
        ValueError: If no views are given or a view has the wrong point count
        EstimationError: If the solver fails on the input
        DivergentEstimationError: If the solved parameters are non-finite or out of range
    """
    if len(imgpoints_list) == 0:
        raise ValueError("Need at least 1 view for calibration")
    flags = flags if flags is not None else CalibrationFlags()

    objp = np.array(objpoints, dtype=np.float32).reshape(-1, 3)
    for idx, pts in enumerate(imgpoints_list):
        n = np.asarray(pts).reshape(-1, 2).shape[0]
        if n != len(objp):
            raise ValueError(f"View {idx} has {n} image points, expected {len(objp)}")

    obj_list, img_list = _standardize_points([objp] * len(imgpoints_list), imgpoints_list)

    K0 = _initial_camera_matrix(flags)
    dist0 = np.zeros((NUM_DIST_COEFFS, 1), dtype=np.float64)

    try:
        rms, K, dist, rvecs, tvecs = cv2.calibrateCamera(
            obj_list, img_list, image_size, K0, dist0, flags=flags.to_cv_flags()
        )
    except cv2.error as e:
        raise EstimationError(f"Camera calibration solver failed: {e}") from e

    logger.info("Re-projection error reported by calibrateCamera: %.6f", rms)

    if not (_in_range(K) and _in_range(dist) and np.isfinite(rms)):
        raise DivergentEstimationError("Solved camera parameters are out of range")
    if K[0, 0] <= 0 or K[1, 1] <= 0:
        raise DivergentEstimationError(f"Solved focal lengths are not positive: fx={K[0, 0]} fy={K[1, 1]}")

    dist_flat = np.asarray(dist, dtype=np.float64).ravel()
    dist_out = np.zeros(NUM_DIST_COEFFS, dtype=np.float64)
    n = min(NUM_DIST_COEFFS, dist_flat.size)
    dist_out[:n] = dist_flat[:n]

    model = CameraModel(
        camera_matrix=np.asarray(K, dtype=np.float64),
        dist_coeffs=dist_out,
        rvecs=tuple(np.asarray(r, dtype=np.float64).reshape(3, 1) for r in rvecs),
        tvecs=tuple(np.asarray(t, dtype=np.float64).reshape(3, 1) for t in tvecs),
    )
    return model, float(rms)


def compute_reprojection_errors(
    objpoints_list: list[np.ndarray],
    imgpoints_list: list[np.ndarray],
    rvecs: list[np.ndarray] | tuple[np.ndarray, ...],
    tvecs: list[np.ndarray] | tuple[np.ndarray, ...],
    K: np.ndarray,
    dist: np.ndarray,
) -> ReprojectionReport:
    """
    Compute per-view and aggregate RMS reprojection errors.

    Each view's object points are projected through its pose and the camera
    model. The per-view error is sqrt(||residual||^2 / n); the aggregate is
    the RMS over all points of all views.

    Args:
        objpoints_list: Object points per view
        imgpoints_list: Observed image points per view
        rvecs, tvecs: Per-view poses
        K, dist: Camera model

    Returns:
        ReprojectionReport
    """
    per_view = []
    total_err = 0.0
    total_points = 0
    for o, i, rvec, tvec in zip(objpoints_list, imgpoints_list, rvecs, tvecs, strict=True):
        o = np.asarray(o, dtype=np.float32).reshape(-1, 3)
        proj, _ = cv2.projectPoints(o, rvec, tvec, K, dist)
        residual = proj.reshape(-1, 2).astype(np.float64) - np.asarray(i, dtype=np.float64).reshape(-1, 2)
        err_sq = float(np.sum(residual * residual))
        n = len(o)
        per_view.append(np.sqrt(err_sq / n))
        total_err += err_sq
        total_points += n

    rms = float(np.sqrt(total_err / total_points)) if total_points else 0.0
    return ReprojectionReport(per_view_errors=np.array(per_view, dtype=np.float64), rms=rms)


def run_calibration(
    objpoints: np.ndarray,
    imgpoints_list: list[np.ndarray],
    image_size: tuple[int, int],
    flags: CalibrationFlags | None = None,
    camera_name: str = "camera",
    estimator: Callable[..., tuple[CameraModel, float]] = estimate_camera_model,
) -> CameraCalibration:
    """
    Estimate a camera model and score it.

    Args:
        objpoints: Board object points, shared by every view
        imgpoints_list: Image points per view
        image_size: Image dimensions (width, height)
        flags: Solver constraints
        camera_name: Label used in log messages
        estimator: Model estimator, same contract as estimate_camera_model

    Returns:
        CameraCalibration with the model and its reprojection report

    Raises:
        ValueError, EstimationError: As estimate_camera_model
    """
    flags = flags if flags is not None else CalibrationFlags()
    model, solver_rms = estimator(objpoints, imgpoints_list, image_size, flags)

    obj_list, img_list = _standardize_points([objpoints] * len(imgpoints_list), imgpoints_list)
    report = compute_reprojection_errors(
        obj_list, img_list, model.rvecs, model.tvecs, model.camera_matrix, model.dist_coeffs
    )
    logger.info(
        "Calibration of %s succeeded with %d views. avg re-projection error = %.6f",
        camera_name,
        len(img_list),
        report.rms,
    )

    return CameraCalibration(
        model=model,
        report=report,
        solver_rms=solver_rms,
        image_size=tuple(image_size),
        flags=flags,
        imgpoints=[i.reshape(-1, 2) for i in img_list],
    )
