"""
Visualization utilities for calibration sessions and results.

Provides the live view overlay (detected corners, status text, undistorted
preview) and diagnostic plots with support for both display and file saving
modes.
"""

import logging
from pathlib import Path

import cv2
import matplotlib.pyplot as plt
import numpy as np

from .data_structures import CameraIndex, PatternSpec, SessionMode, StereoCalibration
from .detection import StereoDetection

logger = logging.getLogger(__name__)

RED = (0, 0, 255)
GREEN = (0, 255, 0)


# -------------------------
# Live view overlay
# -------------------------


def draw_detections(view: np.ndarray, detection: StereoDetection, spec: PatternSpec, left_width: int) -> np.ndarray:
    """
    Draw detected pattern points of both halves onto the combined frame.

    Right image points are shifted by the left image width.
    """
    if detection.left_found:
        cv2.drawChessboardCorners(view, spec.board_size, detection.left_points.reshape(-1, 1, 2), True)
    if detection.right_found:
        shifted = detection.right_points.reshape(-1, 2) + np.array([left_width, 0], dtype=np.float32)
        cv2.drawChessboardCorners(view, spec.board_size, shifted.reshape(-1, 1, 2).astype(np.float32), True)
    return view


def status_message(mode: SessionMode, view_count: int, target: int, show_undistorted: bool = False) -> str:
    """Text shown in the corner of the live view."""
    if mode == SessionMode.CAPTURING:
        msg = f"{view_count}/{target}"
        return f"{msg} Undist" if show_undistorted else msg
    if mode == SessionMode.CALIBRATED:
        return "Calibrated"
    return "Press 'g' to start"


def draw_status(view: np.ndarray, message: str, mode: SessionMode) -> np.ndarray:
    """Put the status message at the bottom right of the view."""
    (text_w, _), baseline = cv2.getTextSize(message, cv2.FONT_HERSHEY_PLAIN, 1, 1)
    origin = (view.shape[1] - 2 * text_w - 10, view.shape[0] - 2 * baseline - 10)
    color = GREEN if mode == SessionMode.CALIBRATED else RED
    cv2.putText(view, message, origin, cv2.FONT_HERSHEY_PLAIN, 1, color)
    return view


def undistort_stereo_view(
    frame: np.ndarray, calibration: StereoCalibration, frame_size: tuple[int, int]
) -> np.ndarray:
    """Undistort both halves of a stereo frame and put them back side by side."""
    width, height = frame_size
    left = frame[:height, :width]
    right = frame[:height, width : 2 * width]
    und_left = cv2.undistort(left, calibration.left.K, calibration.left.dist)
    und_right = cv2.undistort(right, calibration.right.K, calibration.right.dist)
    return np.hstack([und_left, und_right])


def render_view(
    frame: np.ndarray,
    mode: SessionMode,
    view_count: int,
    target: int,
    spec: PatternSpec,
    frame_size: tuple[int, int],
    detection: StereoDetection | None = None,
    calibration: StereoCalibration | None = None,
    show_undistorted: bool = False,
    blink: bool = False,
) -> np.ndarray:
    """
    Compose the live view for one cycle.

    Args:
        frame: Combined stereo frame
        mode: Session mode
        view_count: Accepted views so far
        target: Target number of views
        spec: Target geometry
        frame_size: Per-camera (width, height)
        detection: Detection outcome of the cycle
        calibration: Current calibration, used for the undistorted preview
        show_undistorted: Show the undistorted preview when calibrated
        blink: Invert the view (signals an accepted view)

    Returns:
        Annotated copy of the frame
    """
    if mode == SessionMode.CALIBRATED and show_undistorted and calibration is not None:
        view = undistort_stereo_view(frame, calibration, frame_size)
    else:
        view = frame.copy()
        if detection is not None and detection.both_found:
            draw_detections(view, detection, spec, frame_size[0])

    draw_status(view, status_message(mode, view_count, target, show_undistorted), mode)
    if blink:
        view = cv2.bitwise_not(view)
    return view


# -------------------------
# Diagnostic plots
# -------------------------


def _handle_figure_output(fig: plt.Figure, output_path: Path | None, mode: str) -> None:
    """Handle figure display or saving based on mode."""
    if mode in ("save", "both") and output_path is not None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
    if mode in ("show", "both"):
        plt.show()
    else:
        plt.close(fig)


def plot_reprojection_errors(
    calibration: StereoCalibration,
    output_path: Path | None = None,
    mode: str = "save",
    figsize: tuple[float, float] = (12, 4),
) -> None:
    """
    Bar chart of per-view reprojection errors for both cameras.

    Args:
        calibration: Calibration of both cameras
        output_path: Path to save figure (if mode includes 'save')
        mode: 'show', 'save', or 'both'
        figsize: Figure size
    """
    fig, axes = plt.subplots(1, 2, figsize=figsize, sharey=True)
    for ax, idx in zip(axes, CameraIndex, strict=True):
        cam = calibration.get_camera(idx)
        name = idx.name.capitalize()
        if cam is None:
            ax.set_title(f"{name}: not calibrated")
            continue
        errors = cam.report.per_view_errors
        ax.bar(np.arange(len(errors)), errors, color="steelblue")
        ax.axhline(cam.report.rms, color="red", linestyle="--", label=f"RMS {cam.report.rms:.3f} px")
        ax.set_xlabel("View")
        ax.set_title(f"{name} camera")
        ax.legend()
    axes[0].set_ylabel("Reprojection error (px)")
    plt.tight_layout()

    _handle_figure_output(fig, output_path, mode)


def plot_imagepoints_coverage(
    calibration: StereoCalibration,
    output_path: Path | None = None,
    mode: str = "save",
    bins: int = 40,
    figsize: tuple[float, float] = (12, 5),
) -> None:
    """
    Heatmap of where the calibration points fall in each image.

    Args:
        calibration: Calibration of both cameras
        output_path: Path to save figure
        mode: 'show', 'save', or 'both'
        bins: Number of bins for 2D histogram
        figsize: Figure size
    """
    fig, axes = plt.subplots(1, 2, figsize=figsize)
    for ax, idx in zip(axes, CameraIndex, strict=True):
        cam = calibration.get_camera(idx)
        name = idx.name.capitalize()
        if cam is None or not cam.imgpoints:
            ax.set_title(f"{name}: no image points")
            continue
        width, height = cam.image_size
        all_points = np.vstack([p.reshape(-1, 2) for p in cam.imgpoints])
        h, xedges, yedges = np.histogram2d(
            all_points[:, 0], all_points[:, 1], bins=bins, range=[[0, width], [0, height]]
        )
        extent = [xedges[0], xedges[-1], yedges[-1], yedges[0]]
        im = ax.imshow(h.T, extent=extent, cmap="hot", aspect="auto", interpolation="bilinear")
        ax.set_xlabel("X (pixels)")
        ax.set_ylabel("Y (pixels)")
        ax.set_title(f"{name}: {len(all_points)} points from {len(cam.imgpoints)} views")
        plt.colorbar(im, ax=ax, label="Point Count")
    plt.tight_layout()

    _handle_figure_output(fig, output_path, mode)


def save_diagnostic_plots(calibration: StereoCalibration, plots_dir: Path, mode: str = "save") -> None:
    """Write all diagnostic plots for a calibration into a directory."""
    plots_dir = Path(plots_dir)
    plot_reprojection_errors(calibration, plots_dir / "reprojection_errors.png", mode)
    plot_imagepoints_coverage(calibration, plots_dir / "imagepoints_coverage.png", mode)
    logger.info("Diagnostic plots written to %s", plots_dir)
