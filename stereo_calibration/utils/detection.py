"""
Calibration pattern detection utilities.

Provides sub-pixel feature detection on a single image, splitting of
side-by-side stereo frames, and batch detection over image lists with
support for parallel processing.
"""

import logging
import multiprocessing as mp
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import cv2
import numpy as np
from tqdm.auto import tqdm

from .data_structures import PatternSpec, PatternType
from .errors import InvalidFrameSizeError

logger = logging.getLogger(__name__)

CHESSBOARD_FLAGS = cv2.CALIB_CB_ADAPTIVE_THRESH | cv2.CALIB_CB_FAST_CHECK | cv2.CALIB_CB_NORMALIZE_IMAGE
SUBPIX_WINDOW = (11, 11)
SUBPIX_ZERO_ZONE = (-1, -1)
SUBPIX_CRITERIA = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.1)

Detector = Callable[[np.ndarray, PatternSpec], tuple[bool, np.ndarray]]


def _empty_points() -> np.ndarray:
    return np.zeros((0, 2), np.float32)


@dataclass
class StereoDetection:
    """
    Detection outcome for one stereo frame.

    Attributes:
        left_found: Pattern fully detected in the left half
        left_points: Left image points (Nx2 float32, empty when not found)
        right_found: Pattern fully detected in the right half
        right_points: Right image points (Nx2 float32, empty when not found)
        image_size: Per-camera image dimensions (width, height)
    """

    left_found: bool = False
    left_points: np.ndarray = field(default_factory=_empty_points)
    right_found: bool = False
    right_points: np.ndarray = field(default_factory=_empty_points)
    image_size: tuple[int, int] | None = None

    @property
    def both_found(self) -> bool:
        return self.left_found and self.right_found


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def detect_pattern(image: np.ndarray, spec: PatternSpec) -> tuple[bool, np.ndarray]:
    """
    Detect the calibration pattern in a single image.

    Chessboard corners are found with adaptive thresholding, fast rejection
    and normalization, then refined with cornerSubPix (11x11 window, no zero
    zone, stop at 30 iterations or a shift below 0.1). Circle grid centers
    come out of the blob detector already at sub-pixel accuracy.

    Args:
        image: BGR or grayscale image
        spec: Target geometry

    Returns:
        Tuple of (found, points). points is an Nx2 float32 array in the same
        order as the board's object points, or empty when the pattern was not
        found completely.
    """
    gray = _to_gray(image)

    if spec.pattern_type == PatternType.CHESSBOARD:
        found, corners = cv2.findChessboardCorners(gray, spec.board_size, flags=CHESSBOARD_FLAGS)
    elif spec.pattern_type == PatternType.CIRCLES_GRID:
        found, corners = cv2.findCirclesGrid(gray, spec.board_size, flags=cv2.CALIB_CB_SYMMETRIC_GRID)
    else:
        found, corners = cv2.findCirclesGrid(gray, spec.board_size, flags=cv2.CALIB_CB_ASYMMETRIC_GRID)

    if not found or corners is None or len(corners) != spec.num_points:
        return False, _empty_points()

    corners = corners.astype(np.float32, copy=False).reshape(-1, 1, 2)
    if spec.pattern_type == PatternType.CHESSBOARD:
        corners = cv2.cornerSubPix(gray, corners, SUBPIX_WINDOW, SUBPIX_ZERO_ZONE, SUBPIX_CRITERIA)

    return True, corners.reshape(-1, 2)


def split_stereo_frame(frame: np.ndarray, left_width: int, height: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Split a side-by-side stereo frame into its left and right images.

    Args:
        frame: Combined frame, at least (2 * left_width) x height
        left_width: Width of one camera image
        height: Height of one camera image

    Returns:
        Tuple of (left, right) views into the frame, each left_width x height

    Raises:
        InvalidFrameSizeError: If the frame is smaller than the stereo layout
    """
    frame_h, frame_w = frame.shape[:2]
    if frame_w < 2 * left_width or frame_h < height:
        raise InvalidFrameSizeError((frame_w, frame_h), (2 * left_width, height))

    left = frame[:height, :left_width]
    right = frame[:height, left_width : 2 * left_width]
    return left, right


def detect_stereo_frame(
    frame: np.ndarray,
    spec: PatternSpec,
    frame_size: tuple[int, int],
    flip_vertical: bool = False,
    detector: Detector = detect_pattern,
) -> StereoDetection:
    """
    Split a stereo frame and run the detector on both halves.

    Args:
        frame: Combined stereo frame
        spec: Target geometry
        frame_size: Per-camera (width, height)
        flip_vertical: Flip around the horizontal axis before splitting
        detector: Single-image detector

    Returns:
        StereoDetection for the frame

    Raises:
        InvalidFrameSizeError: If the frame is smaller than the stereo layout
    """
    if flip_vertical:
        frame = cv2.flip(frame, 0)

    width, height = frame_size
    left, right = split_stereo_frame(frame, width, height)
    left_found, left_points = detector(left, spec)
    right_found, right_points = detector(right, spec)

    return StereoDetection(
        left_found=left_found,
        left_points=left_points,
        right_found=right_found,
        right_points=right_points,
        image_size=(left.shape[1], left.shape[0]),
    )


def _detect_single_image(args: tuple[Any, ...]) -> dict[str, Any]:
    """
    Worker function for parallel stereo detection.

    Args:
        args: Tuple of (image_path, img_idx, spec, frame_size, flip_vertical)

    Returns:
        Dictionary with detection results
    """
    image_path, img_idx, spec, frame_size, flip_vertical = args

    img = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
    if img is None:
        return {"img_idx": img_idx, "success": False, "error": "unreadable image"}

    try:
        detection = detect_stereo_frame(img, spec, frame_size, flip_vertical)
    except InvalidFrameSizeError as e:
        return {"img_idx": img_idx, "success": False, "error": str(e)}

    return {"img_idx": img_idx, "success": True, "detection": detection}


def detect_stereo_images(
    image_paths: list[str | Path],
    spec: PatternSpec,
    frame_size: tuple[int, int],
    flip_vertical: bool = False,
    num_workers: int = 1,
    progress: bool = True,
) -> list[StereoDetection | None]:
    """
    Detect the pattern in a list of stereo images using parallel processing.

    Args:
        image_paths: Paths to combined stereo images
        spec: Target geometry
        frame_size: Per-camera (width, height)
        flip_vertical: Flip images around the horizontal axis
        num_workers: Number of parallel workers (-1 = all cores, 1 = serial)
        progress: Show progress bar

    Returns:
        One entry per input path, in input order: the StereoDetection, or None
        when the image could not be read or had the wrong size.
    """
    args_list = [(path, idx, spec, frame_size, flip_vertical) for idx, path in enumerate(image_paths)]

    if num_workers == -1:
        num_workers = mp.cpu_count()

    if num_workers == 1:
        # Serial processing
        iterator = tqdm(args_list, desc="Detecting patterns") if progress else args_list
        results = [_detect_single_image(args) for args in iterator]
    else:
        # Parallel processing
        with mp.Pool(num_workers) as pool:
            iterator = pool.imap(_detect_single_image, args_list)
            if progress:
                iterator = tqdm(iterator, total=len(args_list), desc="Detecting patterns")
            results = list(iterator)

    detections: list[StereoDetection | None] = [None] * len(image_paths)
    for result in results:
        if result["success"]:
            detections[result["img_idx"]] = result["detection"]
        else:
            logger.warning("Skipping %s: %s", image_paths[result["img_idx"]], result["error"])

    found = sum(1 for d in detections if d is not None and d.both_found)
    logger.info("Pattern found in both halves of %d/%d images", found, len(image_paths))
    return detections
