"""
Shared fixtures: a synthetic pinhole camera, known board poses, and
rendered chessboard views.
"""

import cv2
import matplotlib
import numpy as np
import pytest

matplotlib.use("Agg")

from stereo_calibration.utils.data_structures import PatternSpec, PatternType, Settings  # noqa: E402
from stereo_calibration.utils.pattern import board_corner_positions  # noqa: E402

IMAGE_SIZE = (640, 400)
K_TRUE = np.array([[800.0, 0.0, 320.0], [0.0, 800.0, 200.0], [0.0, 0.0, 1.0]])

RVECS = [
    np.array([0.20, 0.10, 0.00]),
    np.array([-0.20, 0.15, 0.05]),
    np.array([0.10, -0.25, 0.10]),
    np.array([-0.15, -0.10, -0.05]),
    np.array([0.25, 0.20, 0.02]),
    np.array([-0.05, 0.25, -0.08]),
]
TVECS = [
    np.array([-100.0, -62.0, 700.0]),
    np.array([-90.0, -70.0, 650.0]),
    np.array([-110.0, -55.0, 750.0]),
    np.array([-95.0, -65.0, 680.0]),
    np.array([-105.0, -60.0, 720.0]),
    np.array([-100.0, -58.0, 690.0]),
]


@pytest.fixture
def chessboard_spec() -> PatternSpec:
    return PatternSpec(PatternType.CHESSBOARD, (9, 6), 25.0)


@pytest.fixture
def settings(chessboard_spec) -> Settings:
    return Settings(pattern=chessboard_spec, target_frames=13, frame_width=IMAGE_SIZE[0], frame_height=IMAGE_SIZE[1])


@pytest.fixture
def synthetic_views(chessboard_spec):
    """
    Noise-free views of the board under known poses.

    Returns:
        Tuple of (objpoints, imgpoints_list, rvecs, tvecs)
    """
    objp = board_corner_positions(chessboard_spec)
    imgpoints = []
    for rvec, tvec in zip(RVECS, TVECS, strict=True):
        proj, _ = cv2.projectPoints(objp, rvec, tvec, K_TRUE, None)
        imgpoints.append(proj.reshape(-1, 2).astype(np.float32))
    return objp, imgpoints, RVECS, TVECS


def _render_board(spec: PatternSpec, rvec: np.ndarray, tvec: np.ndarray, px_per_square: int = 20) -> np.ndarray:
    """Render a chessboard seen by the synthetic camera (grayscale, IMAGE_SIZE)."""
    margin = px_per_square
    cols, rows = spec.width + 1, spec.height + 1
    texture = np.full((rows * px_per_square + 2 * margin, cols * px_per_square + 2 * margin), 255, np.uint8)
    for r in range(rows):
        for c in range(cols):
            if (r + c) % 2 == 0:
                y0 = margin + r * px_per_square
                x0 = margin + c * px_per_square
                texture[y0 : y0 + px_per_square, x0 : x0 + px_per_square] = 0

    # Texture pixel -> board coordinates; inner corner (j, i) sits at (j*s, i*s)
    s = spec.square_size / px_per_square
    offset = -spec.square_size * (margin / px_per_square + 1) + 0.5 * s
    texture_to_board = np.array([[s, 0, offset], [0, s, offset], [0, 0, 1]])

    R, _ = cv2.Rodrigues(rvec.reshape(3, 1))
    board_to_image = K_TRUE @ np.column_stack([R[:, 0], R[:, 1], tvec.reshape(3)])
    H = board_to_image @ texture_to_board
    img = cv2.warpPerspective(texture, H, IMAGE_SIZE, flags=cv2.INTER_LINEAR, borderValue=200)
    return cv2.GaussianBlur(img, (3, 3), 0)


@pytest.fixture
def render_board(chessboard_spec):
    """Callable rendering the board at pose index i."""

    def _render(i: int) -> np.ndarray:
        return _render_board(chessboard_spec, RVECS[i], TVECS[i])

    return _render


@pytest.fixture
def render_stereo_frame(render_board):
    """Callable rendering a side-by-side BGR stereo frame at pose index i."""

    def _render(i: int, right_visible: bool = True) -> np.ndarray:
        left = render_board(i)
        right = render_board(i) if right_visible else np.full_like(left, 200)
        return cv2.cvtColor(np.hstack([left, right]), cv2.COLOR_GRAY2BGR)

    return _render


@pytest.fixture
def calibrated_rig(chessboard_spec, synthetic_views):
    """StereoCalibration of two identical synthetic cameras."""
    from stereo_calibration.utils.calibration import run_calibration
    from stereo_calibration.utils.data_structures import StereoCalibration

    objp, imgpoints, _, _ = synthetic_views
    return StereoCalibration(
        left=run_calibration(objp, imgpoints, IMAGE_SIZE, camera_name="left"),
        right=run_calibration(objp, imgpoints, IMAGE_SIZE, camera_name="right"),
        pattern=chessboard_spec,
        image_size=IMAGE_SIZE,
    )
