"""
Object point layout of planar calibration targets.
"""

import numpy as np

from .data_structures import PatternSpec, PatternType


def board_corner_positions(spec: PatternSpec) -> np.ndarray:
    """
    Compute the 3D positions of the target's feature points on the z=0 plane.

    Points are ordered row-major (i = row, j = column) to match the order the
    pattern detectors return. Chessboards and symmetric grids sit at
    (j*s, i*s, 0); asymmetric grids are staggered at ((2j + i % 2)*s, i*s, 0).

    Args:
        spec: Validated pattern geometry

    Returns:
        Object points (Nx3 float32), N = width * height
    """
    i, j = np.mgrid[0 : spec.height, 0 : spec.width]
    i = i.ravel()
    j = j.ravel()

    if spec.pattern_type == PatternType.ASYMMETRIC_CIRCLES_GRID:
        x = 2 * j + i % 2
    else:
        x = j

    objp = np.zeros((spec.num_points, 3), np.float32)
    objp[:, 0] = x * spec.square_size
    objp[:, 1] = i * spec.square_size
    return objp
