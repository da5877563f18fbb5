"""
Per-camera collection of accepted views.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, eq=False)
class ViewCorrespondence:
    """One accepted view: shared object points paired with its image points."""

    objpoints: np.ndarray
    imgpoints: np.ndarray
    capture_index: int


class CorrespondenceAccumulator:
    """
    Append-only store of accepted views for one camera.

    All views share the same object point array. Joint acceptance across
    cameras is enforced by the session controller, not here.
    """

    def __init__(self, objpoints: np.ndarray):
        self.objpoints = np.array(objpoints, dtype=np.float32).reshape(-1, 3)
        self.objpoints.setflags(write=False)
        self._views: list[ViewCorrespondence] = []
        self._next_index = 0

    def accept(self, imgpoints: np.ndarray) -> ViewCorrespondence:
        """
        Record a view.

        Raises:
            ValueError: If the point count differs from the object points
        """
        pts = np.array(imgpoints, dtype=np.float32).reshape(-1, 2)
        if len(pts) != len(self.objpoints):
            raise ValueError(f"View has {len(pts)} image points, expected {len(self.objpoints)}")
        pts.setflags(write=False)
        view = ViewCorrespondence(objpoints=self.objpoints, imgpoints=pts, capture_index=self._next_index)
        self._views.append(view)
        self._next_index += 1
        return view

    def reset(self) -> None:
        """Drop all accepted views."""
        self._views.clear()

    def count(self) -> int:
        return len(self._views)

    def __len__(self) -> int:
        return len(self._views)

    @property
    def views(self) -> tuple[ViewCorrespondence, ...]:
        return tuple(self._views)

    @property
    def imgpoints(self) -> list[np.ndarray]:
        """Image points of all accepted views, in acceptance order."""
        return [v.imgpoints for v in self._views]
