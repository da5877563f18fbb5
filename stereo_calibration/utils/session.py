"""
Stereo calibration session controller.

Drives the capture loop for both cameras: joint acceptance of views, mode
transitions, and the combined success gate on calibration.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

import cv2
import numpy as np

from .accumulator import CorrespondenceAccumulator
from .calibration import estimate_camera_model, run_calibration
from .data_structures import CameraCalibration, CameraIndex, SessionMode, Settings, StereoCalibration
from .detection import Detector, StereoDetection, detect_pattern, detect_stereo_frame
from .errors import EstimationError, InsufficientViewsError, InvalidFrameSizeError
from .pattern import board_corner_positions
from .sources import FrameSource

logger = logging.getLogger(__name__)


class SessionCommand(Enum):
    """Commands an observer can send back to the acquisition loop."""

    CONTINUE = "continue"
    RECAPTURE = "recapture"
    EXIT = "exit"


@dataclass
class CycleResult:
    """
    Outcome of one acquisition cycle.

    Attributes:
        mode: Session mode after the cycle
        view_count: Views accumulated per camera after the cycle
        frame: Frame the cycle processed (after flipping), if any
        detection: Detection outcome, None when the frame was skipped
        accepted: A joint view was accepted this cycle
        calibration_attempted: Estimation ran this cycle
        skipped: The frame had an invalid size
    """

    mode: SessionMode
    view_count: int
    frame: np.ndarray | None = None
    detection: StereoDetection | None = None
    accepted: bool = False
    calibration_attempted: bool = False
    skipped: bool = False


class CameraSession:
    """Accepted views and latest calibration of one camera."""

    def __init__(
        self,
        index: CameraIndex,
        objpoints: np.ndarray,
        settings: Settings,
        estimator: Callable = estimate_camera_model,
    ):
        self.index = index
        self.name = index.name.lower()
        self.settings = settings
        self.estimator = estimator
        self.accumulator = CorrespondenceAccumulator(objpoints)
        self.calibration: CameraCalibration | None = None

    def accept(self, imgpoints: np.ndarray) -> None:
        self.accumulator.accept(imgpoints)

    def reset(self) -> None:
        self.accumulator.reset()

    def count(self) -> int:
        return self.accumulator.count()

    def calibrate(self, image_size: tuple[int, int]) -> CameraCalibration:
        """Run estimation on the accepted views."""
        return run_calibration(
            self.accumulator.objpoints,
            self.accumulator.imgpoints,
            image_size,
            self.settings.flags,
            camera_name=self.name,
            estimator=self.estimator,
        )


class StereoCalibrationSession:
    """
    Capture-mode state machine for a stereo rig.

    A view is accepted only when the pattern is found in both halves of the
    same frame. Once the target number of views is reached both cameras are
    calibrated; the session is CALIBRATED only if both succeed, otherwise it
    falls back to DETECTION with all views dropped.

    Args:
        settings: Session settings
        live: Input is a live feed (camera or stream) that supports re-capture
        detector: Single-image pattern detector
        estimator: Camera model estimator
        on_calibrated: Called with the result every time both cameras calibrate
    """

    def __init__(
        self,
        settings: Settings,
        live: bool = False,
        detector: Detector = detect_pattern,
        estimator: Callable = estimate_camera_model,
        on_calibrated: Callable[[StereoCalibration], None] | None = None,
    ):
        self.settings = settings
        self.live = live
        self.detector = detector
        self.on_calibrated = on_calibrated

        objpoints = board_corner_positions(settings.pattern)
        self.cameras = (
            CameraSession(CameraIndex.LEFT, objpoints, settings, estimator),
            CameraSession(CameraIndex.RIGHT, objpoints, settings, estimator),
        )
        self.mode = SessionMode.DETECTION if live else SessionMode.CAPTURING
        self.image_size: tuple[int, int] | None = None
        self.last_accepted_at: float | None = None
        self.calibration: StereoCalibration | None = None
        self._frame_index = 0

    @classmethod
    def for_source(cls, settings: Settings, source: FrameSource, **kwargs) -> "StereoCalibrationSession":
        """Create a session for a frame source, capping the target at the source length."""
        if not source.is_live and source.frame_count is not None and source.frame_count < settings.target_frames:
            logger.info(
                "Input has %d frames, lowering target from %d", source.frame_count, settings.target_frames
            )
            settings = replace(settings, target_frames=max(1, source.frame_count))
        return cls(settings, live=source.is_live, **kwargs)

    @property
    def left(self) -> CameraSession:
        return self.cameras[CameraIndex.LEFT]

    @property
    def right(self) -> CameraSession:
        return self.cameras[CameraIndex.RIGHT]

    @property
    def view_count(self) -> int:
        return self.left.count()

    def _set_mode(self, mode: SessionMode) -> None:
        if mode != self.mode:
            logger.info("Mode %s -> %s", self.mode.name, mode.name)
        self.mode = mode

    def _reset_views(self) -> None:
        for cam in self.cameras:
            cam.reset()

    def process_frame(self, frame: np.ndarray) -> CycleResult:
        """Split and detect one stereo frame, then advance the state machine."""
        self._frame_index += 1
        if self.settings.flip_vertical:
            frame = cv2.flip(frame, 0)

        try:
            detection = detect_stereo_frame(
                frame, self.settings.pattern, self.settings.image_size, detector=self.detector
            )
        except InvalidFrameSizeError as e:
            logger.warning("Skipping frame %d: %s", self._frame_index, e)
            return CycleResult(mode=self.mode, view_count=self.view_count, frame=frame, skipped=True)

        result = self.process_detections(detection)
        result.frame = frame
        return result

    def process_detections(self, detection: StereoDetection) -> CycleResult:
        """
        Advance the state machine with one frame's detection outcome.

        Args:
            detection: Detection results of both halves of a frame

        Returns:
            CycleResult for the cycle
        """
        if detection.image_size is not None:
            self.image_size = tuple(detection.image_size)

        accepted = False
        attempted = False
        expected = self.settings.pattern.num_points
        if (
            self.mode != SessionMode.CALIBRATED
            and detection.both_found
            and len(detection.left_points) == expected
            and len(detection.right_points) == expected
        ):
            self.left.accept(detection.left_points)
            self.right.accept(detection.right_points)
            self.last_accepted_at = time.monotonic()
            accepted = True
            logger.debug("Accepted view %d/%d", self.view_count, self.settings.target_frames)

            if self.view_count >= self.settings.target_frames:
                attempted = True
                self.calibrate()

        return CycleResult(
            mode=self.mode,
            view_count=self.view_count,
            detection=detection,
            accepted=accepted,
            calibration_attempted=attempted,
        )

    def calibrate(self) -> bool:
        """
        Calibrate both cameras from the accepted views.

        Returns:
            True if both cameras calibrated; the session is then CALIBRATED.
            Otherwise the views are dropped and the session returns to DETECTION.
        """
        image_size = self.image_size or self.settings.image_size
        results: dict[CameraIndex, CameraCalibration] = {}
        for cam in self.cameras:
            try:
                results[cam.index] = cam.calibrate(image_size)
            except EstimationError as e:
                logger.warning("Calibration of %s camera failed: %s", cam.name, e)

        if len(results) != len(self.cameras):
            self._reset_views()
            self._set_mode(SessionMode.DETECTION)
            return False

        for cam in self.cameras:
            cam.calibration = results[cam.index]
        self.calibration = StereoCalibration(
            left=results[CameraIndex.LEFT],
            right=results[CameraIndex.RIGHT],
            pattern=self.settings.pattern,
            image_size=tuple(image_size),
        )
        self._set_mode(SessionMode.CALIBRATED)
        logger.info(self.calibration.summary())

        if self.on_calibrated is not None:
            self.on_calibrated(self.calibration)
        return True

    def request_recapture(self) -> bool:
        """
        Start collecting views from scratch. Only available for live input.

        Returns:
            True if the session switched to CAPTURING
        """
        if not self.live:
            logger.info("Re-capture is only available for live input")
            return False
        self._reset_views()
        self._set_mode(SessionMode.CAPTURING)
        return True

    def finish(self) -> StereoCalibration:
        """
        Handle end of input.

        Runs a final calibration on whatever views were collected if the
        session is not calibrated yet. A calibration from before a re-capture
        does not count: the session must end in CALIBRATED.

        Returns:
            The session's calibration

        Raises:
            InsufficientViewsError: If the session did not end calibrated
        """
        if self.mode != SessionMode.CALIBRATED and self.view_count > 0:
            logger.info("Input ended with %d views, running calibration", self.view_count)
            self.calibrate()

        if self.mode != SessionMode.CALIBRATED:
            raise InsufficientViewsError(
                f"Input ended without a calibration ({self.view_count} views, "
                f"target {self.settings.target_frames})"
            )
        return self.calibration

    def run(
        self,
        source: FrameSource,
        observer: Callable[[CycleResult], SessionCommand | None] | None = None,
    ) -> StereoCalibration | None:
        """
        Acquisition loop: pull frames until the source ends or the observer exits.

        Args:
            source: Frame source
            observer: Called after every cycle; may return a SessionCommand

        Returns:
            The calibration at end of input, or the current calibration (None
            if there is none) when the observer requested exit

        Raises:
            InsufficientViewsError: If the input ended without a calibration
        """
        while True:
            frame = source.next()
            if frame is None:
                return self.finish()

            cycle = self.process_frame(frame)
            command = observer(cycle) if observer is not None else None

            if command == SessionCommand.EXIT:
                logger.info("Stopped by user")
                return self.calibration
            if command == SessionCommand.RECAPTURE:
                self.request_recapture()
