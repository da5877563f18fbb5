"""
Tests for the stereo calibration session state machine.
"""

import numpy as np
import pytest

from stereo_calibration.utils.calibration import estimate_camera_model
from stereo_calibration.utils.data_structures import SessionMode, Settings
from stereo_calibration.utils.detection import StereoDetection
from stereo_calibration.utils.errors import DivergentEstimationError, EstimationError, InsufficientViewsError
from stereo_calibration.utils.session import SessionCommand, StereoCalibrationSession
from stereo_calibration.utils.sources import FrameSource, ImageListSource

from conftest import IMAGE_SIZE


def _detection(points: np.ndarray, left_found: bool = True, right_found: bool = True) -> StereoDetection:
    empty = np.zeros((0, 2), np.float32)
    return StereoDetection(
        left_found=left_found,
        left_points=points if left_found else empty,
        right_found=right_found,
        right_points=points if right_found else empty,
        image_size=IMAGE_SIZE,
    )


def _with_target(settings: Settings, target: int) -> Settings:
    return Settings(
        pattern=settings.pattern,
        target_frames=target,
        frame_width=settings.frame_width,
        frame_height=settings.frame_height,
    )


class FakeSource(FrameSource):
    def __init__(self, frames, live=False):
        self.frames = list(frames)
        self.is_live = live
        self.frame_count = None if live else len(self.frames)

    def next(self):
        return self.frames.pop(0) if self.frames else None


def _cycling_detector(imgpoints):
    """Detector that returns the next synthetic view for every image it sees (left and right alike)."""
    state = {"call": 0}

    def detector(image, spec):
        view = imgpoints[(state["call"] // 2) % len(imgpoints)]
        state["call"] += 1
        return True, view

    return detector


def test_initial_mode_depends_on_liveness(settings):
    assert StereoCalibrationSession(settings, live=False).mode == SessionMode.CAPTURING
    assert StereoCalibrationSession(settings, live=True).mode == SessionMode.DETECTION


def test_view_rejected_unless_both_sides_found(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views
    session = StereoCalibrationSession(settings)

    for pts in imgpoints[:5]:
        assert session.process_detections(_detection(pts)).accepted

    result = session.process_detections(_detection(imgpoints[5], right_found=False))
    assert not result.accepted
    assert session.left.count() == 5
    assert session.right.count() == 5

    calibration = session.finish()
    assert session.mode == SessionMode.CALIBRATED
    assert calibration.left.report.rms < 0.01
    assert calibration.right.report.rms < 0.01
    assert calibration.left.num_detections() == 5


def test_wrong_point_count_rejected(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views
    session = StereoCalibrationSession(settings)
    result = session.process_detections(_detection(imgpoints[0][:-1]))
    assert not result.accepted
    assert session.view_count == 0


def test_calibrates_when_target_reached(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views
    calls = []
    session = StereoCalibrationSession(_with_target(settings, 3), on_calibrated=calls.append)

    results = [session.process_detections(_detection(pts)) for pts in imgpoints[:3]]

    assert not results[1].calibration_attempted
    assert results[2].calibration_attempted
    assert results[2].mode == SessionMode.CALIBRATED
    assert session.calibration.is_calibrated()
    assert calls == [session.calibration]


def test_no_accumulation_while_calibrated(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views
    session = StereoCalibrationSession(_with_target(settings, 3))
    for pts in imgpoints[:3]:
        session.process_detections(_detection(pts))

    result = session.process_detections(_detection(imgpoints[4]))
    assert not result.accepted
    assert session.view_count == 3
    assert session.mode == SessionMode.CALIBRATED


def test_one_camera_failing_resets_both(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views
    calls = {"n": 0}
    sink = []

    def right_diverges(objpoints, imgpoints_list, image_size, flags=None):
        calls["n"] += 1
        if calls["n"] == 2:
            raise DivergentEstimationError("diverged")
        return estimate_camera_model(objpoints, imgpoints_list, image_size, flags)

    session = StereoCalibrationSession(_with_target(settings, 3), estimator=right_diverges, on_calibrated=sink.append)
    for pts in imgpoints[:3]:
        result = session.process_detections(_detection(pts))

    assert result.calibration_attempted
    assert calls["n"] == 2
    assert session.mode == SessionMode.DETECTION
    assert session.left.count() == 0
    assert session.right.count() == 0
    assert session.calibration is None
    assert sink == []


def test_end_of_input_without_calibration(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views

    def failing(*args, **kwargs):
        raise EstimationError("solver failed")

    session = StereoCalibrationSession(settings, estimator=failing)
    for pts in imgpoints[:2]:
        session.process_detections(_detection(pts))

    with pytest.raises(InsufficientViewsError):
        session.finish()


def test_end_of_input_with_no_views(settings):
    with pytest.raises(InsufficientViewsError):
        StereoCalibrationSession(settings).finish()


def test_recapture_live(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views
    session = StereoCalibrationSession(_with_target(settings, 3), live=True)
    for pts in imgpoints[:3]:
        session.process_detections(_detection(pts))
    assert session.mode == SessionMode.CALIBRATED
    previous = session.calibration

    assert session.request_recapture()
    assert session.mode == SessionMode.CAPTURING
    assert session.view_count == 0
    assert session.calibration is previous

    # The result from before the re-capture does not satisfy end of input
    with pytest.raises(InsufficientViewsError):
        session.finish()


def test_failed_final_calibration_after_recapture(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views
    calls = {"n": 0}

    def diverges_after_first_rig(objpoints, imgpoints_list, image_size, flags=None):
        calls["n"] += 1
        if calls["n"] > 2:
            raise DivergentEstimationError("diverged")
        return estimate_camera_model(objpoints, imgpoints_list, image_size, flags)

    session = StereoCalibrationSession(_with_target(settings, 3), live=True, estimator=diverges_after_first_rig)
    for pts in imgpoints[:3]:
        session.process_detections(_detection(pts))
    assert session.mode == SessionMode.CALIBRATED

    session.request_recapture()
    for pts in imgpoints[3:5]:
        session.process_detections(_detection(pts))
    assert session.view_count == 2

    with pytest.raises(InsufficientViewsError):
        session.finish()
    assert calls["n"] == 4
    assert session.mode == SessionMode.DETECTION


def test_recapture_not_available_for_finite_input(settings):
    session = StereoCalibrationSession(settings, live=False)
    assert not session.request_recapture()
    assert session.mode == SessionMode.CAPTURING


def test_invalid_frame_size_is_skipped(settings):
    session = StereoCalibrationSession(settings)
    result = session.process_frame(np.zeros((100, 100, 3), np.uint8))
    assert result.skipped
    assert result.detection is None
    assert session.view_count == 0


def test_for_source_caps_target(settings):
    source = ImageListSource(["a.png", "b.png", "c.png"])
    session = StereoCalibrationSession.for_source(settings, source)
    assert session.settings.target_frames == 3
    assert not session.live

    live = StereoCalibrationSession.for_source(settings, FakeSource([], live=True))
    assert live.settings.target_frames == settings.target_frames
    assert live.live


def test_run_until_end_of_input(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views
    frames = [np.zeros((IMAGE_SIZE[1], 2 * IMAGE_SIZE[0], 3), np.uint8) for _ in range(4)]
    sink = []
    session = StereoCalibrationSession(
        _with_target(settings, 3), detector=_cycling_detector(imgpoints), on_calibrated=sink.append
    )
    cycles = []

    calibration = session.run(FakeSource(frames), observer=cycles.append)

    assert calibration is not None
    assert calibration.is_calibrated()
    assert len(sink) == 1
    assert len(cycles) == 4
    assert [c.accepted for c in cycles] == [True, True, True, False]


def test_run_stopped_by_observer(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views
    frames = [np.zeros((IMAGE_SIZE[1], 2 * IMAGE_SIZE[0], 3), np.uint8) for _ in range(5)]
    session = StereoCalibrationSession(settings, detector=_cycling_detector(imgpoints))

    result = session.run(FakeSource(frames), observer=lambda cycle: SessionCommand.EXIT)

    assert result is None
    assert session.view_count == 1


def test_run_recapture_command(settings, synthetic_views):
    _, imgpoints, _, _ = synthetic_views
    frames = [np.zeros((IMAGE_SIZE[1], 2 * IMAGE_SIZE[0], 3), np.uint8) for _ in range(2)]
    session = StereoCalibrationSession(
        _with_target(settings, 2), live=True, detector=_cycling_detector(imgpoints)
    )
    commands = iter([SessionCommand.RECAPTURE, SessionCommand.EXIT])

    session.run(FakeSource(frames, live=True), observer=lambda cycle: next(commands))

    # First frame accepted in DETECTION, then the recapture dropped it
    assert session.mode == SessionMode.CAPTURING
    assert session.view_count == 1
