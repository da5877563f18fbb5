"""
Command line launcher for stereo calibration.

Reads a YAML configuration, pulls side-by-side stereo frames from a camera,
video or image list, and writes the calibration of both cameras.

Keys in the live view: ESC exits, 'g' starts a new capture (live input),
'u' toggles the undistorted preview once calibrated.
"""

import argparse
import logging
import sys
from pathlib import Path

import cv2

from stereo_calibration.utils.data_structures import CalibrationConfig, SessionMode, Settings, StereoCalibration
from stereo_calibration.utils.detection import detect_stereo_images
from stereo_calibration.utils.errors import CalibrationError
from stereo_calibration.utils.io import save_stereo_calibration
from stereo_calibration.utils.logger import setup_logger
from stereo_calibration.utils.session import CycleResult, SessionCommand, StereoCalibrationSession
from stereo_calibration.utils.sources import ImageListSource, open_frame_source
from stereo_calibration.utils.visualization import render_view, save_diagnostic_plots

logger = logging.getLogger("stereo_calibration.cli")

WINDOW_NAME = "Image View"
ESC_KEY = 27
LIVE_WAIT_MS = 50


class LiveView:
    """Session observer that shows the annotated frame and maps keys to commands."""

    def __init__(self, session: StereoCalibrationSession, settings: Settings):
        self.session = session
        self.settings = settings
        self.show_undistorted = settings.show_undistorted
        cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_AUTOSIZE)

    def __call__(self, cycle: CycleResult) -> SessionCommand:
        if cycle.frame is not None:
            view = render_view(
                cycle.frame,
                cycle.mode,
                cycle.view_count,
                self.settings.target_frames,
                self.settings.pattern,
                self.settings.image_size,
                detection=cycle.detection,
                calibration=self.session.calibration,
                show_undistorted=self.show_undistorted,
                blink=cycle.accepted and self.session.live,
            )
            cv2.imshow(WINDOW_NAME, view)

        key = cv2.waitKey(LIVE_WAIT_MS if self.session.live else self.settings.delay_ms) & 0xFF
        if key == ESC_KEY:
            return SessionCommand.EXIT
        if key == ord("u") and cycle.mode == SessionMode.CALIBRATED:
            self.show_undistorted = not self.show_undistorted
        if key == ord("g") and self.session.live:
            return SessionCommand.RECAPTURE
        return SessionCommand.CONTINUE

    def close(self) -> None:
        cv2.destroyWindow(WINDOW_NAME)


def make_result_sink(settings: Settings):
    """Build the callback that persists a finished calibration."""

    def sink(calibration: StereoCalibration) -> None:
        if settings.output_path is not None:
            save_stereo_calibration(
                calibration,
                settings.output_path,
                fmt=settings.output_format,
                write_points=settings.write_points,
                write_extrinsics=settings.write_extrinsics,
            )
        if settings.plots_dir is not None:
            save_diagnostic_plots(calibration, settings.plots_dir, settings.visualization_mode)

    return sink


def run_batch(settings: Settings, source: ImageListSource, num_workers: int = -1) -> StereoCalibration:
    """Detect over a whole image list up front, then feed the session in order."""
    session = StereoCalibrationSession.for_source(settings, source, on_calibrated=make_result_sink(settings))
    detections = detect_stereo_images(
        source.image_paths,
        settings.pattern,
        settings.image_size,
        flip_vertical=settings.flip_vertical,
        num_workers=num_workers,
    )
    for detection in detections:
        if detection is None:
            continue
        session.process_detections(detection)
        if session.mode == SessionMode.CALIBRATED:
            break
    return session.finish()


def run_interactive(settings: Settings, display: bool = True) -> StereoCalibration | None:
    """Frame-by-frame calibration loop, optionally with the live view."""
    with open_frame_source(settings.input) as source:
        session = StereoCalibrationSession.for_source(settings, source, on_calibrated=make_result_sink(settings))
        view = LiveView(session, settings) if display else None
        try:
            return session.run(source, observer=view)
        finally:
            if view is not None:
                view.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(description="Calibrate both cameras of a side-by-side stereo rig")
    p.add_argument("--config", required=True, help="Path to calibration settings YAML")
    p.add_argument("--no-display", action="store_true", help="Run without the live view window")
    p.add_argument(
        "--batch",
        action="store_true",
        help="For image list inputs: detect all images up front (parallel), no live view",
    )
    p.add_argument("--workers", type=int, default=-1, help="Worker processes for --batch (-1 = all cores)")
    p.add_argument("--log-file", default=None, help="Also write the log to this file")
    p.add_argument("--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logger("stereo_calibration", args.log_file, logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = CalibrationConfig.from_yaml(Path(args.config)).to_settings()
        if args.batch:
            with open_frame_source(settings.input) as source:
                if not isinstance(source, ImageListSource):
                    logger.error("--batch needs an image directory or image list input")
                    return 1
                calibration = run_batch(settings, source, num_workers=args.workers)
        else:
            calibration = run_interactive(settings, display=not args.no_display)
    except CalibrationError as e:
        logger.error("Calibration failed: %s", e)
        return 1
    except OSError as e:
        logger.error("I/O error: %s", e)
        return 1

    if calibration is None:
        logger.info("Stopped without a calibration")
        return 1
    logger.info("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
