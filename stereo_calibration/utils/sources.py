"""
Frame sources for the calibration loop.

A source hands out one combined stereo frame per call to next() and returns
None once the input is exhausted.
"""

import logging
from pathlib import Path

import cv2
import numpy as np
import yaml

from .errors import InvalidSettingsError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.bmp", "*.tif", "*.tiff")
LIST_EXTENSIONS = (".txt", ".yaml", ".yml")


class FrameSource:
    """
    Pull-based source of stereo frames.

    Attributes:
        is_live: Frames come from a running feed (supports re-capture)
        frame_count: Number of frames for finite inputs, None when unknown
    """

    is_live: bool = False
    frame_count: int | None = None

    def next(self) -> np.ndarray | None:
        """Return the next frame, or None at end of input."""
        raise NotImplementedError

    def release(self) -> None:
        """Release underlying resources."""

    def __enter__(self) -> "FrameSource":
        return self

    def __exit__(self, *exc) -> None:
        self.release()


class ImageListSource(FrameSource):
    """Frames read from a finite list of image files. Unreadable files are skipped."""

    def __init__(self, image_paths: list[str | Path]):
        self.image_paths = [str(p) for p in image_paths]
        self.frame_count = len(self.image_paths)
        self._pos = 0

    def next(self) -> np.ndarray | None:
        while self._pos < len(self.image_paths):
            path = self.image_paths[self._pos]
            self._pos += 1
            img = cv2.imread(path, cv2.IMREAD_COLOR)
            if img is not None:
                return img
            logger.warning("Could not read image: %s", path)
        return None


class VideoSource(FrameSource):
    """Frames from a camera index or a video file via cv2.VideoCapture. Treated as a live feed."""

    is_live = True

    def __init__(self, target: int | str):
        self.target = target
        self.capture = cv2.VideoCapture(target)
        if not self.capture.isOpened():
            raise InvalidSettingsError(f"Inexistent input: {target}")

    def next(self) -> np.ndarray | None:
        ok, frame = self.capture.read()
        if not ok or frame is None:
            return None
        return frame

    def release(self) -> None:
        self.capture.release()


def list_images(folder: str | Path) -> list[str]:
    """List all image files in a folder."""
    files = []
    folder_path = Path(folder)
    for e in IMAGE_EXTENSIONS:
        files.extend(str(p) for p in folder_path.glob(e))
    files.sort()
    return files


def read_image_list(list_path: str | Path) -> list[str]:
    """
    Read an image list file.

    Text files hold one path per line (blank lines and '#' comments ignored).
    YAML files hold a sequence, either at the top level or as the first value
    of a top-level mapping. Relative paths are resolved against the list file.

    Raises:
        InvalidSettingsError: If the file does not contain a list of paths
    """
    list_path = Path(list_path)
    if list_path.suffix.lower() == ".txt":
        with list_path.open() as f:
            entries = [line.strip() for line in f]
        entries = [e for e in entries if e and not e.startswith("#")]
    else:
        with list_path.open() as f:
            data = yaml.safe_load(f)
        if isinstance(data, dict) and data:
            data = next(iter(data.values()))
        if not isinstance(data, list):
            raise InvalidSettingsError(f"Image list {list_path} does not contain a sequence")
        entries = [str(e) for e in data]

    base = list_path.parent
    return [str(p if p.is_absolute() else base / p) for p in map(Path, entries)]


def open_frame_source(descriptor: str) -> FrameSource:
    """
    Open the input named in the settings.

    Digits select a live camera, an image directory or list file gives a
    finite image list, anything else is opened as a video file.

    Raises:
        InvalidSettingsError: If the input is empty or cannot be opened
    """
    descriptor = str(descriptor).strip()
    if not descriptor:
        raise InvalidSettingsError("No input configured")

    if descriptor.isdigit():
        logger.info("Opening camera %s", descriptor)
        return VideoSource(int(descriptor))

    path = Path(descriptor)
    if path.is_dir():
        images = list_images(path)
        if not images:
            raise InvalidSettingsError(f"No images found in {path}")
        logger.info("Using %d images from %s", len(images), path)
        return ImageListSource(images)

    if path.is_file() and path.suffix.lower() in LIST_EXTENSIONS:
        images = read_image_list(path)
        logger.info("Using %d images listed in %s", len(images), path)
        return ImageListSource(images)

    logger.info("Opening video %s", descriptor)
    return VideoSource(descriptor)
