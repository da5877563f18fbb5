"""
I/O utilities for saving and loading calibration results.

Supports YAML, JSON, and NPZ formats with human-readable output.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from .data_structures import (
    CalibrationFlags,
    CameraCalibration,
    CameraIndex,
    CameraModel,
    PatternSpec,
    PatternType,
    ReprojectionReport,
    StereoCalibration,
)

logger = logging.getLogger(__name__)


def _numpy_to_python(obj):
    """Convert numpy types to Python native types for JSON/YAML serialization."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_numpy_to_python(item) for item in obj]
    return obj


def _infer_format(path: Path) -> str:
    ext = path.suffix.lower()
    if ext in (".yaml", ".yml"):
        return "yaml"
    if ext == ".json":
        return "json"
    if ext == ".npz":
        return "npz"
    raise ValueError(f"Cannot determine format from extension: {ext}")


def _camera_record(
    cam: CameraCalibration,
    pattern: PatternSpec | None,
    write_points: bool,
    write_extrinsics: bool,
) -> dict[str, Any]:
    """Collect the persisted fields of one camera."""
    record: dict[str, Any] = {
        "nr_of_frames": cam.num_detections(),
        "image_width": int(cam.image_size[0]),
        "image_height": int(cam.image_size[1]),
    }
    if pattern is not None:
        record["board_width"] = pattern.width
        record["board_height"] = pattern.height
        record["square_size"] = float(pattern.square_size)
    record["fix_aspect_ratio"] = cam.flags.fix_aspect_ratio
    record["flags"] = cam.flags.names()
    record["flag_value"] = int(cam.flags.to_cv_flags())
    record["camera_matrix"] = cam.K
    record["distortion_coefficients"] = cam.dist
    record["solver_rms"] = float(cam.solver_rms)
    record["avg_reprojection_error"] = float(cam.report.rms)
    record["per_view_reprojection_errors"] = cam.report.per_view_errors
    if write_extrinsics:
        record["extrinsic_parameters"] = cam.model.extrinsics()
    if write_points and cam.imgpoints:
        record["image_points"] = np.stack([np.asarray(p, dtype=np.float64).reshape(-1, 2) for p in cam.imgpoints])
    return record


def save_stereo_calibration(
    calibration: StereoCalibration,
    output_path: Path | str,
    fmt: str | None = None,
    write_points: bool = True,
    write_extrinsics: bool = True,
) -> None:
    """
    Save stereo calibration results to file.

    Args:
        calibration: Calibration of both cameras
        output_path: Path to output file
        fmt: 'yaml', 'json' or 'npz' (auto-detected from extension if None)
        write_points: Include the detected image points
        write_extrinsics: Include per-view poses as Nx6 (rvec | tvec) rows

    Raises:
        ValueError: If format is not supported or nothing is calibrated
    """
    output_path = Path(output_path)
    fmt = fmt or _infer_format(output_path)
    if fmt not in ("yaml", "json", "npz"):
        raise ValueError(f"Unsupported format: {fmt}. Use 'yaml', 'json', or 'npz'.")
    if not calibration.is_calibrated():
        raise ValueError("Nothing to save: stereo calibration is incomplete")

    output_path.parent.mkdir(parents=True, exist_ok=True)

    records = {}
    for cam_idx in CameraIndex:
        cam = calibration.get_camera(cam_idx)
        records[cam_idx.name.lower()] = _camera_record(cam, calibration.pattern, write_points, write_extrinsics)

    meta: dict[str, Any] = {"calibration_time": datetime.now().strftime("%c")}
    if calibration.pattern is not None:
        meta["pattern"] = calibration.pattern.pattern_type.value

    if fmt in ("yaml", "json"):
        data = _numpy_to_python({"meta": meta, **records})
        if fmt == "yaml":
            with output_path.open("w") as f:
                yaml.dump(data, f, default_flow_style=None, sort_keys=False)
        else:  # json
            with output_path.open("w") as f:
                json.dump(data, f, indent=2)
    else:
        arrays = {"calibration_time": np.array(meta["calibration_time"])}
        if "pattern" in meta:
            arrays["pattern"] = np.array(meta["pattern"])
        for prefix, record in records.items():
            for key, value in record.items():
                if key == "flags":
                    value = ",".join(value)
                arrays[f"{prefix}_{key}"] = np.asarray(value)
        np.savez_compressed(output_path, **arrays)

    logger.info("Calibration saved to %s", output_path)


def _camera_from_record(record: dict[str, Any]) -> CameraCalibration:
    """Rebuild a CameraCalibration from a persisted record."""
    extrinsics = np.asarray(record.get("extrinsic_parameters", np.zeros((0, 6))), dtype=np.float64).reshape(-1, 6)
    model = CameraModel(
        camera_matrix=np.asarray(record["camera_matrix"], dtype=np.float64).reshape(3, 3),
        dist_coeffs=np.asarray(record["distortion_coefficients"], dtype=np.float64).ravel(),
        rvecs=tuple(row[:3].reshape(3, 1) for row in extrinsics),
        tvecs=tuple(row[3:].reshape(3, 1) for row in extrinsics),
    )
    report = ReprojectionReport(
        per_view_errors=np.asarray(record.get("per_view_reprojection_errors", []), dtype=np.float64).ravel(),
        rms=float(record.get("avg_reprojection_error", 0.0)),
    )
    flag_names = record.get("flags", [])
    if isinstance(flag_names, str):
        flag_names = [n for n in flag_names.split(",") if n]
    flags = CalibrationFlags(
        fix_aspect_ratio="fix_aspect_ratio" in flag_names,
        zero_tangent_dist="zero_tangent_dist" in flag_names,
        fix_principal_point="fix_principal_point" in flag_names,
    )
    imgpoints = []
    if record.get("image_points") is not None:
        pts = np.asarray(record["image_points"], dtype=np.float32)
        imgpoints = [p.reshape(-1, 2) for p in pts]
    return CameraCalibration(
        model=model,
        report=report,
        solver_rms=float(record.get("solver_rms", report.rms)),
        image_size=(int(record["image_width"]), int(record["image_height"])),
        flags=flags,
        imgpoints=imgpoints,
    )


def _pattern_from_records(meta: dict[str, Any], record: dict[str, Any]) -> PatternSpec | None:
    if "board_width" not in record or "pattern" not in meta:
        return None
    return PatternSpec(
        pattern_type=PatternType.from_name(str(meta["pattern"])),
        board_size=(int(record["board_width"]), int(record["board_height"])),
        square_size=float(record["square_size"]),
    )


def load_stereo_calibration(input_path: Path | str, fmt: str | None = None) -> StereoCalibration:
    """
    Load stereo calibration results from file.

    Args:
        input_path: Path to calibration file
        fmt: 'yaml', 'json', or 'npz' (auto-detected from extension if None)

    Returns:
        StereoCalibration with loaded calibration data
    """
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"Calibration file not found: {input_path}")
    fmt = fmt or _infer_format(input_path)

    if fmt in ("yaml", "json"):
        with input_path.open() as f:
            data = yaml.safe_load(f) if fmt == "yaml" else json.load(f)
        meta = data.get("meta", {})
        records = {name: data[name] for name in ("left", "right")}
    elif fmt == "npz":
        with np.load(input_path) as arrays:
            meta = {k: arrays[k].item() for k in ("calibration_time", "pattern") if k in arrays}
            records = {}
            for name in ("left", "right"):
                prefix = f"{name}_"
                records[name] = {
                    key[len(prefix) :]: (arrays[key].item() if arrays[key].ndim == 0 else arrays[key])
                    for key in arrays.files
                    if key.startswith(prefix)
                }
    else:
        raise ValueError(f"Unsupported format: {fmt}")

    left = _camera_from_record(records["left"])
    right = _camera_from_record(records["right"])
    calibration = StereoCalibration(
        left=left,
        right=right,
        pattern=_pattern_from_records(meta, records["left"]),
        image_size=left.image_size,
    )
    logger.info("Calibration loaded from %s", input_path)
    return calibration
