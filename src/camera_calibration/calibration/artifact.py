"""Calibration artifact persistence.

A calibration session is saved as a single OpenCV ``FileStorage``
document (YAML, XML or JSON, chosen by the file suffix) holding the
board description, solver flags, intrinsics, per-view diagnostics and
poses, and the per-frame detection flags. Downstream code reloads the
intrinsics with :func:`load_intrinsics`; :func:`read_artifact` returns
every stored key.
"""

from __future__ import annotations

import contextlib
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from camera_calibration.calibration.board import BoardGeometry, PatternType
from camera_calibration.calibration.intrinsics import Intrinsics
from camera_calibration.calibration.solver import CalibrationResult, SolveFlags
from camera_calibration.errors import ArtifactIOError

logger = logging.getLogger(__name__)


@dataclass
class CalibrationArtifact:
    """Everything persisted at the end of a calibration session.

    Attributes:
        pattern: Target type.
        geometry: Board dimensions and spacing.
        image_size: ``(width, height)`` of the calibration frames.
        flags: Solver options used.
        aspect_ratio: Fixed ``fx / fy`` (stored with
            ``fix_aspect_ratio`` only).
        found_flags: One entry per attempted frame, ``True`` where the
            frame produced an observation.
        result: Solve result, or ``None`` for a header-only artifact.
        image_points: Per-observation detected points. Empty disables
            the ``image_points`` key.
        write_extrinsics: Store per-view errors and poses.
        calibration_time: Timestamp string. Filled in on save when
            empty.
    """

    pattern: PatternType
    geometry: BoardGeometry
    image_size: tuple[int, int]
    flags: SolveFlags = field(default_factory=SolveFlags)
    aspect_ratio: float = 1.0
    found_flags: list[bool] = field(default_factory=list)
    result: CalibrationResult | None = None
    image_points: list[np.ndarray] = field(default_factory=list)
    write_extrinsics: bool = True
    calibration_time: str = ""


def _write_fields(fs: cv2.FileStorage, artifact: CalibrationArtifact) -> None:
    result = artifact.result
    width, height = artifact.image_size
    bitmask = artifact.flags.to_bitmask()

    fs.write("calibration_time", artifact.calibration_time or time.strftime("%c"))
    fs.write("nframes", result.view_count if result is not None else 0)
    fs.write("image_width", int(width))
    fs.write("image_height", int(height))
    fs.write("board_width", int(artifact.geometry.cols))
    fs.write("board_height", int(artifact.geometry.rows))
    fs.write("square_size", float(artifact.geometry.square_size))
    fs.write("pattern", artifact.pattern.value)
    if artifact.flags.fix_aspect_ratio:
        fs.write("aspectRatio", float(artifact.aspect_ratio))
    if bitmask != 0:
        fs.write("flags_summary", "flags: " + artifact.flags.summary())
    fs.write("flags", int(bitmask))

    if result is not None:
        fs.write("camera_matrix", np.asarray(result.camera_matrix, np.float64))
        fs.write("distortion_coefficients", np.asarray(result.dist_coeffs, np.float64))
        fs.write("avg_reprojection_error", float(result.rms))

        if artifact.write_extrinsics and result.view_count > 0:
            fs.write(
                "per_view_reprojection_errors",
                np.asarray(result.per_view_errors, np.float64).reshape(-1, 1),
            )
            for i, (R, tvec) in enumerate(
                zip(result.rotation_matrices(), result.tvecs),
            ):
                fs.write(f"extrinsic_R{i}", R)
                fs.write(f"extrinsic_T{i}", np.asarray(tvec, np.float64).reshape(3, 1))
            fs.write("extrinsic", result.extrinsics_matrix())

    if artifact.found_flags:
        fs.write(
            "found_cheese_board",
            np.asarray(artifact.found_flags, np.int32).reshape(1, -1),
        )

    if artifact.image_points:
        points = np.stack([
            np.asarray(p, np.float32).reshape(-1, 2) for p in artifact.image_points
        ])
        fs.write("image_points", points)


def _discard(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink()


def save_artifact(artifact: CalibrationArtifact, path: str | Path) -> None:
    """Write a calibration artifact.

    The document is written to a temporary sibling file and moved into
    place once complete, so a failed save never leaves a truncated
    artifact at *path*.

    Args:
        artifact: The artifact to persist.
        path: Output file (``.yml``, ``.yaml``, ``.xml`` or ``.json``).

    Raises:
        ArtifactIOError: If the file cannot be created or written.
    """
    path = Path(path)
    tmp = path.with_name(f".{path.stem}.partial{path.suffix}")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fs = cv2.FileStorage(str(tmp), cv2.FILE_STORAGE_WRITE)
        if not fs.isOpened():
            raise ArtifactIOError(f"Cannot create {path}")
        try:
            _write_fields(fs, artifact)
        finally:
            fs.release()
        os.replace(tmp, path)
    except (OSError, cv2.error) as exc:
        _discard(tmp)
        if isinstance(exc, ArtifactIOError):
            raise
        raise ArtifactIOError(f"Cannot write calibration file {path}: {exc}") from exc
    except BaseException:
        _discard(tmp)
        raise

    logger.info("Saved calibration data to %s", path)


def _open_for_read(path: str | Path) -> cv2.FileStorage:
    path = Path(path)
    if not path.is_file():
        raise ArtifactIOError(f"Cannot open calibration file: {path}")
    try:
        fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    except cv2.error as exc:
        raise ArtifactIOError(f"Cannot open calibration file {path}: {exc}") from exc
    if not fs.isOpened():
        raise ArtifactIOError(f"Cannot open calibration file: {path}")
    return fs


def load_intrinsics(path: str | Path) -> Intrinsics:
    """Read only the camera matrix and distortion vector of an artifact.

    Args:
        path: Artifact written by :func:`save_artifact`.

    Returns:
        An :class:`Intrinsics` instance.

    Raises:
        ArtifactIOError: If the file cannot be opened or lacks the
            intrinsics keys.
    """
    fs = _open_for_read(path)
    try:
        K = fs.getNode("camera_matrix").mat()
        D = fs.getNode("distortion_coefficients").mat()
    finally:
        fs.release()

    if K is None or D is None:
        raise ArtifactIOError(f"No camera intrinsics stored in {path}")
    logger.info("Loaded camera intrinsics from %s", path)
    return Intrinsics(K=K, D=D)


def _node_value(node: cv2.FileNode) -> Any:
    if node.isInt():
        return int(node.real())
    if node.isReal():
        return node.real()
    if node.isString():
        return node.string()
    return node.mat()


def read_artifact(path: str | Path) -> dict[str, Any]:
    """Read every top-level key of an artifact.

    Matrices are returned as numpy arrays, scalars as ``int``,
    ``float`` or ``str``.

    Raises:
        ArtifactIOError: If the file cannot be opened.
    """
    fs = _open_for_read(path)
    try:
        root = fs.root()
        return {key: _node_value(root.getNode(key)) for key in root.keys()}
    finally:
        fs.release()
