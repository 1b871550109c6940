"""Shared test fixtures for the camera_calibration test suite."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from camera_calibration.calibration.board import (
    BoardGeometry,
    PatternType,
    build_reference_points,
)
from camera_calibration.config.schema import SessionConfig

cv2 = pytest.importorskip("cv2")

IMAGE_SIZE = (640, 480)

# (rx, ry, rz) in radians; the board origin sits up-left of the optical
# axis so the whole target stays in view.
POSE_ANGLES = [
    (0.30, 0.00, 0.00),
    (-0.30, 0.00, 0.00),
    (0.00, 0.30, 0.00),
    (0.00, -0.30, 0.00),
    (0.20, 0.20, 0.10),
    (-0.20, 0.25, -0.10),
    (0.25, -0.20, 0.05),
    (-0.25, -0.25, 0.00),
    (0.10, 0.30, 0.20),
    (0.30, -0.10, -0.20),
]


class ScriptedDetector:
    """Detector that replays a fixed list of results, one per call."""

    def __init__(self, results: list[np.ndarray | None]) -> None:
        self.results = list(results)
        self.calls = 0

    def detect(self, image, pattern, geometry):
        points = self.results[self.calls]
        self.calls += 1
        if points is None:
            return False, None
        return True, np.asarray(points, np.float32).reshape(-1, 1, 2)


class IdentityRefiner:
    """Refiner that returns its input unchanged."""

    def refine(self, image, points, window, criteria):
        return points


@pytest.fixture
def default_config() -> SessionConfig:
    """Return a SessionConfig with default values."""
    return SessionConfig()


@pytest.fixture
def session_config(tmp_path: Path) -> SessionConfig:
    """Config for a 9x6 board of 25 mm squares writing into *tmp_path*."""
    config = SessionConfig()
    config.board.width = 9
    config.board.height = 6
    config.board.square_size = 25.0
    config.output.path = str(tmp_path / "calib.yml")
    return config


@pytest.fixture
def board_geometry() -> BoardGeometry:
    return BoardGeometry(rows=6, cols=9, square_size=25.0)


@pytest.fixture
def camera_matrix() -> np.ndarray:
    return np.array([
        [800.0, 0.0, 320.0],
        [0.0, 800.0, 240.0],
        [0.0, 0.0, 1.0],
    ])


@pytest.fixture
def synthetic_poses() -> list[tuple[np.ndarray, np.ndarray]]:
    """Ten known board poses as ``(rvec, tvec)`` pairs."""
    poses = []
    for k, (rx, ry, rz) in enumerate(POSE_ANGLES):
        R = (
            cv2.Rodrigues(np.array([rx, 0.0, 0.0]))[0]
            @ cv2.Rodrigues(np.array([0.0, ry, 0.0]))[0]
            @ cv2.Rodrigues(np.array([0.0, 0.0, rz]))[0]
        )
        rvec = cv2.Rodrigues(R)[0]
        tvec = np.array([[-100.0 + 5 * k], [-62.5], [600.0 + 10 * k]])
        poses.append((rvec, tvec))
    return poses


@pytest.fixture
def synthetic_views(
    board_geometry: BoardGeometry,
    camera_matrix: np.ndarray,
    synthetic_poses: list[tuple[np.ndarray, np.ndarray]],
) -> list[np.ndarray]:
    """Exact ``(54, 2)`` projections of the board for each pose."""
    ref = build_reference_points(board_geometry, PatternType.CHESSBOARD)
    views = []
    for rvec, tvec in synthetic_poses:
        projected, _ = cv2.projectPoints(
            ref.astype(np.float64), rvec, tvec, camera_matrix, np.zeros(5),
        )
        views.append(projected.reshape(-1, 2).astype(np.float32))
    return views


@pytest.fixture
def blank_frames() -> list[np.ndarray]:
    """Ten blank grayscale frames matching IMAGE_SIZE."""
    w, h = IMAGE_SIZE
    return [np.zeros((h, w), np.uint8) for _ in range(10)]


@pytest.fixture
def scripted_detector():
    """Factory for :class:`ScriptedDetector`."""
    return ScriptedDetector


@pytest.fixture
def identity_refiner() -> IdentityRefiner:
    return IdentityRefiner()
