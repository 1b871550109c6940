"""Tests for camera_calibration.calibration.artifact."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

cv2 = pytest.importorskip("cv2")

from camera_calibration.calibration.artifact import (
    CalibrationArtifact,
    load_intrinsics,
    read_artifact,
    save_artifact,
)
from camera_calibration.calibration.board import BoardGeometry, PatternType
from camera_calibration.calibration.solver import CalibrationResult, SolveFlags
from camera_calibration.errors import ArtifactIOError


@pytest.fixture
def result(camera_matrix: np.ndarray) -> CalibrationResult:
    D = np.zeros((8, 1))
    D[:5, 0] = [-0.12, 0.03, 0.001, -0.002, 0.0]
    return CalibrationResult(
        camera_matrix=camera_matrix,
        dist_coeffs=D,
        rvecs=[np.array([[0.1], [0.0], [0.0]]), np.array([[0.0], [-0.2], [0.05]])],
        tvecs=[np.array([[1.0], [2.0], [600.0]]), np.array([[-3.0], [4.0], [650.0]])],
        per_view_errors=np.array([0.25, 0.5]),
        rms=0.39,
        solver_rms=0.4,
    )


@pytest.fixture
def artifact(board_geometry: BoardGeometry, result: CalibrationResult) -> CalibrationArtifact:
    points = [
        np.arange(108, dtype=np.float32).reshape(54, 2),
        np.arange(108, dtype=np.float32).reshape(54, 2) + 0.5,
    ]
    return CalibrationArtifact(
        pattern=PatternType.CHESSBOARD,
        geometry=board_geometry,
        image_size=(640, 480),
        flags=SolveFlags(fix_aspect_ratio=True, zero_tangent_dist=True),
        aspect_ratio=1.0,
        found_flags=[True, False, True],
        result=result,
        image_points=points,
    )


class TestSaveArtifact:
    """Tests for save_artifact() and read_artifact()."""

    @pytest.mark.parametrize("suffix", [".yml", ".xml", ".json"])
    def test_intrinsics_roundtrip_exact(
        self, tmp_path: Path, artifact: CalibrationArtifact, suffix: str,
    ) -> None:
        rng = np.random.default_rng(7)
        artifact.result.camera_matrix = rng.uniform(-1e3, 1e3, (3, 3))
        artifact.result.dist_coeffs = rng.standard_normal((8, 1))
        path = tmp_path / f"calib{suffix}"
        save_artifact(artifact, path)

        intr = load_intrinsics(path)
        np.testing.assert_array_equal(intr.K, artifact.result.camera_matrix)
        np.testing.assert_array_equal(intr.D, artifact.result.dist_coeffs)

    def test_header_keys(self, tmp_path: Path, artifact: CalibrationArtifact) -> None:
        path = tmp_path / "calib.yml"
        save_artifact(artifact, path)
        data = read_artifact(path)

        assert data["nframes"] == 2
        assert data["image_width"] == 640
        assert data["image_height"] == 480
        assert data["board_width"] == 9
        assert data["board_height"] == 6
        assert data["square_size"] == pytest.approx(25.0)
        assert data["pattern"] == "chessboard"
        assert data["aspectRatio"] == pytest.approx(1.0)
        assert data["flags"] == (
            cv2.CALIB_FIX_ASPECT_RATIO | cv2.CALIB_ZERO_TANGENT_DIST
        )
        assert data["flags_summary"] == "flags: +fix_aspectRatio+zero_tangent_dist"
        assert data["avg_reprojection_error"] == pytest.approx(0.39)
        assert isinstance(data["calibration_time"], str)

    def test_extrinsics(self, tmp_path: Path, artifact: CalibrationArtifact) -> None:
        path = tmp_path / "calib.yml"
        save_artifact(artifact, path)
        data = read_artifact(path)

        np.testing.assert_allclose(
            data["per_view_reprojection_errors"].ravel(), [0.25, 0.5],
        )
        for i, rvec in enumerate(artifact.result.rvecs):
            R = cv2.Rodrigues(rvec)[0]
            np.testing.assert_allclose(data[f"extrinsic_R{i}"], R, atol=1e-12)
            np.testing.assert_allclose(
                data[f"extrinsic_T{i}"], artifact.result.tvecs[i],
            )
        extrinsic = data["extrinsic"]
        assert extrinsic.shape == (2, 6)
        np.testing.assert_allclose(extrinsic[1], [0.0, -0.2, 0.05, -3.0, 4.0, 650.0])

    def test_found_flags_and_points(self, tmp_path: Path, artifact: CalibrationArtifact) -> None:
        path = tmp_path / "calib.yml"
        save_artifact(artifact, path)
        data = read_artifact(path)

        np.testing.assert_array_equal(data["found_cheese_board"].ravel(), [1, 0, 1])
        points = data["image_points"]
        assert points.shape == (2, 54, 2)
        np.testing.assert_array_equal(points[1], artifact.image_points[1])

    def test_without_extrinsics(self, tmp_path: Path, artifact: CalibrationArtifact) -> None:
        artifact.write_extrinsics = False
        artifact.image_points = []
        path = tmp_path / "calib.yml"
        save_artifact(artifact, path)
        data = read_artifact(path)

        assert "camera_matrix" in data
        assert "extrinsic" not in data
        assert "extrinsic_R0" not in data
        assert "per_view_reprojection_errors" not in data
        assert "image_points" not in data

    def test_default_flags_omit_optional_keys(
        self, tmp_path: Path, board_geometry: BoardGeometry, result: CalibrationResult,
    ) -> None:
        artifact = CalibrationArtifact(
            pattern=PatternType.CIRCLES_GRID,
            geometry=board_geometry,
            image_size=(640, 480),
            result=result,
        )
        path = tmp_path / "calib.yml"
        save_artifact(artifact, path)
        data = read_artifact(path)

        assert data["flags"] == 0
        assert data["pattern"] == "circles"
        assert "flags_summary" not in data
        assert "aspectRatio" not in data
        assert "found_cheese_board" not in data

    def test_header_only(self, tmp_path: Path, board_geometry: BoardGeometry) -> None:
        artifact = CalibrationArtifact(
            pattern=PatternType.CHESSBOARD,
            geometry=board_geometry,
            image_size=(640, 480),
            found_flags=[False, False],
        )
        path = tmp_path / "calib.yml"
        save_artifact(artifact, path)
        data = read_artifact(path)

        assert data["nframes"] == 0
        assert "camera_matrix" not in data
        assert "extrinsic" not in data
        np.testing.assert_array_equal(data["found_cheese_board"].ravel(), [0, 0])

        with pytest.raises(ArtifactIOError, match="No camera intrinsics"):
            load_intrinsics(path)

    def test_xml_suffix(self, tmp_path: Path, artifact: CalibrationArtifact) -> None:
        path = tmp_path / "calib.xml"
        save_artifact(artifact, path)

        assert path.read_text().lstrip().startswith("<?xml")
        intr = load_intrinsics(path)
        np.testing.assert_array_equal(intr.K, artifact.result.camera_matrix)

    def test_creates_parent_dirs(self, tmp_path: Path, artifact: CalibrationArtifact) -> None:
        path = tmp_path / "nested" / "dir" / "calib.yml"
        save_artifact(artifact, path)
        assert path.is_file()

    def test_no_partial_file_left(self, tmp_path: Path, artifact: CalibrationArtifact) -> None:
        save_artifact(artifact, tmp_path / "calib.yml")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["calib.yml"]

    def test_overwrites_existing(self, tmp_path: Path, artifact: CalibrationArtifact) -> None:
        path = tmp_path / "calib.yml"
        path.write_text("stale")
        save_artifact(artifact, path)
        assert read_artifact(path)["nframes"] == 2

    def test_unwritable_location(self, tmp_path: Path, artifact: CalibrationArtifact) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(ArtifactIOError):
            save_artifact(artifact, blocker / "calib.yml")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["blocker"]


class TestLoadErrors:

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ArtifactIOError, match="Cannot open"):
            load_intrinsics(tmp_path / "missing.yml")

    def test_read_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ArtifactIOError):
            read_artifact(tmp_path / "missing.yml")
