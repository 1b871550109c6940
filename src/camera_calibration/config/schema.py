"""Dataclass configuration schemas for a calibration session.

Each concern has its own configuration dataclass. The top-level
``SessionConfig`` composes them all into a single tree that can be
serialized to / deserialized from YAML.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class BoardConfig:
    """Calibration target geometry.

    Attributes:
        pattern: Target type: ``chessboard``, ``circles`` (symmetric
            circle grid) or ``acircles`` (asymmetric circle grid).
        width: Number of inner corners / circles per row.
        height: Number of rows of inner corners / circles.
        square_size: Physical spacing between neighbouring points, in
            the units the extrinsics should be reported in.
    """

    pattern: str = "chessboard"
    width: int = 9
    height: int = 6
    square_size: float = 1.0


@dataclass
class DetectionConfig:
    """Per-frame normalization and sub-pixel refinement.

    Attributes:
        flip_vertical: Flip every frame around the horizontal axis
            before detection.
        subpix_window: Half-size of the ``cornerSubPix`` search window.
        subpix_max_iter: Iteration cap for sub-pixel refinement.
        subpix_epsilon: Minimum corner movement before refinement stops.
    """

    flip_vertical: bool = False
    subpix_window: tuple[int, ...] = (11, 11)
    subpix_max_iter: int = 30
    subpix_epsilon: float = 0.1


@dataclass
class SolverConfig:
    """Calibration solver flags and sanity limits.

    Attributes:
        aspect_ratio: ``fx / fy`` used when ``fix_aspect_ratio`` is set.
        fix_aspect_ratio: Keep the focal length ratio fixed.
        use_intrinsic_guess: Seed the solver with an initial camera
            matrix estimated from the observations.
        fix_principal_point: Keep the principal point at the image
            centre.
        zero_tangent_dist: Force tangential distortion to zero.
        min_views: Minimum number of observations required to solve.
        max_abs_value: Largest magnitude accepted in the camera matrix
            or distortion vector.
    """

    aspect_ratio: float = 1.0
    fix_aspect_ratio: bool = False
    use_intrinsic_guess: bool = False
    fix_principal_point: bool = False
    zero_tangent_dist: bool = False
    min_views: int = 3
    max_abs_value: float = 1e9


@dataclass
class CaptureConfig:
    """Image intake and solve triggering.

    Attributes:
        images: Glob pattern selecting the calibration images.
        target_frames: Observation count that must be exceeded before a
            mid-stream solve. ``None`` uses the number of images, so the
            solve happens once the source is exhausted.
        auto_start: Enter the capturing state on the first frame and
            re-arm after a failed solve.
        solve_on_stop: Run a final solve when the session is stopped
            early.
    """

    images: str = ""
    target_frames: int | None = None
    auto_start: bool = True
    solve_on_stop: bool = True


@dataclass
class OutputConfig:
    """Artifact and side-output locations.

    Attributes:
        path: Calibration artifact path (``.yml``, ``.xml`` or
            ``.json``).
        write_extrinsics: Store per-view poses and errors.
        write_points: Store every detected image point.
        annotated_dir: Directory for annotated frames (empty disables).
        undistorted_dir: Directory for undistorted copies of the input
            images (empty disables).
    """

    path: str = "out_camera_data.yml"
    write_extrinsics: bool = True
    write_points: bool = False
    annotated_dir: str = ""
    undistorted_dir: str = ""


@dataclass
class SessionConfig:
    """Top-level configuration composing all section configs.

    Attributes:
        board: Calibration target geometry.
        detection: Frame normalization and refinement.
        solver: Solver flags and limits.
        capture: Image intake and solve triggering.
        output: Artifact and side-output locations.
    """

    board: BoardConfig = field(default_factory=BoardConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
