"""Camera calibration solve and reprojection diagnostics.

The public entry point is :func:`calibrate`, which replicates the
board reference points once per observation, delegates the nonlinear
solve to a :class:`CalibrationSolver` (``cv2.calibrateCamera`` by
default), sanity-checks the returned intrinsics and computes per-view
and aggregate reprojection errors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import NamedTuple, Protocol, Sequence, runtime_checkable

import cv2
import numpy as np

from camera_calibration.config.schema import SolverConfig
from camera_calibration.errors import DegenerateSolutionError, SolveFailedError

logger = logging.getLogger(__name__)

DISTORTION_SIZE = 8


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SolveFlags:
    """Solver options, each mapped to an OpenCV ``CALIB_*`` flag.

    Attributes:
        use_intrinsic_guess: ``CALIB_USE_INTRINSIC_GUESS``.
        fix_aspect_ratio: ``CALIB_FIX_ASPECT_RATIO``.
        fix_principal_point: ``CALIB_FIX_PRINCIPAL_POINT``.
        zero_tangent_dist: ``CALIB_ZERO_TANGENT_DIST``.
        extra: Any further ``CALIB_*`` bits, passed through verbatim.
    """

    use_intrinsic_guess: bool = False
    fix_aspect_ratio: bool = False
    fix_principal_point: bool = False
    zero_tangent_dist: bool = False
    extra: int = 0

    @classmethod
    def from_config(cls, cfg: SolverConfig) -> SolveFlags:
        return cls(
            use_intrinsic_guess=cfg.use_intrinsic_guess,
            fix_aspect_ratio=cfg.fix_aspect_ratio,
            fix_principal_point=cfg.fix_principal_point,
            zero_tangent_dist=cfg.zero_tangent_dist,
        )

    @classmethod
    def from_bitmask(cls, flags: int) -> SolveFlags:
        """Split an OpenCV flag bitmask back into named options."""
        named = (
            cv2.CALIB_USE_INTRINSIC_GUESS
            | cv2.CALIB_FIX_ASPECT_RATIO
            | cv2.CALIB_FIX_PRINCIPAL_POINT
            | cv2.CALIB_ZERO_TANGENT_DIST
        )
        return cls(
            use_intrinsic_guess=bool(flags & cv2.CALIB_USE_INTRINSIC_GUESS),
            fix_aspect_ratio=bool(flags & cv2.CALIB_FIX_ASPECT_RATIO),
            fix_principal_point=bool(flags & cv2.CALIB_FIX_PRINCIPAL_POINT),
            zero_tangent_dist=bool(flags & cv2.CALIB_ZERO_TANGENT_DIST),
            extra=int(flags) & ~named,
        )

    def to_bitmask(self) -> int:
        flags = int(self.extra)
        if self.use_intrinsic_guess:
            flags |= cv2.CALIB_USE_INTRINSIC_GUESS
        if self.fix_aspect_ratio:
            flags |= cv2.CALIB_FIX_ASPECT_RATIO
        if self.fix_principal_point:
            flags |= cv2.CALIB_FIX_PRINCIPAL_POINT
        if self.zero_tangent_dist:
            flags |= cv2.CALIB_ZERO_TANGENT_DIST
        return flags

    def summary(self) -> str:
        """Human-readable summary, e.g. ``"+use_intrinsic_guess+fix_aspectRatio"``."""
        parts = [
            ("+use_intrinsic_guess", self.use_intrinsic_guess),
            ("+fix_aspectRatio", self.fix_aspect_ratio),
            ("+fix_principal_point", self.fix_principal_point),
            ("+zero_tangent_dist", self.zero_tangent_dist),
        ]
        return "".join(name for name, enabled in parts if enabled)


@dataclass
class CalibrationResult:
    """Result of a successful calibration solve.

    Attributes:
        camera_matrix: 3x3 intrinsic matrix.
        dist_coeffs: 8x1 distortion coefficients (unused terms zero).
        rvecs: Per-observation 3x1 rotation vectors (axis-angle).
        tvecs: Per-observation 3x1 translation vectors.
        per_view_errors: Per-observation RMS reprojection error.
        rms: Aggregate RMS reprojection error, weighted by point count.
        solver_rms: RMS value reported by the solver itself.
    """

    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray
    rvecs: list[np.ndarray] = field(default_factory=list)
    tvecs: list[np.ndarray] = field(default_factory=list)
    per_view_errors: np.ndarray = field(
        default_factory=lambda: np.zeros(0, np.float64),
    )
    rms: float = 0.0
    solver_rms: float = 0.0

    @property
    def view_count(self) -> int:
        return len(self.rvecs)

    def rotation_matrices(self) -> list[np.ndarray]:
        """Per-observation 3x3 rotation matrices (``cv2.Rodrigues``)."""
        return [
            cv2.Rodrigues(np.asarray(rv, np.float64).reshape(3, 1))[0]
            for rv in self.rvecs
        ]

    def extrinsics_matrix(self) -> np.ndarray:
        """Stack poses into an ``(N, 6)`` array of ``[rvec, tvec]`` rows."""
        out = np.zeros((self.view_count, 6), np.float64)
        for i, (rv, tv) in enumerate(zip(self.rvecs, self.tvecs)):
            out[i, :3] = np.asarray(rv, np.float64).ravel()
            out[i, 3:] = np.asarray(tv, np.float64).ravel()
        return out


class SolverOutput(NamedTuple):
    """Raw values returned by a :class:`CalibrationSolver`."""

    rms: float
    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray
    rvecs: Sequence[np.ndarray]
    tvecs: Sequence[np.ndarray]


# ---------------------------------------------------------------------------
# Solver capability
# ---------------------------------------------------------------------------

@runtime_checkable
class CalibrationSolver(Protocol):
    """Protocol for nonlinear camera calibration solvers."""

    def solve(
        self,
        object_points: list[np.ndarray],
        image_points: list[np.ndarray],
        image_size: tuple[int, int],
        camera_matrix: np.ndarray,
        dist_coeffs: np.ndarray,
        flags: int,
    ) -> SolverOutput:
        """Estimate intrinsics and per-view poses.

        Raises:
            SolveFailedError: If no solution can be computed.
        """
        ...


class OpenCVSolver:
    """Solver backed by ``cv2.calibrateCamera``."""

    def solve(
        self,
        object_points: list[np.ndarray],
        image_points: list[np.ndarray],
        image_size: tuple[int, int],
        camera_matrix: np.ndarray,
        dist_coeffs: np.ndarray,
        flags: int,
    ) -> SolverOutput:
        try:
            rms, K, D, rvecs, tvecs = cv2.calibrateCamera(
                [np.asarray(op, np.float32).reshape(-1, 1, 3) for op in object_points],
                [np.asarray(ip, np.float32).reshape(-1, 1, 2) for ip in image_points],
                (int(image_size[0]), int(image_size[1])),
                camera_matrix,
                dist_coeffs,
                flags=flags,
            )
        except cv2.error as exc:
            raise SolveFailedError(f"cv2.calibrateCamera failed: {exc}") from exc
        return SolverOutput(float(rms), K, D, list(rvecs), list(tvecs))


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

def compute_reprojection_errors(
    object_points: Sequence[np.ndarray],
    image_points: Sequence[np.ndarray],
    rvecs: Sequence[np.ndarray],
    tvecs: Sequence[np.ndarray],
    camera_matrix: np.ndarray,
    dist_coeffs: np.ndarray,
) -> tuple[np.ndarray, float]:
    """Reproject every view and measure the pixel error.

    For view ``i`` with ``n_i`` points and L2 residual norm ``e_i``
    the per-view error is ``sqrt(e_i**2 / n_i)``. The aggregate error
    is ``sqrt(sum(e_i**2) / sum(n_i))``, which weights views by their
    point count.

    Returns:
        ``(per_view_errors, rms)``.
    """
    per_view = np.zeros(len(object_points), np.float64)
    total_sq = 0.0
    total_points = 0
    K = np.asarray(camera_matrix, np.float64)
    D = np.asarray(dist_coeffs, np.float64)

    for i, (op, ip, rv, tv) in enumerate(
        zip(object_points, image_points, rvecs, tvecs),
    ):
        op = np.asarray(op, np.float64).reshape(-1, 3)
        projected, _ = cv2.projectPoints(
            op,
            np.asarray(rv, np.float64).reshape(3, 1),
            np.asarray(tv, np.float64).reshape(3, 1),
            K,
            D,
        )
        diff = projected.reshape(-1, 2) - np.asarray(ip, np.float64).reshape(-1, 2)
        err_sq = float(np.sum(diff * diff))
        n = op.shape[0]
        per_view[i] = np.sqrt(err_sq / n)
        total_sq += err_sq
        total_points += n

    rms = float(np.sqrt(total_sq / total_points)) if total_points else 0.0
    return per_view, rms


def check_solution(
    camera_matrix: np.ndarray,
    dist_coeffs: np.ndarray,
    max_abs_value: float = 1e9,
) -> None:
    """Reject non-finite or absurdly large intrinsics.

    Raises:
        DegenerateSolutionError: If any value fails the check.
    """
    for name, arr in (("camera matrix", camera_matrix), ("distortion", dist_coeffs)):
        values = np.asarray(arr, np.float64)
        if not np.all(np.isfinite(values)):
            raise DegenerateSolutionError(f"Non-finite values in {name}")
        if np.any(np.abs(values) > max_abs_value):
            raise DegenerateSolutionError(
                f"Out-of-range values in {name} (|x| > {max_abs_value:g})",
            )


def _as_distortion_vector(dist_coeffs: np.ndarray) -> np.ndarray:
    d = np.asarray(dist_coeffs, np.float64).ravel()
    out = np.zeros((DISTORTION_SIZE, 1), np.float64)
    n = min(d.size, DISTORTION_SIZE)
    out[:n, 0] = d[:n]
    return out


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def calibrate(
    reference_points: np.ndarray,
    image_points: Sequence[np.ndarray],
    image_size: tuple[int, int],
    flags: SolveFlags | None = None,
    *,
    aspect_ratio: float = 1.0,
    min_views: int = 3,
    max_abs_value: float = 1e9,
    solver: CalibrationSolver | None = None,
) -> CalibrationResult:
    """Calibrate a camera from repeated observations of one target.

    Args:
        reference_points: ``(N, 3)`` board points shared by all views.
        image_points: Per-observation ``(N, 2)`` or ``(N, 1, 2)``
            detected points, in reference-point order.
        image_size: ``(width, height)`` of the frames.
        flags: Solver options. Defaults to none set.
        aspect_ratio: ``fx / fy`` seed used with ``fix_aspect_ratio``.
        min_views: Minimum number of observations.
        max_abs_value: Bound for :func:`check_solution`.
        solver: Solver to delegate to. Defaults to :class:`OpenCVSolver`.

    Returns:
        A :class:`CalibrationResult`.

    Raises:
        SolveFailedError: If there are too few views or the solver fails.
        DegenerateSolutionError: If the solution fails the validity check.
    """
    if flags is None:
        flags = SolveFlags()
    if solver is None:
        solver = OpenCVSolver()

    if len(image_points) < max(1, min_views):
        raise SolveFailedError(
            f"Insufficient views for calibration: {len(image_points)} "
            f"(need at least {max(1, min_views)})",
        )

    ref = np.asarray(reference_points, np.float32).reshape(-1, 3)
    object_sets = [ref.copy() for _ in image_points]
    image_sets = [np.asarray(ip, np.float32).reshape(-1, 2) for ip in image_points]
    for i, ip in enumerate(image_sets):
        if ip.shape[0] != ref.shape[0]:
            raise ValueError(
                f"Observation {i} has {ip.shape[0]} points, "
                f"expected {ref.shape[0]}",
            )

    camera_matrix = np.eye(3, dtype=np.float64)
    if flags.use_intrinsic_guess:
        camera_matrix = cv2.initCameraMatrix2D(
            object_sets, image_sets, tuple(image_size),
            aspect_ratio if flags.fix_aspect_ratio else 1.0,
        )
    elif flags.fix_aspect_ratio:
        camera_matrix[0, 0] = aspect_ratio
    dist_coeffs = np.zeros((DISTORTION_SIZE, 1), np.float64)

    output = solver.solve(
        object_sets, image_sets, tuple(image_size),
        camera_matrix, dist_coeffs, flags.to_bitmask(),
    )
    logger.info("RMS error reported by solver: %g", output.rms)

    K = np.asarray(output.camera_matrix, np.float64).reshape(3, 3)
    D = _as_distortion_vector(output.dist_coeffs)
    check_solution(K, D, max_abs_value)

    rvecs = [np.asarray(rv, np.float64).reshape(3, 1) for rv in output.rvecs]
    tvecs = [np.asarray(tv, np.float64).reshape(3, 1) for tv in output.tvecs]
    if len(rvecs) != len(image_sets) or len(tvecs) != len(image_sets):
        raise SolveFailedError(
            f"Solver returned {len(rvecs)} poses for {len(image_sets)} views",
        )

    per_view, rms = compute_reprojection_errors(
        object_sets, image_sets, rvecs, tvecs, K, D,
    )
    logger.debug("Camera matrix:\n%s", K)
    return CalibrationResult(
        camera_matrix=K,
        dist_coeffs=D,
        rvecs=rvecs,
        tvecs=tvecs,
        per_view_errors=per_view,
        rms=rms,
        solver_rms=float(output.rms),
    )
