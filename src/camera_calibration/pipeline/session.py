"""Calibration session controller.

:class:`CalibrationSession` drives a single-pass calibration over an
ordered frame source. Each frame is normalized, handed to the pattern
detector and sub-pixel refiner, and recorded in an
:class:`ObservationAccumulator`. Once the observation count exceeds
the target (or the source runs out) the session solves, checks and
persists the calibration.

States::

    DETECTING --start_capture()--> CAPTURING --solve ok--> CALIBRATED
        ^                              |
        +---------solve failed---------+

Observations are only recorded while capturing. A failed solve drops
back to detecting; with ``capture.auto_start`` the next frame re-arms
capturing and accumulation continues with every earlier observation
kept.
"""

from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Callable

import cv2
import numpy as np

from camera_calibration.calibration.artifact import (
    CalibrationArtifact,
    save_artifact,
)
from camera_calibration.calibration.board import (
    BoardGeometry,
    PatternType,
    build_reference_points,
)
from camera_calibration.calibration.detection import (
    OpenCVPatternDetector,
    OpenCVSubpixRefiner,
    PatternDetector,
    SubpixRefiner,
    normalize_frame,
    subpix_criteria,
)
from camera_calibration.calibration.solver import (
    CalibrationResult,
    CalibrationSolver,
    OpenCVSolver,
    SolveFlags,
    calibrate,
)
from camera_calibration.config.schema import SessionConfig
from camera_calibration.errors import SolveFailedError
from camera_calibration.pipeline.accumulator import (
    FrameOutcome,
    Observation,
    ObservationAccumulator,
)
from camera_calibration.pipeline.overlay import annotate_frame
from camera_calibration.sources.base import FrameSource

logger = logging.getLogger(__name__)

FrameCallback = Callable[[int, np.ndarray], None]


class SessionState(enum.Enum):
    """Capture state of a calibration session."""

    DETECTING = "detecting"
    CAPTURING = "capturing"
    CALIBRATED = "calibrated"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DETECTING: frozenset({SessionState.CAPTURING}),
    SessionState.CAPTURING: frozenset({
        SessionState.CALIBRATED, SessionState.DETECTING,
    }),
    SessionState.CALIBRATED: frozenset({SessionState.DETECTING}),
}


class CalibrationSession:
    """State machine for one calibration session.

    Args:
        config: Session configuration. Uses defaults if ``None``.
        detector: Pattern detector. Defaults to OpenCV.
        refiner: Sub-pixel refiner. Defaults to OpenCV.
        solver: Calibration solver. Defaults to OpenCV.
        frame_callback: Called with ``(frame_index, annotated_bgr)``
            after every frame, e.g. for a live preview.

    Raises:
        ValueError: If the configured pattern type is unknown.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        detector: PatternDetector | None = None,
        refiner: SubpixRefiner | None = None,
        solver: CalibrationSolver | None = None,
        frame_callback: FrameCallback | None = None,
    ) -> None:
        self.config = config if config is not None else SessionConfig()
        board = self.config.board

        self.pattern = PatternType.from_name(board.pattern)
        self.geometry = BoardGeometry(
            rows=board.height, cols=board.width, square_size=board.square_size,
        )
        self.reference_points = build_reference_points(self.geometry, self.pattern)
        self.flags = SolveFlags.from_config(self.config.solver)

        self.detector = detector if detector is not None else OpenCVPatternDetector()
        self.refiner = refiner if refiner is not None else OpenCVSubpixRefiner()
        self.solver = solver if solver is not None else OpenCVSolver()
        self.frame_callback = frame_callback

        self.accumulator = ObservationAccumulator(self.geometry.point_count)
        self.image_size: tuple[int, int] | None = None
        self.total_frames: int | None = None
        self.result: CalibrationResult | None = None
        self.last_error: SolveFailedError | None = None
        self.artifact_path: Path | None = None

        self._state = SessionState.DETECTING
        self._stop_requested = False
        self._solved_count = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Illegal session transition {self._state.value} -> {new_state.value}",
            )
        logger.debug("Session %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    def start_capture(self) -> None:
        """Begin recording observations.

        Raises:
            RuntimeError: If the session is already calibrated.
        """
        if self._state is SessionState.CAPTURING:
            return
        self._transition(SessionState.CAPTURING)
        logger.info("Capturing started")

    def request_stop(self) -> None:
        """Ask :meth:`run` to stop before the next frame."""
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def observations(self) -> list[Observation]:
        return self.accumulator.all()

    @property
    def outcomes(self) -> list[FrameOutcome]:
        return self.accumulator.outcomes()

    @property
    def found_flags(self) -> list[bool]:
        return self.accumulator.found_flags()

    @property
    def camera_matrix(self) -> np.ndarray | None:
        return None if self.result is None else self.result.camera_matrix

    @property
    def dist_coeffs(self) -> np.ndarray | None:
        return None if self.result is None else self.result.dist_coeffs

    @property
    def extrinsics(self) -> np.ndarray | None:
        """``(N, 6)`` ``[rvec, tvec]`` rows of the last successful solve."""
        return None if self.result is None else self.result.extrinsics_matrix()

    # ------------------------------------------------------------------
    # Frame processing
    # ------------------------------------------------------------------

    def _target_frames(self) -> int | None:
        target = self.config.capture.target_frames
        return target if target is not None else self.total_frames

    def _detect(self, gray: np.ndarray) -> tuple[bool, np.ndarray | None]:
        found, points = self.detector.detect(gray, self.pattern, self.geometry)
        if not found or points is None:
            return False, None

        points = np.asarray(points, np.float32).reshape(-1, 1, 2)
        if points.shape[0] != self.geometry.point_count:
            logger.debug(
                "Detector returned %d points, expected %d",
                points.shape[0], self.geometry.point_count,
            )
            return False, None

        det = self.config.detection
        refined = self.refiner.refine(
            gray,
            points,
            (int(det.subpix_window[0]), int(det.subpix_window[1])),
            subpix_criteria(det.subpix_max_iter, det.subpix_epsilon),
        )
        return True, np.asarray(refined, np.float32).reshape(-1, 2)

    def _log_progress(self, outcome: FrameOutcome) -> None:
        total = f"/{self.total_frames}" if self.total_frames is not None else ""
        logger.info(
            "Frame %d%s %s: %s",
            outcome.frame_index, total, outcome.name,
            "success" if outcome.found else "fail",
        )

    def _emit_annotation(
        self,
        index: int,
        gray: np.ndarray,
        points: np.ndarray | None,
        found: bool,
    ) -> None:
        annotated_dir = self.config.output.annotated_dir
        if not annotated_dir and self.frame_callback is None:
            return

        view = annotate_frame(
            gray,
            self.geometry.pattern_size,
            points,
            found,
            self.accumulator.count(),
            self.total_frames,
            calibrated=self._state is SessionState.CALIBRATED,
        )
        if annotated_dir:
            out_dir = Path(annotated_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            cv2.imwrite(str(out_dir / f"{index}.png"), view)
        if self.frame_callback is not None:
            self.frame_callback(index, view)

    def process_frame(
        self,
        image: np.ndarray | None,
        name: str = "",
    ) -> FrameOutcome:
        """Process one frame and trigger a solve if the target is reached.

        Args:
            image: The frame, or ``None`` if it could not be read.
            name: Label used in logs.

        Returns:
            The :class:`FrameOutcome` recorded for the frame.

        Raises:
            ArtifactIOError: If a triggered solve succeeds but the
                artifact cannot be written.
        """
        index = self.accumulator.frames_attempted
        if self._state is SessionState.DETECTING and self.config.capture.auto_start:
            self.start_capture()

        if image is None:
            logger.warning("Frame %d %s has no image", index, name)
            outcome = self.accumulator.add_failure(index, name=name)
            self._log_progress(outcome)
            return outcome

        gray = normalize_frame(image, self.config.detection.flip_vertical)
        size = (int(gray.shape[1]), int(gray.shape[0]))
        if self.image_size is None:
            self.image_size = size
        elif size != self.image_size:
            logger.warning(
                "Frame %d %s is %dx%d, expected %dx%d; skipped",
                index, name, size[0], size[1],
                self.image_size[0], self.image_size[1],
            )
            outcome = self.accumulator.add_failure(index, name=name)
            self._log_progress(outcome)
            return outcome

        found, points = self._detect(gray)
        if found and self._state is SessionState.CAPTURING:
            outcome = self.accumulator.add_observation(index, points, name)
        else:
            outcome = self.accumulator.add_failure(index, detected=found, name=name)
        self._log_progress(outcome)
        self._emit_annotation(index, gray, points, found)

        target = self._target_frames()
        if (
            self._state is SessionState.CAPTURING
            and target is not None
            and self.accumulator.count() > target
        ):
            self._solve()
        return outcome

    # ------------------------------------------------------------------
    # Solve and persistence
    # ------------------------------------------------------------------

    def _solve(self) -> None:
        image_points = self.accumulator.image_points()
        logger.info("Calibrating from %d observations", len(image_points))
        cfg = self.config.solver
        try:
            result = calibrate(
                self.reference_points,
                image_points,
                self.image_size,
                self.flags,
                aspect_ratio=cfg.aspect_ratio,
                min_views=cfg.min_views,
                max_abs_value=cfg.max_abs_value,
                solver=self.solver,
            )
        except SolveFailedError as exc:
            self.last_error = exc
            logger.warning("Calibration failed: %s", exc)
            self._transition(SessionState.DETECTING)
            return

        self.result = result
        self.last_error = None
        self._solved_count = len(image_points)
        self._transition(SessionState.CALIBRATED)
        logger.info(
            "Calibration succeeded. avg reprojection error = %.2f", result.rms,
        )

        if self.config.output.path:
            self.save(self.config.output.path)

    def finalize(self) -> CalibrationResult | None:
        """Solve on whatever was accumulated, as at the end of a source.

        Returns:
            The calibration result, or ``None`` if there were no
            observations or the solve failed.
        """
        if self._state is SessionState.CALIBRATED:
            return self.result
        if self.accumulator.count() == 0:
            logger.warning("No observations captured; nothing to calibrate")
            return None
        if self._state is SessionState.DETECTING:
            self._transition(SessionState.CAPTURING)

        self._solve()
        return self.result if self._state is SessionState.CALIBRATED else None

    def run(self, source: FrameSource) -> CalibrationResult | None:
        """Process every frame of *source*, then finalize.

        The loop checks :meth:`request_stop` between frames. A stopped
        session still finalizes when ``capture.solve_on_stop`` is set.

        Returns:
            The calibration result, or ``None``.
        """
        try:
            self.total_frames = len(source)
        except TypeError:
            self.total_frames = None

        stopped = False
        for frame in source:
            if self._stop_requested:
                stopped = True
                break
            self.process_frame(frame.image, frame.name)

        if stopped:
            logger.info(
                "Stopped after %d frames", self.accumulator.frames_attempted,
            )
            if not self.config.capture.solve_on_stop:
                return self.result
        return self.finalize()

    def build_artifact(self) -> CalibrationArtifact:
        """Assemble the artifact for the current session state."""
        out = self.config.output
        image_points: list[np.ndarray] = []
        if out.write_points:
            image_points = self.accumulator.image_points()
            if self.result is not None:
                image_points = image_points[:self._solved_count]

        return CalibrationArtifact(
            pattern=self.pattern,
            geometry=self.geometry,
            image_size=self.image_size if self.image_size is not None else (0, 0),
            flags=self.flags,
            aspect_ratio=self.config.solver.aspect_ratio,
            found_flags=self.accumulator.found_flags(),
            result=self.result,
            image_points=image_points,
            write_extrinsics=out.write_extrinsics,
        )

    def save(self, path: str | Path) -> Path:
        """Persist the session to *path*.

        Raises:
            ArtifactIOError: If the file cannot be written.
        """
        path = Path(path)
        save_artifact(self.build_artifact(), path)
        self.artifact_path = path
        return path
