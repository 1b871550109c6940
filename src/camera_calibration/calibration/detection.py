"""Pattern detection and sub-pixel refinement.

Defines the ``PatternDetector`` and ``SubpixRefiner`` protocols that
the capture session delegates to, together with the OpenCV-backed
implementations used by default. Any object with matching methods can
be substituted.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import cv2
import numpy as np

from camera_calibration.calibration.board import BoardGeometry, PatternType

logger = logging.getLogger(__name__)

CHESSBOARD_FLAGS = (
    cv2.CALIB_CB_ADAPTIVE_THRESH
    | cv2.CALIB_CB_FAST_CHECK
    | cv2.CALIB_CB_NORMALIZE_IMAGE
)


@runtime_checkable
class PatternDetector(Protocol):
    """Protocol for calibration target detectors."""

    def detect(
        self,
        image: np.ndarray,
        pattern: PatternType,
        geometry: BoardGeometry,
    ) -> tuple[bool, np.ndarray | None]:
        """Locate the target points in a grayscale image.

        Returns:
            ``(found, points)`` where *points* is a float32 array of
            shape ``(N, 1, 2)`` in reference-point order, or ``None``.
        """
        ...


@runtime_checkable
class SubpixRefiner(Protocol):
    """Protocol for sub-pixel point refiners."""

    def refine(
        self,
        image: np.ndarray,
        points: np.ndarray,
        window: tuple[int, int],
        criteria: tuple[int, int, float],
    ) -> np.ndarray:
        """Return refined copies of *points* (same shape and order)."""
        ...


class OpenCVPatternDetector:
    """Detector backed by ``findChessboardCorners`` / ``findCirclesGrid``.

    Args:
        flags: Optional detector flags overriding the per-pattern
            defaults.
    """

    def __init__(self, flags: int | None = None) -> None:
        self.flags = flags

    def detect(
        self,
        image: np.ndarray,
        pattern: PatternType,
        geometry: BoardGeometry,
    ) -> tuple[bool, np.ndarray | None]:
        size = geometry.pattern_size
        try:
            if pattern is PatternType.CHESSBOARD:
                flags = CHESSBOARD_FLAGS if self.flags is None else self.flags
                found, points = cv2.findChessboardCorners(image, size, flags=flags)
            elif pattern is PatternType.CIRCLES_GRID:
                flags = cv2.CALIB_CB_SYMMETRIC_GRID if self.flags is None else self.flags
                found, points = cv2.findCirclesGrid(image, size, flags=flags)
            elif pattern is PatternType.ASYMMETRIC_CIRCLES_GRID:
                flags = cv2.CALIB_CB_ASYMMETRIC_GRID if self.flags is None else self.flags
                found, points = cv2.findCirclesGrid(image, size, flags=flags)
            else:
                raise ValueError(f"Unknown pattern type: {pattern!r}")
        except cv2.error as exc:
            logger.debug("Detector raised: %s", exc)
            return False, None

        if not found or points is None:
            return False, None
        return True, np.asarray(points, np.float32).reshape(-1, 1, 2)


class OpenCVSubpixRefiner:
    """Refiner backed by ``cv2.cornerSubPix``."""

    def refine(
        self,
        image: np.ndarray,
        points: np.ndarray,
        window: tuple[int, int],
        criteria: tuple[int, int, float],
    ) -> np.ndarray:
        corners = np.array(points, np.float32).reshape(-1, 1, 2)
        try:
            return cv2.cornerSubPix(
                image, corners, tuple(window), (-1, -1), criteria,
            )
        except cv2.error as exc:
            logger.debug("Sub-pixel refinement failed, keeping raw points: %s", exc)
            return corners


def normalize_frame(image: np.ndarray, flip_vertical: bool = False) -> np.ndarray:
    """Convert a frame to single-channel grayscale, optionally flipped.

    Args:
        image: ``(H, W)``, ``(H, W, 1)``, ``(H, W, 3)`` BGR or
            ``(H, W, 4)`` BGRA image.
        flip_vertical: Flip around the horizontal axis.

    Returns:
        A ``(H, W)`` image.
    """
    if image.ndim == 3:
        channels = image.shape[2]
        if channels == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        elif channels == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        else:
            image = image[:, :, 0]
    if flip_vertical:
        image = cv2.flip(image, 0)
    return image


def subpix_criteria(max_iter: int = 30, epsilon: float = 0.1) -> tuple[int, int, float]:
    """Build ``cornerSubPix`` termination criteria (count or epsilon)."""
    return (
        cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_COUNT,
        int(max_iter),
        float(epsilon),
    )
