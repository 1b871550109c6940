"""Calibration target geometry.

Builds the canonical 3-D reference points for chessboard and circle
grid targets. The layout is computed once per session and reused for
every observed frame, since the target is rigid.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)


class PatternType(enum.Enum):
    """Supported planar calibration targets."""

    CHESSBOARD = "chessboard"
    CIRCLES_GRID = "circles"
    ASYMMETRIC_CIRCLES_GRID = "acircles"

    @classmethod
    def from_name(cls, name: str) -> PatternType:
        """Parse a pattern name such as ``"chessboard"`` or ``"acircles"``.

        Raises:
            ValueError: If *name* is not a known pattern.
        """
        key = name.lower().strip()
        for member in cls:
            if key in (member.value, member.name.lower()):
                return member
        raise ValueError(
            f"Unknown pattern type: {name!r}. "
            f"Supported: {', '.join(repr(m.value) for m in cls)}."
        )


@dataclass(frozen=True)
class BoardGeometry:
    """Inner point counts and spacing of a calibration target.

    Attributes:
        rows: Number of point rows (OpenCV ``boardSize.height``).
        cols: Number of points per row (OpenCV ``boardSize.width``).
        square_size: Physical spacing between neighbouring points.
    """

    rows: int
    cols: int
    square_size: float = 1.0

    @property
    def pattern_size(self) -> tuple[int, int]:
        """``(cols, rows)`` as expected by the OpenCV detectors."""
        return (self.cols, self.rows)

    @property
    def point_count(self) -> int:
        return self.rows * self.cols


def build_reference_points(
    geometry: BoardGeometry,
    pattern: PatternType,
) -> np.ndarray:
    """Build the 3-D reference points of a calibration target.

    Points are ordered row by row. For chessboards and symmetric circle
    grids the point at row ``i``, column ``j`` is
    ``(j * s, i * s, 0)``; asymmetric grids stagger every other row,
    giving ``((2 * j + i % 2) * s, i * s, 0)``.

    Args:
        geometry: Board dimensions and spacing.
        pattern: Target type.

    Returns:
        Float32 array of shape ``(rows * cols, 3)``.

    Raises:
        ValueError: If *pattern* is not a :class:`PatternType`.
    """
    if not isinstance(pattern, PatternType):
        raise ValueError(f"Unknown pattern type: {pattern!r}")

    s = geometry.square_size
    i, j = np.mgrid[0:geometry.rows, 0:geometry.cols]
    i = i.ravel().astype(np.float64)
    j = j.ravel().astype(np.float64)

    points = np.zeros((geometry.point_count, 3), np.float32)
    if pattern is PatternType.ASYMMETRIC_CIRCLES_GRID:
        points[:, 0] = (2 * j + i % 2) * s
    else:
        points[:, 0] = j * s
    points[:, 1] = i * s
    return points


def generate_chessboard_image(
    squares_x: int,
    squares_y: int,
    square_px: int = 100,
    margin_px: int = 0,
    path: str | Path | None = None,
) -> np.ndarray:
    """Render a printable black and white chessboard.

    A board of ``squares_x`` by ``squares_y`` squares has
    ``(squares_x - 1, squares_y - 1)`` inner corners. The top-left
    square is black.

    Args:
        squares_x: Number of squares along the width.
        squares_y: Number of squares along the height.
        square_px: Side length of one square in pixels.
        margin_px: White border around the board in pixels.
        path: If given, the image is also written to this file.

    Returns:
        A uint8 grayscale image.
    """
    rows, cols = np.mgrid[0:squares_y * square_px, 0:squares_x * square_px]
    board = ((rows // square_px + cols // square_px) % 2 * 255).astype(np.uint8)
    if margin_px > 0:
        board = np.pad(board, margin_px, constant_values=255)

    if path is not None:
        import cv2

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        cv2.imwrite(str(path), board)
        logger.info("Wrote %dx%d chessboard to %s", squares_x, squares_y, path)
    return board
