"""Frame-aligned bookkeeping for a calibration session.

The accumulator is an append-only store of per-frame outcomes and the
observations they produced. Every append checks that frames arrive in
order and that observations match the board point count, so the
found-flag sequence always lines up with the attempted frames.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Observation:
    """Detected target points of one captured frame.

    Attributes:
        frame_index: Index of the originating frame.
        points: Float32 ``(N, 2)`` image points in reference-point
            order.
    """

    frame_index: int
    points: np.ndarray


@dataclass(frozen=True)
class FrameOutcome:
    """Bookkeeping entry for one attempted frame.

    Attributes:
        frame_index: Index of the frame in acquisition order.
        found: The frame produced an observation.
        detected: The detector located the target, whether or not the
            session was capturing at the time.
        name: Frame label.
    """

    frame_index: int
    found: bool
    detected: bool = False
    name: str = ""


class ObservationAccumulator:
    """Append-only store of observations and frame outcomes.

    Args:
        point_count: Number of reference points on the board; every
            observation must have exactly this many points.
    """

    def __init__(self, point_count: int) -> None:
        self.point_count = point_count
        self._observations: list[Observation] = []
        self._outcomes: list[FrameOutcome] = []

    @property
    def frames_attempted(self) -> int:
        return len(self._outcomes)

    def _check_index(self, frame_index: int) -> None:
        if frame_index != len(self._outcomes):
            raise ValueError(
                f"Frame {frame_index} recorded out of order "
                f"(expected frame {len(self._outcomes)})",
            )

    def add_observation(
        self,
        frame_index: int,
        points: np.ndarray,
        name: str = "",
    ) -> FrameOutcome:
        """Record a captured frame and its detected points.

        Returns:
            The :class:`FrameOutcome` appended for the frame. The stored
            :class:`Observation` is available from :meth:`all`.

        Raises:
            ValueError: If the frame is out of order or the point count
                does not match the board.
        """
        self._check_index(frame_index)
        pts = np.asarray(points, np.float32).reshape(-1, 2)
        if pts.shape[0] != self.point_count:
            raise ValueError(
                f"Frame {frame_index} has {pts.shape[0]} points, "
                f"expected {self.point_count}",
            )
        outcome = FrameOutcome(frame_index, True, True, name)
        self._observations.append(Observation(frame_index, pts))
        self._outcomes.append(outcome)
        return outcome

    def add_failure(
        self,
        frame_index: int,
        detected: bool = False,
        name: str = "",
    ) -> FrameOutcome:
        """Record a frame that produced no observation.

        Raises:
            ValueError: If the frame is out of order.
        """
        self._check_index(frame_index)
        outcome = FrameOutcome(frame_index, False, detected, name)
        self._outcomes.append(outcome)
        return outcome

    def count(self) -> int:
        """Number of observations."""
        return len(self._observations)

    def all(self) -> list[Observation]:
        """Observations in frame order."""
        return list(self._observations)

    def outcomes(self) -> list[FrameOutcome]:
        """Frame outcomes in frame order, one per attempted frame."""
        return list(self._outcomes)

    def found_flags(self) -> list[bool]:
        """``found`` flag of every attempted frame."""
        return [o.found for o in self._outcomes]

    def image_points(self) -> list[np.ndarray]:
        """Points of every observation in frame order."""
        return [o.points for o in self._observations]
