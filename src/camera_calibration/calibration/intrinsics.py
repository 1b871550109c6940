"""Intrinsic parameters and undistortion helpers.

Provides the :class:`Intrinsics` container returned by
:func:`camera_calibration.calibration.artifact.load_intrinsics` and
functions to undistort images with those parameters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class Intrinsics:
    """Pinhole camera intrinsic parameters.

    Attributes:
        K: 3x3 camera intrinsic matrix.
        D: Distortion coefficient array.
    """

    K: np.ndarray
    D: np.ndarray

    @property
    def focal_lengths(self) -> tuple[float, float]:
        """``(fx, fy)`` in pixels."""
        return float(self.K[0, 0]), float(self.K[1, 1])

    @property
    def principal_point(self) -> tuple[float, float]:
        """``(cx, cy)`` in pixels."""
        return float(self.K[0, 2]), float(self.K[1, 2])


def build_undistort_maps(
    K: np.ndarray,
    D: np.ndarray,
    image_size: tuple[int, int],
    alpha: float = 1.0,
) -> tuple[np.ndarray, np.ndarray]:
    """Build undistortion rectification maps for a pinhole camera.

    The output camera matrix comes from
    ``cv2.getOptimalNewCameraMatrix`` so that *alpha* controls how
    much of the source image is retained (0 crops to valid pixels,
    1 keeps every source pixel).

    Args:
        K: 3x3 intrinsic matrix.
        D: Distortion coefficients.
        image_size: ``(width, height)`` of the images.
        alpha: Free scaling parameter in ``[0, 1]``.

    Returns:
        ``(map1, map2)`` arrays for ``cv2.remap()``.
    """
    K = np.asarray(K, np.float64).reshape(3, 3)
    D = np.asarray(D, np.float64).ravel()
    size = (int(image_size[0]), int(image_size[1]))

    new_K, _ = cv2.getOptimalNewCameraMatrix(K, D, size, alpha, size, False)
    map1, map2 = cv2.initUndistortRectifyMap(
        K, D, None, new_K, size, cv2.CV_16SC2,
    )
    return map1, map2


def undistort_image(
    image: np.ndarray,
    intrinsics: Intrinsics,
    method: str = "remap",
) -> np.ndarray:
    """Undistort a single image.

    Args:
        image: Input image.
        intrinsics: Calibrated parameters.
        method: ``"remap"`` (optimal new camera matrix, keeps all
            pixels) or ``"undistort"`` (same camera matrix).

    Returns:
        The undistorted image.

    Raises:
        ValueError: If *method* is not recognized.
    """
    if method == "undistort":
        return cv2.undistort(image, intrinsics.K, intrinsics.D, None, intrinsics.K)
    if method == "remap":
        h, w = image.shape[:2]
        map1, map2 = build_undistort_maps(intrinsics.K, intrinsics.D, (w, h))
        return cv2.remap(image, map1, map2, cv2.INTER_LINEAR)
    raise ValueError(
        f"Unknown undistort method: {method!r}. "
        f"Supported: 'remap', 'undistort'."
    )
