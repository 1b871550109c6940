"""Frame annotation for progress previews."""

from __future__ import annotations

import cv2
import numpy as np

CAPTURING_COLOR = (0, 255, 0)
CALIBRATED_COLOR = (0, 0, 255)


def annotate_frame(
    image: np.ndarray,
    pattern_size: tuple[int, int],
    points: np.ndarray | None,
    found: bool,
    captured: int,
    total: int | None,
    calibrated: bool = False,
) -> np.ndarray:
    """Draw detected points and a ``captured/total`` counter.

    Args:
        image: Grayscale or BGR frame. Not modified.
        pattern_size: ``(cols, rows)`` of the target.
        points: Detected points, or ``None``.
        found: Whether the detector located the full target.
        captured: Observations accumulated so far.
        total: Frames in the source, if known.
        calibrated: Draw the counter in the calibrated colour.

    Returns:
        A BGR copy of *image* with the overlay.
    """
    if image.ndim == 2:
        view = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    else:
        view = image.copy()

    if found and points is not None:
        cv2.drawChessboardCorners(
            view, pattern_size,
            np.asarray(points, np.float32).reshape(-1, 1, 2), found,
        )

    msg = f"{captured}/{total}" if total is not None else str(captured)
    (text_w, _), baseline = cv2.getTextSize(msg, cv2.FONT_HERSHEY_PLAIN, 1, 1)
    origin = (
        max(0, view.shape[1] - 2 * text_w - 10),
        max(0, view.shape[0] - 2 * baseline - 10),
    )
    color = CALIBRATED_COLOR if calibrated else CAPTURING_COLOR
    cv2.putText(view, msg, origin, cv2.FONT_HERSHEY_PLAIN, 1, color)
    return view
