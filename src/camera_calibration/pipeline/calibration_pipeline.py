"""High-level calibration pipeline orchestrator.

Chains the full calibration workflow:

1. Image discovery from the configured glob.
2. A :class:`CalibrationSession` over every image (detection,
   bookkeeping, solve and artifact output).
3. Optional undistorted copies of the input images.

The public entry point is :func:`run_calibration_pipeline`; the
``camera-calibrate`` console script wraps it in :func:`main`.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

import cv2

from camera_calibration.calibration.intrinsics import Intrinsics, undistort_image
from camera_calibration.calibration.solver import CalibrationResult
from camera_calibration.config.loader import load_config, validate_config
from camera_calibration.config.schema import SessionConfig
from camera_calibration.errors import ArtifactIOError
from camera_calibration.pipeline.session import CalibrationSession
from camera_calibration.sources.files import ImageFileSource

logger = logging.getLogger(__name__)

PREVIEW_WINDOW = "Running Calibration"
PREVIEW_SCALE = 3
PREVIEW_WAIT_MS = 300
ESC_KEY = 27


def save_undistorted(
    source: ImageFileSource,
    intrinsics: Intrinsics,
    output_dir: str | Path,
) -> int:
    """Write an undistorted copy of every readable image in *source*.

    Returns:
        Number of images written.
    """
    d = Path(output_dir)
    d.mkdir(parents=True, exist_ok=True)

    written = 0
    for frame in source:
        if frame.image is None:
            continue
        out = undistort_image(frame.image, intrinsics)
        cv2.imwrite(str(d / Path(frame.name).name), out)
        written += 1
    logger.info("Saved %d undistorted images to %s", written, d)
    return written


def _make_preview(session: CalibrationSession):
    """Build a frame callback showing a downscaled preview window."""

    def show(index: int, view) -> None:
        h, w = view.shape[:2]
        small = cv2.resize(view, (w // PREVIEW_SCALE, h // PREVIEW_SCALE))
        cv2.imshow(PREVIEW_WINDOW, small)
        if cv2.waitKey(PREVIEW_WAIT_MS) & 0xFF == ESC_KEY:
            session.request_stop()

    return show


def run_calibration_pipeline(
    config: SessionConfig,
    preview: bool = False,
) -> CalibrationResult | None:
    """Run a full calibration from the images selected by *config*.

    Args:
        config: Session configuration. ``capture.images`` must select at
            least one file.
        preview: Show each annotated frame in an OpenCV window; ESC
            stops the session.

    Returns:
        The calibration result, or ``None`` if no calibration could be
        computed.

    Raises:
        FileNotFoundError: If no images match ``capture.images``.
        ValueError: If the configured pattern type is unknown.
        ArtifactIOError: If the artifact cannot be written.
    """
    source = ImageFileSource.from_glob(config.capture.images)

    session = CalibrationSession(config)
    if preview:
        session.frame_callback = _make_preview(session)

    try:
        result = session.run(source)
    finally:
        if preview:
            cv2.destroyAllWindows()

    if result is None:
        logger.warning(
            "Calibration failed: %d of %d frames captured",
            session.accumulator.count(), session.accumulator.frames_attempted,
        )
        return None

    logger.info(
        "Calibration succeeded from %d views. avg reprojection error = %.4f",
        result.view_count, result.rms,
    )
    if config.output.undistorted_dir:
        save_undistorted(
            source,
            Intrinsics(K=result.camera_matrix, D=result.dist_coeffs),
            config.output.undistorted_dir,
        )
    return result


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Calibrate a camera from images of a planar target.",
    )
    parser.add_argument(
        "config", nargs="?", type=Path, default=None,
        help="YAML configuration file (default: built-in defaults)",
    )
    parser.add_argument("--images", help="Glob pattern selecting calibration images")
    parser.add_argument("--output", help="Calibration artifact path")
    parser.add_argument(
        "--pattern", choices=("chessboard", "circles", "acircles"),
        help="Calibration target type",
    )
    parser.add_argument("--board-width", type=int, help="Inner points per row")
    parser.add_argument("--board-height", type=int, help="Rows of inner points")
    parser.add_argument("--square-size", type=float, help="Point spacing")
    parser.add_argument(
        "--write-points", action="store_true",
        help="Store detected image points in the artifact",
    )
    parser.add_argument("--annotated-dir", help="Directory for annotated frames")
    parser.add_argument("--undistorted-dir", help="Directory for undistorted images")
    parser.add_argument(
        "--preview", action="store_true",
        help="Show annotated frames while processing (ESC stops)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging",
    )
    return parser.parse_args(argv)


def _apply_overrides(config: SessionConfig, args: argparse.Namespace) -> None:
    if args.images is not None:
        config.capture.images = args.images
    if args.output is not None:
        config.output.path = args.output
    if args.pattern is not None:
        config.board.pattern = args.pattern
    if args.board_width is not None:
        config.board.width = args.board_width
    if args.board_height is not None:
        config.board.height = args.board_height
    if args.square_size is not None:
        config.board.square_size = args.square_size
    if args.write_points:
        config.output.write_points = True
    if args.annotated_dir is not None:
        config.output.annotated_dir = args.annotated_dir
    if args.undistorted_dir is not None:
        config.output.undistorted_dir = args.undistorted_dir


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for the calibration pipeline.

    Returns:
        Process exit status: 0 on a successful calibration, 1 otherwise.
    """
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
        _apply_overrides(config, args)
        validate_config(config)
        result = run_calibration_pipeline(config, preview=args.preview)
    except (FileNotFoundError, ValueError, ArtifactIOError) as exc:
        logger.error("%s", exc)
        return 1

    return 0 if result is not None else 1
