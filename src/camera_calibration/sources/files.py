"""Frame source reading calibration images from disk."""

from __future__ import annotations

import glob
import logging
from pathlib import Path
from typing import Iterator, Sequence

import cv2

from camera_calibration.sources.base import SourceFrame

logger = logging.getLogger(__name__)


class ImageFileSource:
    """Ordered list of image files read lazily with ``cv2.imread``.

    Files that cannot be decoded are yielded with ``image=None`` so the
    session can record them without losing alignment with the path
    list.

    Args:
        paths: Image paths in acquisition order.
    """

    def __init__(self, paths: Sequence[str | Path]) -> None:
        self.paths = [Path(p) for p in paths]

    @classmethod
    def from_glob(cls, pattern: str | Path) -> ImageFileSource:
        """Create a source from a glob pattern, sorted by path.

        A directory is expanded to every file it contains.

        Raises:
            FileNotFoundError: If nothing matches *pattern*.
        """
        pattern = str(pattern)
        if not pattern:
            raise FileNotFoundError("No calibration image pattern given")
        if Path(pattern).is_dir():
            pattern = str(Path(pattern) / "*")
        paths = sorted(p for p in glob.glob(pattern) if Path(p).is_file())
        if not paths:
            raise FileNotFoundError(f"No calibration images match {pattern!r}")
        logger.info("Found %d calibration images for %s", len(paths), pattern)
        return cls(paths)

    def __iter__(self) -> Iterator[SourceFrame]:
        for path in self.paths:
            image = cv2.imread(str(path), cv2.IMREAD_COLOR)
            if image is None:
                logger.warning("Could not read image %s", path)
            yield SourceFrame(str(path), image)

    def __len__(self) -> int:
        return len(self.paths)
