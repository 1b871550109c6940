"""Frame source interface for a calibration session.

Defines the ``FrameSource`` protocol consumed by
:class:`camera_calibration.pipeline.session.CalibrationSession` and an
in-memory implementation. Use
:class:`camera_calibration.sources.files.ImageFileSource` for images on
disk.
"""

from __future__ import annotations

from typing import Iterator, NamedTuple, Protocol, Sequence, runtime_checkable

import numpy as np


class SourceFrame(NamedTuple):
    """One frame handed to the session.

    Attributes:
        name: Label used in logs (file path, frame number, ...).
        image: The image, or ``None`` if it could not be read.
    """

    name: str
    image: np.ndarray | None


@runtime_checkable
class FrameSource(Protocol):
    """Protocol for ordered, finite frame sources."""

    def __iter__(self) -> Iterator[SourceFrame]:
        """Yield frames in acquisition order."""
        ...

    def __len__(self) -> int:
        """Return the number of frames the source will yield."""
        ...


class ArraySource:
    """Frame source over images already held in memory.

    Args:
        images: Images in acquisition order. ``None`` entries model
            unreadable frames.
        names: Optional labels, one per image.
    """

    def __init__(
        self,
        images: Sequence[np.ndarray | None],
        names: Sequence[str] | None = None,
    ) -> None:
        if names is not None and len(names) != len(images):
            raise ValueError(
                f"Got {len(names)} names for {len(images)} images",
            )
        self._images = list(images)
        self._names = (
            list(names) if names is not None
            else [f"frame{i}" for i in range(len(self._images))]
        )

    def __iter__(self) -> Iterator[SourceFrame]:
        for name, image in zip(self._names, self._images):
            yield SourceFrame(name, image)

    def __len__(self) -> int:
        return len(self._images)
