"""YAML configuration for calibration sessions.

A session file only needs the keys it changes; everything else keeps the
``SessionConfig`` defaults. After merging, :func:`validate_config`
normalizes the values the session depends on (pattern name, board
size, refinement window, capture target) so a bad file fails at load
time instead of halfway through a run.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

import yaml

from camera_calibration.calibration.board import PatternType
from camera_calibration.config.schema import SessionConfig

logger = logging.getLogger(__name__)


def _to_plain(obj: Any) -> Any:
    """Turn a config tree into YAML-safe dicts, lists and scalars."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _to_plain(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, tuple):
        return [_to_plain(v) for v in obj]
    return obj


def _merge_section(section: Any, values: dict[str, Any], prefix: str) -> None:
    """Overlay *values* onto one config dataclass, in place.

    Nested sections recurse. Keys that are not fields of *section* are
    logged and skipped.
    """
    fields = {f.name: f for f in dataclasses.fields(section)}
    for key, value in values.items():
        name = f"{prefix}{key}"
        if key not in fields:
            logger.warning("Ignoring unknown config key %s", name)
            continue
        current = getattr(section, key)
        if dataclasses.is_dataclass(current):
            if value is None:
                continue
            if not isinstance(value, dict):
                raise ValueError(f"Config section {name} must be a mapping")
            _merge_section(current, value, f"{name}.")
        else:
            if isinstance(value, list) and "tuple" in str(fields[key].type):
                value = tuple(value)
            setattr(section, key, value)


def _checked_int(value: Any, name: str, minimum: int = 1) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {value!r}")
    return int(value)


def validate_config(config: SessionConfig) -> SessionConfig:
    """Check and normalize a merged configuration, in place.

    - ``board.pattern`` is reduced to its canonical name
      (``"Chessboard"`` becomes ``"chessboard"``).
    - ``board.width``, ``board.height``, ``detection.subpix_window``
      entries and ``solver.min_views`` must be positive integers.
    - ``board.square_size`` must be positive.
    - ``capture.target_frames`` must be ``None`` or a non-negative
      integer.

    Returns:
        *config*, for chaining.

    Raises:
        ValueError: If a value is out of range or of the wrong kind.
    """
    board = config.board
    board.pattern = PatternType.from_name(str(board.pattern)).value
    board.width = _checked_int(board.width, "board.width")
    board.height = _checked_int(board.height, "board.height")
    try:
        board.square_size = float(board.square_size)
    except (TypeError, ValueError):
        raise ValueError(
            f"board.square_size must be a number, got {board.square_size!r}",
        ) from None
    if board.square_size <= 0:
        raise ValueError(f"board.square_size must be positive, got {board.square_size}")

    window = config.detection.subpix_window
    if isinstance(window, (int, float)) and not isinstance(window, bool):
        window = (window, window)
    if not isinstance(window, (tuple, list)) or len(window) != 2:
        raise ValueError(f"detection.subpix_window needs 2 values, got {window!r}")
    config.detection.subpix_window = tuple(
        _checked_int(v, "detection.subpix_window") for v in window
    )

    config.solver.min_views = _checked_int(config.solver.min_views, "solver.min_views")

    target = config.capture.target_frames
    if target is not None:
        config.capture.target_frames = _checked_int(
            target, "capture.target_frames", minimum=0,
        )
    return config


def load_config(path: str | Path | None = None) -> SessionConfig:
    """Load a session configuration.

    Args:
        path: YAML file to merge over the defaults. ``None`` returns the
            defaults unchanged.

    Returns:
        A validated ``SessionConfig``.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file is not a mapping or holds invalid values.
    """
    config = SessionConfig()
    if path is None:
        return config

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f)

    if data is None:
        return config
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    _merge_section(config, data, "")
    logger.debug("Loaded config from %s", path)
    return validate_config(config)


def save_config(config: SessionConfig, path: str | Path) -> None:
    """Write *config* as YAML, sections in declaration order."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(_to_plain(config), f, default_flow_style=False, sort_keys=False)
