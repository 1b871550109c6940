"""Tests for camera_calibration.config.loader."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml

from camera_calibration.config.loader import (
    load_config,
    save_config,
    validate_config,
)
from camera_calibration.config.schema import SessionConfig


def _write_yaml(tmp_path: Path, data) -> Path:
    path = tmp_path / "session.yaml"
    path.write_text(yaml.dump(data))
    return path


class TestLoadConfig:
    """Merging a YAML file over the defaults."""

    def test_none_returns_defaults(self) -> None:
        assert load_config(None) == SessionConfig()

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_empty_file_returns_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == SessionConfig()

    def test_partial_sections(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path, {
            "board": {"width": 8, "height": 5, "square_size": 30},
            "solver": {"fix_aspect_ratio": True, "aspect_ratio": 0.75},
            "capture": {"images": "shots/*.png", "target_frames": 15},
        })
        cfg = load_config(path)

        assert (cfg.board.width, cfg.board.height) == (8, 5)
        assert cfg.board.square_size == 30.0
        assert isinstance(cfg.board.square_size, float)
        assert cfg.solver.fix_aspect_ratio
        assert cfg.solver.aspect_ratio == 0.75
        assert cfg.capture.images == "shots/*.png"
        assert cfg.capture.target_frames == 15
        assert cfg.board.pattern == "chessboard"
        assert cfg.output.write_extrinsics

    def test_empty_section_keeps_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "session.yaml"
        path.write_text("board:\nsolver:\n  min_views: 5\n")
        cfg = load_config(path)
        assert cfg.board.width == 9
        assert cfg.solver.min_views == 5

    def test_unknown_keys_warned(self, tmp_path: Path, caplog) -> None:
        path = _write_yaml(tmp_path, {
            "board": {"colour": "red"},
            "camera": {"fps": 30},
        })
        with caplog.at_level(logging.WARNING, logger="camera_calibration.config.loader"):
            cfg = load_config(path)

        assert cfg == SessionConfig()
        assert "board.colour" in caplog.text
        assert "camera" in caplog.text

    def test_subpix_window_list_becomes_tuple(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path, {"detection": {"subpix_window": [5, 7]}})
        assert load_config(path).detection.subpix_window == (5, 7)

    def test_pattern_name_canonicalized(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path, {"board": {"pattern": "ASYMMETRIC_CIRCLES_GRID"}})
        assert load_config(path).board.pattern == "acircles"

    def test_top_level_must_be_mapping(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path, ["board", "solver"])
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_section_must_be_mapping(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path, {"board": 9})
        with pytest.raises(ValueError, match="board"):
            load_config(path)

    @pytest.mark.parametrize("section, values, match", [
        ("board", {"pattern": "hexagons"}, "Unknown pattern"),
        ("board", {"width": 0}, "board.width"),
        ("board", {"height": 2.5}, "board.height"),
        ("board", {"square_size": -1}, "board.square_size"),
        ("detection", {"subpix_window": [11, 11, 11]}, "subpix_window"),
        ("capture", {"target_frames": -1}, "capture.target_frames"),
        ("solver", {"min_views": 0}, "solver.min_views"),
    ])
    def test_invalid_values_rejected(
        self, tmp_path: Path, section: str, values: dict, match: str,
    ) -> None:
        path = _write_yaml(tmp_path, {section: values})
        with pytest.raises(ValueError, match=match):
            load_config(path)


class TestValidateConfig:
    """Normalization of configs built in code."""

    def test_defaults_unchanged(self) -> None:
        assert validate_config(SessionConfig()) == SessionConfig()

    def test_scalar_window_expanded(self) -> None:
        cfg = SessionConfig()
        cfg.detection.subpix_window = 5
        validate_config(cfg)
        assert cfg.detection.subpix_window == (5, 5)

    def test_integral_floats_accepted(self) -> None:
        cfg = SessionConfig()
        cfg.board.width = 7.0
        cfg.capture.target_frames = 0
        validate_config(cfg)
        assert cfg.board.width == 7
        assert isinstance(cfg.board.width, int)
        assert cfg.capture.target_frames == 0

    def test_bool_is_not_a_count(self) -> None:
        cfg = SessionConfig()
        cfg.solver.min_views = True
        with pytest.raises(ValueError, match="integer"):
            validate_config(cfg)


class TestSaveConfig:
    """Writing configs back to YAML."""

    def test_roundtrip(self, tmp_path: Path) -> None:
        cfg = SessionConfig()
        cfg.board.pattern = "circles"
        cfg.board.square_size = 20.0
        cfg.detection.subpix_window = (7, 7)
        cfg.capture.target_frames = 20
        cfg.output.write_points = True

        path = tmp_path / "nested" / "session.yaml"
        save_config(cfg, path)
        assert load_config(path) == cfg

    def test_section_order(self, tmp_path: Path) -> None:
        path = tmp_path / "session.yaml"
        save_config(SessionConfig(), path)
        data = yaml.safe_load(path.read_text())
        assert list(data) == ["board", "detection", "solver", "capture", "output"]
        assert data["detection"]["subpix_window"] == [11, 11]
        assert data["capture"]["target_frames"] is None
