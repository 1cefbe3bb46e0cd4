from __future__ import annotations

import logging
import textwrap
from pathlib import Path

import pytest
from pydantic import ValidationError

from tweengraph.config import CanvasConfig, ClockConfig, ScenarioConfig, load_scenario_config
from tweengraph.logging_config import setup_logging
from tweengraph.settings import get_settings, output_root


def _write(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "scenario.yaml"
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


def test_load_full_scenario(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
        script: my_show.scripts:main
        clock:
          fps: 30
          duration_s: 2
          stall_budget_s: 0.5
        canvas:
          resolution: [256, 240]
          units: 128
        values:
          marios: 1
        metadata:
          name: Title Card
        """,
    )
    config = load_scenario_config(path)
    assert config.script == "my_show.scripts:main"
    assert config.clock.fps == 30
    assert config.clock.frame_limit() == 61
    assert config.canvas.resolution == (256, 240)
    assert config.values == {"marios": 1}
    assert config.metadata["name"] == "Title Card"


def test_defaults_for_empty_file(tmp_path: Path) -> None:
    config = load_scenario_config(_write(tmp_path, ""))
    assert config.script is None
    assert config.clock.fps == 60
    assert config.clock.frame_limit() is None
    assert config.canvas == CanvasConfig()


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_scenario_config(tmp_path / "nope.yaml")


def test_top_level_must_be_mapping(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="mapping"):
        load_scenario_config(_write(tmp_path, "- 1\n- 2\n"))


@pytest.mark.parametrize("script", ["no_colon", "module:", ":func"])
def test_script_reference_is_validated(script: str) -> None:
    with pytest.raises(ValidationError):
        ScenarioConfig(script=script)


def test_clock_rejects_non_positive_values() -> None:
    with pytest.raises(ValidationError):
        ClockConfig(fps=0)
    with pytest.raises(ValidationError):
        ClockConfig(max_frames=0)


def test_frame_limit_takes_the_smaller_bound() -> None:
    clock = ClockConfig(fps=10, duration_s=1.0, max_frames=5)
    assert clock.frame_limit() == 5
    assert clock.frame_duration == pytest.approx(0.1)


def test_settings_from_environment(clean_settings, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TWEENGRAPH_OUTPUTS", str(tmp_path / "renders"))
    monkeypatch.setenv("TWEENGRAPH_LOG_LEVEL", "debug")
    settings = get_settings()
    assert settings.output_root == (tmp_path / "renders").resolve()
    assert settings.log_level == "DEBUG"
    assert get_settings() is settings
    assert output_root() == settings.output_root


def test_settings_reject_unknown_log_level(clean_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TWEENGRAPH_LOG_LEVEL", "chatty")
    with pytest.raises(ValidationError):
        get_settings()


@pytest.fixture()
def restore_package_logger():
    logger = logging.getLogger("tweengraph")
    handlers, level = list(logger.handlers), logger.level
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_setup_logging_writes_file(restore_package_logger, tmp_path: Path) -> None:
    log_file = tmp_path / "run.log"
    logger = setup_logging("DEBUG", log_file)
    assert logger is restore_package_logger
    assert len(logger.handlers) == 2

    logging.getLogger("tweengraph.animation").debug("frame %d ready", 7)
    for handler in logger.handlers:
        handler.flush()
    assert "frame 7 ready" in log_file.read_text(encoding="utf-8")


def test_setup_logging_is_idempotent(restore_package_logger, clean_settings) -> None:
    setup_logging(logging.INFO)
    logger = setup_logging()
    assert len(logger.handlers) == 1
    assert logger.level == logging.INFO
