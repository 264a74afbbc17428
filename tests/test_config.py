"""Tests for the layered tool settings."""

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from vmono.config import Config, parse_size


def test_config_defaults() -> None:
    """Verifies that the settings initialize with sensible defaults."""
    conf = Config()
    assert conf.core.remote_name == "origin"
    assert conf.core.default_branch == "main"
    assert conf.validation.branch_check is True
    assert conf.limits.max_log_size == 5 * 1024 * 1024


def test_config_load_merges_layers(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies the cascading merge logic (Defaults -> Global -> Local).

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    global_config_path = tmp_path / "global_config.toml"
    global_config_path.write_text(
        '[core]\nremote_name = "upstream"\ndefault_branch = "trunk"\n'
        "[validation]\nbranch_check = false\n"
    )
    local_toml = tmp_path / "vmono.toml"
    local_toml.write_text('[core]\nremote_name = "backup"\n[limits]\nmax_log_size = "1mb"\n')

    mocker.patch("vmono.config.CONFIG_FILE", global_config_path)

    conf = Config.load(tmp_path)

    assert conf.core.remote_name == "backup"  # Local overrides Global
    assert conf.core.default_branch == "trunk"  # From Global
    assert conf.validation.branch_check is False
    assert conf.limits.max_log_size == 1024 * 1024


def test_local_settings_do_not_leak_into_global_cache(tmp_path: Path) -> None:
    (tmp_path / "vmono.toml").write_text('[core]\nremote_name = "backup"\n')

    assert Config.load(tmp_path).core.remote_name == "backup"
    assert Config.load().core.remote_name == "origin"


def test_parse_size() -> None:
    """Verifies that human-readable sizes are correctly converted to bytes."""
    assert parse_size(100) == 100
    assert parse_size("100kb") == 102400
    assert parse_size("10 MB") == 10485760
    assert parse_size("1.5gb") == int(1.5 * 1024**3)

    with pytest.raises(ValueError, match=r"Invalid size format '100 bits'"):
        parse_size("100 bits")


def test_config_invalid_keys_and_values(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that unknown keys are ignored and invalid values fall back to defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        caplog (pytest.LogCaptureFixture): Pytest fixture for capturing logs.
    """
    caplog.set_level(logging.WARNING)

    (tmp_path / "vmono.toml").write_text(
        "[validation]\n"
        'branch_check = "sometimes"\n'
        'fake_setting = "ignored"\n'
        "[limits]\n"
        'max_log_size = "10 gallons"\n'
    )

    conf = Config.load(tmp_path)

    assert conf.validation.branch_check is True
    assert conf.limits.max_log_size == 5242880

    assert "Unknown config keys in [validation]: fake_setting" in caplog.text
    assert "Config error in [validation].branch_check" in caplog.text
    assert "Config error in [limits].max_log_size: Invalid size format" in caplog.text


def test_config_syntax_error_keeps_defaults(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    (tmp_path / "vmono.toml").write_text("[core\nremote_name = ")

    conf = Config.load(tmp_path)

    assert conf.core.remote_name == "origin"
    assert "Config syntax error" in caplog.text
