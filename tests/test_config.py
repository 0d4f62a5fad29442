from __future__ import annotations

from pathlib import Path

import pytest

from rfcgate.core.config import GatewayConfig, load_config
from rfcgate.core.errors import ConfigError


def _write_config(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_defaults_without_config_file() -> None:
    config = load_config()
    assert config == GatewayConfig()
    assert config.baudrate == 19200
    assert config.flash_size == 0x2600


def test_user_config_overrides_defaults(tmp_path: Path) -> None:
    _write_config(
        tmp_path / "cfg" / "rfcgate" / "config.yaml",
        """
baudrate: 9600
command_timeout_s: 2.5
flash_end: 0x3800
""",
    )

    config = load_config()
    assert config.baudrate == 9600
    assert config.command_timeout_s == 2.5
    assert config.flash_end == 0x3800
    assert config.flash_start == 0x1400


def test_config_path_from_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = _write_config(tmp_path / "gateway.yaml", "bootloader_delay_s: 0\n")
    monkeypatch.setenv("RFCGATE_CONFIG", str(path))
    assert load_config().bootloader_delay_s == 0


def test_explicit_missing_config_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="does not exist"):
        load_config(tmp_path / "nope.yaml")


def test_unknown_config_key_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "gateway.yaml", "baud: 9600\n")
    with pytest.raises(ConfigError, match="Schema validation failed"):
        load_config(path)


def test_inverted_flash_range_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "gateway.yaml", "flash_start: 0x3000\nflash_end: 0x2000\n")
    with pytest.raises(ConfigError, match="flash_end must be above flash_start"):
        load_config(path)


def test_malformed_config_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "gateway.yaml", "- just\n- a list\n")
    with pytest.raises(ConfigError, match="mapping at root"):
        load_config(path)
