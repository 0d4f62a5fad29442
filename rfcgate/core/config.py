"""Gateway configuration loaded from an optional YAML file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from rfcgate.core.catalog_loader import read_yaml, validate_document
from rfcgate.core.errors import CatalogLoadError, ConfigError

LOGGER = logging.getLogger(__name__)

CONFIG_ENV = "RFCGATE_CONFIG"


@dataclass(frozen=True)
class GatewayConfig:
    baudrate: int = 19200
    command_timeout_s: float = 15.0
    bootloader_delay_s: float = 1.0
    # usable application flash, as laid out by the device bootloader
    flash_start: int = 0x1400
    flash_end: int = 0x3A00

    @property
    def flash_size(self) -> int:
        return self.flash_end - self.flash_start


def default_config_path() -> Path:
    override = os.environ.get(CONFIG_ENV)
    if override:
        return Path(override)
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "rfcgate/config.yaml"


def load_config(path: Path | None = None) -> GatewayConfig:
    explicit = path is not None or CONFIG_ENV in os.environ
    path = path or default_config_path()
    if not path.exists():
        if explicit:
            raise ConfigError(f"Config file {path} does not exist")
        return GatewayConfig()

    try:
        doc = read_yaml(path, error_cls=ConfigError)
    except CatalogLoadError as exc:
        raise ConfigError(str(exc)) from exc
    validate_document(doc, path, schema="config.schema.json", error_cls=ConfigError)

    known = {f.name for f in fields(GatewayConfig)}
    values: dict[str, Any] = {k: v for k, v in doc.items() if k in known}
    config = replace(GatewayConfig(), **values)
    if config.flash_end <= config.flash_start:
        raise ConfigError(f"flash_end must be above flash_start in {path}")
    LOGGER.debug("Loaded config from %s: %s", path, config)
    return config
