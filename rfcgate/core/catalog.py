"""Per-model settings and error catalogs.

A resolved catalog is the ``common`` table overlaid by the model table, so a
model entry wins over a common entry with the same key.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from rfcgate.core.errors import UnsupportedModelError, ValidationError
from rfcgate.core.model import SettingDescriptor

COMMON_MODEL = "common"
UNKNOWN_ERROR = "Unknown error"


@dataclass(frozen=True)
class ModelCatalog:
    model: str
    settings: dict[str, SettingDescriptor] = field(default_factory=dict)
    errors: dict[int, str] = field(default_factory=dict)


class ErrorCatalog(Mapping[int, str]):
    def __init__(self, model: str, entries: Mapping[int, str]) -> None:
        self.model = model
        self._entries = dict(entries)

    def __getitem__(self, code: int) -> str:
        return self._entries[code]

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def message(self, code: Any) -> str:
        try:
            return self._entries.get(int(code), UNKNOWN_ERROR)
        except (TypeError, ValueError):
            return UNKNOWN_ERROR

    def format(self, code: Any) -> str:
        return f"Error {code}: {self.message(code)}"


class SettingsCatalog(Mapping[str, SettingDescriptor]):
    def __init__(self, model: str, entries: Mapping[str, SettingDescriptor]) -> None:
        self.model = model
        self._entries = dict(entries)

    def __getitem__(self, key: str) -> SettingDescriptor:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def descriptor(self, key: str) -> SettingDescriptor:
        descriptor = self._entries.get(key)
        if descriptor is None:
            raise ValidationError(f"Unknown parameter '{key}'")
        return descriptor

    def writable(self, key: str) -> SettingDescriptor:
        descriptor = self.descriptor(key)
        if descriptor.read_only:
            raise ValidationError(f"Read-only parameter '{key}'")
        return descriptor


class CatalogSet:
    """All loaded model catalogs, resolvable per device model."""

    def __init__(self, catalogs: Mapping[str, ModelCatalog], warnings: tuple[str, ...] = ()) -> None:
        self._catalogs = dict(catalogs)
        self.warnings = warnings

    @property
    def models(self) -> tuple[str, ...]:
        return tuple(sorted(m for m in self._catalogs if m != COMMON_MODEL))

    def _layers(self, model: str) -> list[ModelCatalog]:
        if model not in self._catalogs:
            raise UnsupportedModelError(f"Unsupported model {model}")
        layers = [self._catalogs[COMMON_MODEL]] if COMMON_MODEL in self._catalogs else []
        if model != COMMON_MODEL:
            layers.append(self._catalogs[model])
        return layers

    def settings_for_model(self, model: str) -> SettingsCatalog:
        merged: dict[str, SettingDescriptor] = {}
        for layer in self._layers(model):
            merged.update(layer.settings)
        return SettingsCatalog(model, merged)

    def errors_for_model(self, model: str) -> ErrorCatalog:
        merged: dict[int, str] = {}
        for layer in self._layers(model):
            merged.update(layer.errors)
        return ErrorCatalog(model, merged)
