"""Catalog loading and validation for YAML-based device model catalogs."""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import validators
from jsonschema.exceptions import ValidationError as SchemaValidationError

from rfcgate.core.catalog import COMMON_MODEL, CatalogSet, ModelCatalog
from rfcgate.core.errors import CatalogLoadError, CatalogValidationError
from rfcgate.core.model import SettingDescriptor
from rfcgate.core.validators import parse_conversion, parse_validator

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

# "on"/"off"/"yes" must stay strings in messages and setting names.
for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise CatalogValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@lru_cache(maxsize=None)
def load_schema_validator(name: str) -> Any:
    schema_text = resources.files("rfcgate.schemas").joinpath(name).read_text(encoding="utf-8")
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def read_yaml(path: Path | Traversable, *, error_cls: type[Exception] = CatalogValidationError) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CatalogLoadError(f"Could not read file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise error_cls(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise error_cls(f"File {path} must contain a mapping at root")
    return loaded


def validate_document(
    doc: dict[str, Any],
    source: Path | Traversable | str,
    *,
    schema: str,
    error_cls: type[Exception] = CatalogValidationError,
) -> None:
    validator = load_schema_validator(schema)
    try:
        validator.validate(doc)
    except SchemaValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise error_cls(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _catalog_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "rfcgate/catalogs", xdg_data / "rfcgate/catalogs"


def _build_setting(model: str, name: str, spec: dict[str, Any]) -> SettingDescriptor:
    context = f"{model}.settings.{name}"
    write_specs = spec.get("write")
    write_types = (
        tuple(parse_validator(s, context=f"{context}.write") for s in write_specs)
        if write_specs
        else None
    )
    read_specs = spec.get("read")
    if read_specs:
        read_types = tuple(parse_validator(s, context=f"{context}.read") for s in read_specs)
    elif write_types:
        read_types = write_types
    else:
        raise CatalogValidationError(f"{context}: setting needs 'write' or 'read' value types")

    convert = spec.get("convert_for_write")
    return SettingDescriptor(
        command=spec["command"].upper(),
        write_arg_types=write_types,
        read_arg_types=read_types,
        convert_for_write=parse_conversion(convert, context=f"{context}.convert_for_write")
        if convert
        else None,
    )


def _build_catalog(doc: dict[str, Any], source: Path | Traversable) -> ModelCatalog:
    validate_document(doc, source, schema="catalog.schema.json")

    model = str(doc["model"])
    settings = {
        name: _build_setting(model, name, spec)
        for name, spec in (doc.get("settings") or {}).items()
    }

    errors: dict[int, str] = {}
    for entry in doc.get("errors") or []:
        code = int(entry["code"])
        if code in errors:
            raise CatalogValidationError(f"{model}: duplicate error code {code} in {source}")
        errors[code] = entry["message"]

    return ModelCatalog(model=model, settings=settings, errors=errors)


def _iter_packaged_catalog_paths() -> list[Traversable]:
    catalog_root = resources.files("rfcgate.catalogs")
    return [item for item in catalog_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_catalog_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _catalog_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_catalogs() -> CatalogSet:
    catalogs: dict[str, ModelCatalog] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_catalog_paths(), key=lambda p: p.name):
        catalog = _build_catalog(read_yaml(path), path)
        catalogs[catalog.model] = catalog

    for path in _iter_user_catalog_paths():
        catalog = _build_catalog(read_yaml(path), path)
        if catalog.model in catalogs:
            warning = f"User catalog '{catalog.model}' overrides packaged catalog"
            LOGGER.warning(warning)
            warnings.append(warning)
        catalogs[catalog.model] = catalog

    if COMMON_MODEL not in catalogs:
        raise CatalogLoadError(f"No '{COMMON_MODEL}' catalog found")

    return CatalogSet(catalogs, warnings=tuple(warnings))
