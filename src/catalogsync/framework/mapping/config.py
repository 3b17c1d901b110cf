"""
Mapping configuration files.

A mapping file declares, for one source record ``type``, the catalog type
it becomes and the templates that build it:

.. code-block:: yaml

    type: resourcegroup
    apiVersion: catalog.example.com/v1
    kind: resourcegroups
    syncable: true
    mappings:
      identifier: "{{ name | lower }}"
      spec:
        location: "{{ location }}"
        tags: "{{ tags | to_json }}"
    extras:
      - apiVersion: catalog.example.com/v1
        kind: relationships
        identifier: "{{ name | lower }}--subscription"
        deletePolicy: cascade
        sourceRef:
          apiVersion: catalog.example.com/v1
          kind: subscriptions
          name: "{{ subscriptionId }}"
        type: membership

YAML files may hold several documents; JSON files hold an object or an
array of objects. Every problem across every file is reported in one
:class:`ConfigParsingError`.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from catalogsync.core.errors import ConfigParsingError
from catalogsync.core.logging import get_logger
from catalogsync.framework.mapping.mapper import Mapper, ParentResourceInfo
from catalogsync.framework.pipelines.engine import TypedMapper

log = get_logger(__name__)

CONFIG_SUFFIXES = (".yaml", ".yml", ".json")


# ── Models ────────────────────────────────────────────────────


class MappingTemplates(BaseModel):
    model_config = ConfigDict(extra="forbid")

    identifier: str = Field(min_length=1)
    spec: dict[str, str] = Field(default_factory=dict)


class MappingConfig(BaseModel):
    """One mapping document."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: str = Field(min_length=1)
    api_version: str = Field(alias="apiVersion", min_length=1)
    kind: str = Field(min_length=1)
    syncable: bool = False
    mappings: MappingTemplates
    extras: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def parent(self) -> ParentResourceInfo:
        return ParentResourceInfo(api_version=self.api_version, kind=self.kind)


# ── Loading ───────────────────────────────────────────────────


def _expand(paths: Iterable[str | Path], errors: list[str]) -> list[Path]:
    files: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(
                child for child in sorted(path.iterdir())
                if child.is_file() and child.suffix.lower() in CONFIG_SUFFIXES
            )
        elif path.is_file():
            files.append(path)
        else:
            errors.append(f"{path}: no such file or directory")
    return files


def _read_documents(path: Path) -> list[Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        document = json.loads(text)
        return document if isinstance(document, list) else [document]
    return [doc for doc in yaml.safe_load_all(text) if doc is not None]


def _format_validation(location: str, exc: ValidationError) -> list[str]:
    return [
        f"{location}: {'.'.join(str(part) for part in err['loc']) or 'document'}: {err['msg']}"
        for err in exc.errors()
    ]


def load_mapping_configs(paths: Iterable[str | Path]) -> list[MappingConfig]:
    """
    Load and validate every mapping document found in ``paths``.

    Directories contribute their direct ``.yaml`` / ``.yml`` / ``.json``
    children in name order.

    Raises:
        ConfigParsingError: listing every problem found
    """
    errors: list[str] = []
    configs: list[MappingConfig] = []

    for path in _expand(paths, errors):
        try:
            documents = _read_documents(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            errors.append(f"{path}: {exc}")
            continue

        for idx, document in enumerate(documents):
            location = f"{path}[{idx}]"
            try:
                configs.append(MappingConfig.model_validate(document))
            except ValidationError as exc:
                errors.extend(_format_validation(location, exc))

    if errors:
        raise ConfigParsingError(errors)

    log.debug("mapping.configs_loaded", count=len(configs))
    return configs


def build_mappers(
    configs: Iterable[MappingConfig], syncable_only: bool = False
) -> dict[str, TypedMapper]:
    """
    Compile mapping documents into the pipeline routing table.

    Args:
        configs: Loaded mapping documents
        syncable_only: Keep only documents marked ``syncable`` (full scans)

    Raises:
        ConfigParsingError: duplicate types or broken templates, all listed
    """
    errors: list[str] = []
    mappers: dict[str, TypedMapper] = {}

    for config in configs:
        if syncable_only and not config.syncable:
            continue
        if config.type in mappers:
            errors.append(f"{config.type}: duplicate mapping for type")
            continue
        try:
            mapper = Mapper(
                config.mappings.identifier,
                config.mappings.spec,
                config.extras,
                parent=config.parent,
            )
        except ConfigParsingError as exc:
            errors.extend(f"{config.type}: {problem}" for problem in exc.errors)
            continue
        mappers[config.type] = TypedMapper(api_version=config.api_version, kind=config.kind, mapper=mapper)

    if errors:
        raise ConfigParsingError(errors)
    return mappers


__all__ = [
    "CONFIG_SUFFIXES",
    "MappingTemplates",
    "MappingConfig",
    "load_mapping_configs",
    "build_mappers",
]
