"""Tests for catalogsync.framework.mapping.config."""

from __future__ import annotations

import json
import textwrap

import pytest

from catalogsync.core.errors import ConfigParsingError
from catalogsync.framework.mapping.config import (
    MappingConfig,
    build_mappers,
    load_mapping_configs,
)

SERVICE_YAML = textwrap.dedent(
    """
    type: service
    apiVersion: catalog.example.com/v1
    kind: services
    syncable: true
    mappings:
      identifier: "{{ name }}"
      spec:
        owner: "{{ owner }}"
    extras:
      - apiVersion: catalog.example.com/v1
        kind: relationships
        identifier: "{{ name }}--{{ team }}"
        deletePolicy: cascade
        sourceRef:
          apiVersion: catalog.example.com/v1
          kind: teams
          name: "{{ team }}"
    ---
    type: team
    apiVersion: catalog.example.com/v1
    kind: teams
    mappings:
      identifier: "{{ slug }}"
    """
)


def _write(path, content):
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadMappingConfigs:
    def test_multi_document_yaml(self, tmp_path):
        configs = load_mapping_configs([_write(tmp_path / "mappings.yaml", SERVICE_YAML)])

        assert [c.type for c in configs] == ["service", "team"]
        service, team = configs
        assert service.api_version == "catalog.example.com/v1"
        assert service.syncable is True
        assert service.mappings.spec == {"owner": "{{ owner }}"}
        assert service.extras[0]["deletePolicy"] == "cascade"
        assert team.syncable is False
        assert team.extras == []

    def test_json_object_and_array(self, tmp_path):
        doc = {
            "type": "repo",
            "apiVersion": "v1",
            "kind": "repositories",
            "mappings": {"identifier": "{{ name }}"},
        }
        one = _write(tmp_path / "one.json", json.dumps(doc))
        many = _write(tmp_path / "many.json", json.dumps([doc, {**doc, "type": "fork"}]))

        configs = load_mapping_configs([one, many])
        assert [c.type for c in configs] == ["repo", "repo", "fork"]

    def test_directory_children_in_name_order(self, tmp_path):
        _write(tmp_path / "b.yml", "type: b\napiVersion: v1\nkind: bs\nmappings:\n  identifier: x\n")
        _write(tmp_path / "a.yaml", "type: a\napiVersion: v1\nkind: as\nmappings:\n  identifier: x\n")
        _write(tmp_path / "notes.txt", "not a mapping")
        (tmp_path / "nested").mkdir()
        _write(tmp_path / "nested" / "c.yaml", "type: c\n")

        configs = load_mapping_configs([tmp_path])
        assert [c.type for c in configs] == ["a", "b"]

    def test_every_problem_is_reported(self, tmp_path):
        _write(tmp_path / "a.yaml", "apiVersion: v1\nkind: as\nmappings:\n  identifier: x\nunknown: 1\n")
        _write(tmp_path / "b.yaml", "type: b\n")
        _write(tmp_path / "c.yaml", "type: [unclosed\n")

        with pytest.raises(ConfigParsingError) as exc_info:
            load_mapping_configs([tmp_path, tmp_path / "missing.yaml"])

        errors = exc_info.value.errors
        assert any("a.yaml[0]: type:" in e for e in errors)
        assert any("a.yaml[0]: unknown:" in e for e in errors)
        assert any("b.yaml[0]: apiVersion:" in e for e in errors)
        assert any("b.yaml[0]: mappings:" in e for e in errors)
        assert any("c.yaml" in e for e in errors)
        assert any("missing.yaml: no such file" in e for e in errors)

    def test_empty_documents_are_skipped(self, tmp_path):
        content = "---\n---\ntype: a\napiVersion: v1\nkind: as\nmappings:\n  identifier: x\n"
        assert len(load_mapping_configs([_write(tmp_path / "a.yaml", content)])) == 1


class TestBuildMappers:
    def _configs(self, tmp_path):
        return load_mapping_configs([_write(tmp_path / "mappings.yaml", SERVICE_YAML)])

    def test_routing_table(self, tmp_path):
        mappers = build_mappers(self._configs(tmp_path))

        assert set(mappers) == {"service", "team"}
        service = mappers["service"]
        assert (service.api_version, service.kind) == ("catalog.example.com/v1", "services")
        output, extras = service.mapper.apply_templates({"name": "api", "owner": "me", "team": "core"})
        assert output.identifier == "api"
        assert extras[0].spec["targetRef"] == {
            "apiVersion": "catalog.example.com/v1",
            "kind": "services",
            "name": "api",
        }

    def test_syncable_only(self, tmp_path):
        assert set(build_mappers(self._configs(tmp_path), syncable_only=True)) == {"service"}

    def test_duplicate_types_and_broken_templates(self):
        def config(type_, identifier):
            return MappingConfig.model_validate(
                {"type": type_, "apiVersion": "v1", "kind": "k", "mappings": {"identifier": identifier}}
            )

        with pytest.raises(ConfigParsingError) as exc_info:
            build_mappers([config("a", "{{ x }}"), config("a", "{{ x }}"), config("b", "{{ x | nope }}")])

        errors = exc_info.value.errors
        assert errors[0] == "a: duplicate mapping for type"
        assert errors[1].startswith("b: identifier:")
