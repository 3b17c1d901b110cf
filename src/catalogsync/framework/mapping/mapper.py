"""
Template mapper: turns one raw record into an identified, typed output.

Manifesto:
    Every source speaks its own dialect. The mapper is where a user decides
    how a cloud resource, an issue or a project becomes a catalog item,
    without writing code:

    - **Compile once:** every template is parsed at construction; a broken
      configuration fails at startup, listing every defect at once
    - **Typed output:** a rendered value that parses as JSON becomes that
      JSON value, so ``"{{ count }}"`` yields a number
    - **Relationships:** extras derive auxiliary records that point back
      to the parent through an engine-synthesized ``targetRef``

Architecture:
    ::

        Mapper(identifier, spec, extras, parent=ParentResourceInfo(...))
              │ compile (errors collected → ConfigParsingError)
              ▼
        apply_templates(values)
              │
              ├─ 1. identifier  → validated name
              ├─ 2. spec fields → JSON-coerced values
              └─ 3. extras (declared order)
                     identifier, fields, sourceRef
                     + targetRef {apiVersion, kind, name=parent identifier}
              ▼
        (MappedData, [ExtraMappedData, ...])

Templates:
    Jinja2, sandboxed, strict about undefined names. The record's keys are
    top-level variables and the whole record is ``record``; dotted access on
    mappings resolves keys first, so ``{{ project._id }}`` and
    ``{{ obj.items }}`` read data. See :mod:`.functions` for helpers.

    A record key named like a function (``get``, ``list``, ``now``, ...) is
    not copied to the top level, so it never hides the function; read it as
    ``record.get``. Calling a name that is neither a function nor declared
    in the template is a configuration error.

Tags:
    mapping, templates, jinja2, relationships, catalog-sync
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from jinja2 import StrictUndefined, Template, TemplateError, meta, nodes
from jinja2.sandbox import SandboxedEnvironment

from catalogsync.core.errors import ConfigParsingError, TemplateExecutionError
from catalogsync.core.logging import get_logger
from catalogsync.framework.mapping import functions

log = get_logger(__name__)

IDENTIFIER_MAX_LENGTH = 253
_IDENTIFIER_RE = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*")

DELETE_POLICY_NONE = "none"
DELETE_POLICY_CASCADE = "cascade"
DELETE_POLICIES = (DELETE_POLICY_NONE, DELETE_POLICY_CASCADE)

# Keys of an extra definition that are not part of its output spec
_EXTRA_RESERVED = frozenset({"identifier", "apiVersion", "kind", "deletePolicy"})
_SOURCE_REF_KEYS = ("apiVersion", "kind", "name")


# =============================================================================
# OUTPUT TYPES
# =============================================================================


@dataclass(frozen=True)
class ParentResourceInfo:
    """Type of the entity that owns a mapper's extras."""

    api_version: str
    kind: str


@dataclass(frozen=True)
class MappedData:
    identifier: str
    spec: dict[str, Any]


@dataclass(frozen=True)
class ExtraMappedData(MappedData):
    """A relationship record, typed independently of its parent."""

    api_version: str
    kind: str


# =============================================================================
# TEMPLATE ENVIRONMENT
# =============================================================================


def _finalize(value: Any) -> Any:
    # Render non-string values the way the JSON coercion reads them back
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list, tuple)):
        return functions.to_json(value)
    return value


class RecordEnvironment(SandboxedEnvironment):
    """Sandboxed Jinja2 environment where mapping keys win over attributes."""

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping):
            if attribute in obj:
                return obj[attribute]
            return self.undefined(obj=obj, name=attribute)
        return super().getattr(obj, attribute)


def create_environment() -> RecordEnvironment:
    env = RecordEnvironment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        finalize=_finalize,
    )
    env.filters.update(functions.FILTERS)
    env.globals.update(functions.GLOBALS)
    return env


_environment = create_environment()


def _reject_constant(name: str) -> Any:
    raise ValueError(f"not a JSON value: {name}")


def _coerce(rendered: str) -> Any:
    """Return the JSON value ``rendered`` spells, or ``rendered`` itself."""
    try:
        return json.loads(rendered, parse_constant=_reject_constant)
    except ValueError:
        return rendered


def validate_identifier(value: str) -> None:
    """Raise ``ValueError`` unless ``value`` is a lowercase DNS-style name."""
    if not value:
        raise ValueError("identifier is empty")
    if len(value) > IDENTIFIER_MAX_LENGTH:
        raise ValueError(f"identifier longer than {IDENTIFIER_MAX_LENGTH} characters")
    if not _IDENTIFIER_RE.fullmatch(value):
        raise ValueError(
            f"identifier {value!r} must consist of lowercase alphanumeric characters, "
            "'-' or '.', and must start and end with an alphanumeric character"
        )


# =============================================================================
# COMPILED TEMPLATES
# =============================================================================


class _Compiler:
    """Compiles templates while collecting every syntax error."""

    def __init__(self, env: SandboxedEnvironment):
        self._env = env
        self.errors: list[str] = []

    def template(self, source: Any, path: str) -> Template | None:
        if not isinstance(source, str):
            self.errors.append(f"{path}: template must be a string, got {type(source).__name__}")
            return None
        try:
            ast = self._env.parse(source)
            unknown = self._unknown_functions(ast)
            if not unknown:
                return self._env.from_string(ast)
        except TemplateError as exc:
            self.errors.append(f"{path}: {exc}")
            return None
        self.errors.extend(f'{path}: function "{name}" not defined' for name in unknown)
        return None

    def _unknown_functions(self, ast: nodes.Template) -> list[str]:
        # record values are data, so a call must target a function or a name the template declares
        called = {
            call.node.name
            for call in ast.find_all(nodes.Call)
            if isinstance(call.node, nodes.Name)
        }
        undeclared = meta.find_undeclared_variables(ast)
        return sorted(name for name in called & undeclared if name not in self._env.globals)

    def value(self, source: Any, path: str) -> Any:
        """Compile string leaves of ``source``; other scalars are kept as-is."""
        if isinstance(source, str):
            return self.template(source, path)
        if isinstance(source, Mapping):
            return {str(k): self.value(v, f"{path}.{k}") for k, v in source.items()}
        if isinstance(source, (list, tuple)):
            return [self.value(v, f"{path}[{i}]") for i, v in enumerate(source)]
        return source


def _render(template: Template, context: dict[str, Any], path: str) -> str:
    try:
        return template.render(context)
    except Exception as exc:
        raise TemplateExecutionError(f"{path}: {exc}", template=path, cause=exc) from exc


def _render_value(node: Any, context: dict[str, Any], path: str, *, coerce: bool = True) -> Any:
    if isinstance(node, Template):
        rendered = _render(node, context, path)
        if not coerce:
            return rendered
        try:
            return _coerce(rendered)
        except RecursionError as exc:
            raise TemplateExecutionError(
                f"{path}: rendered value is nested too deeply", template=path, cause=exc
            ) from exc
    if isinstance(node, dict):
        return {k: _render_value(v, context, f"{path}.{k}", coerce=coerce) for k, v in node.items()}
    if isinstance(node, list):
        return [_render_value(v, context, f"{path}[{i}]", coerce=coerce) for i, v in enumerate(node)]
    return node


def _render_identifier(template: Template, context: dict[str, Any], path: str) -> str:
    identifier = _render(template, context, path)
    try:
        validate_identifier(identifier)
    except ValueError as exc:
        raise TemplateExecutionError(f"{path}: {exc}", template=path, cause=exc) from exc
    return identifier


def _build_context(values: Mapping[str, Any]) -> dict[str, Any]:
    # keys named like a template function stay reachable only through ``record``
    shown = {key: value for key, value in values.items() if key not in _environment.globals}
    return {"record": values, **shown}


@dataclass
class ExtraDefinition:
    """Compiled relationship definition attached to a mapper."""

    api_version: str
    kind: str
    identifier: Template
    fields: dict[str, Any]
    source_ref: dict[str, Template]
    delete_policy: str = DELETE_POLICY_NONE
    path: str = field(default="extras")

    @classmethod
    def compile(
        cls, raw: Mapping[str, Any], path: str, compiler: _Compiler
    ) -> ExtraDefinition | None:
        """Compile one raw extra; problems are appended to ``compiler.errors``."""
        before = len(compiler.errors)
        if not isinstance(raw, Mapping):
            compiler.errors.append(f"{path}: must be a mapping")
            return None

        if "targetRef" in raw:
            compiler.errors.append(f"{path}.targetRef: is set by the engine and cannot be configured")
        for key in ("apiVersion", "kind"):
            if not isinstance(raw.get(key), str) or not raw.get(key):
                compiler.errors.append(f"{path}.{key}: required")

        delete_policy = raw.get("deletePolicy", DELETE_POLICY_NONE)
        if delete_policy not in DELETE_POLICIES:
            compiler.errors.append(
                f"{path}.deletePolicy: must be one of {', '.join(DELETE_POLICIES)}, got {delete_policy!r}"
            )

        identifier = None
        if "identifier" not in raw:
            compiler.errors.append(f"{path}.identifier: required")
        else:
            identifier = compiler.template(raw["identifier"], f"{path}.identifier")

        source_ref: dict[str, Template] = {}
        raw_ref = raw.get("sourceRef")
        if not isinstance(raw_ref, Mapping):
            compiler.errors.append(f"{path}.sourceRef: required mapping with apiVersion, kind and name")
        else:
            if "resource" in raw_ref:
                compiler.errors.append(f"{path}.sourceRef.resource: use kind")
            for key in _SOURCE_REF_KEYS:
                if key not in raw_ref:
                    compiler.errors.append(f"{path}.sourceRef.{key}: required")
            for key, value in raw_ref.items():
                compiled = compiler.template(value, f"{path}.sourceRef.{key}")
                if compiled is not None:
                    source_ref[str(key)] = compiled

        fields = {
            str(key): compiler.value(value, f"{path}.{key}")
            for key, value in raw.items()
            if key not in _EXTRA_RESERVED and key not in ("sourceRef", "targetRef")
        }

        if len(compiler.errors) > before or identifier is None:
            return None
        return cls(
            api_version=raw["apiVersion"],
            kind=raw["kind"],
            identifier=identifier,
            fields=fields,
            source_ref=source_ref,
            delete_policy=delete_policy,
            path=path,
        )

    @property
    def cascades(self) -> bool:
        return self.delete_policy == DELETE_POLICY_CASCADE

    def target_ref(self, parent: ParentResourceInfo, parent_identifier: str) -> dict[str, str]:
        return {"apiVersion": parent.api_version, "kind": parent.kind, "name": parent_identifier}


# =============================================================================
# MAPPER
# =============================================================================


class Mapper:
    """
    Compiled identifier, spec and extras templates for one record type.

    Args:
        identifier: Template of the record identifier
        spec: Field name to template
        extras: Raw relationship definitions, evaluated in order
        parent: Type of the owning entity; required when extras are given

    Raises:
        ConfigParsingError: listing every template or definition defect
    """

    def __init__(
        self,
        identifier: str,
        spec: Mapping[str, Any] | None = None,
        extras: list[Mapping[str, Any]] | None = None,
        *,
        parent: ParentResourceInfo | None = None,
    ):
        compiler = _Compiler(_environment)

        self._identifier = compiler.template(identifier, "identifier")
        self._spec = {
            str(name): compiler.value(source, f"spec.{name}")
            for name, source in (spec or {}).items()
        }

        self._extras: list[ExtraDefinition] = []
        if extras and parent is None:
            compiler.errors.append("extras: the owning resource type is required to map extras")
        for idx, raw in enumerate(extras or []):
            extra = ExtraDefinition.compile(raw, f"extras[{idx}]", compiler)
            if extra is not None:
                self._extras.append(extra)

        if compiler.errors:
            raise ConfigParsingError(compiler.errors)

        self._parent = parent

    @property
    def parent(self) -> ParentResourceInfo | None:
        return self._parent

    @property
    def extras(self) -> list[ExtraDefinition]:
        return list(self._extras)

    def apply_templates(self, values: Mapping[str, Any]) -> tuple[MappedData, list[ExtraMappedData]]:
        """
        Map ``values`` to the parent record and its extras.

        Raises:
            TemplateExecutionError: a template failed or an identifier is invalid
        """
        context = _build_context(values)
        assert self._identifier is not None

        identifier = _render_identifier(self._identifier, context, "identifier")
        spec = {name: _render_value(node, context, f"spec.{name}") for name, node in self._spec.items()}
        parent_data = MappedData(identifier=identifier, spec=spec)

        extras = [self._apply_extra(extra, context, identifier) for extra in self._extras]
        return parent_data, extras

    def apply_delete(self, values: Mapping[str, Any]) -> tuple[MappedData, list[ExtraMappedData]]:
        """
        Resolve the identifiers needed to delete the record described by ``values``.

        Only the parent identifier and identifiers of ``cascade`` extras are
        rendered; specs are empty. A cascade extra that cannot be resolved from
        the delete payload is skipped.
        """
        context = _build_context(values)
        assert self._identifier is not None

        identifier = _render_identifier(self._identifier, context, "identifier")
        extras: list[ExtraMappedData] = []
        for extra in self._extras:
            if not extra.cascades:
                continue
            path = f"{extra.path}.identifier"
            try:
                extra_identifier = _render_identifier(extra.identifier, context, path)
            except TemplateExecutionError as exc:
                log.debug("mapper.cascade_skipped", template=path, error=str(exc))
                continue
            extras.append(
                ExtraMappedData(
                    identifier=extra_identifier,
                    spec={},
                    api_version=extra.api_version,
                    kind=extra.kind,
                )
            )
        return MappedData(identifier=identifier, spec={}), extras

    def _apply_extra(
        self, extra: ExtraDefinition, context: dict[str, Any], parent_identifier: str
    ) -> ExtraMappedData:
        assert self._parent is not None
        identifier = _render_identifier(extra.identifier, context, f"{extra.path}.identifier")
        spec = {
            name: _render_value(node, context, f"{extra.path}.{name}")
            for name, node in extra.fields.items()
        }
        spec["sourceRef"] = {
            key: _render(template, context, f"{extra.path}.sourceRef.{key}")
            for key, template in extra.source_ref.items()
        }
        spec["targetRef"] = extra.target_ref(self._parent, parent_identifier)
        return ExtraMappedData(
            identifier=identifier,
            spec=spec,
            api_version=extra.api_version,
            kind=extra.kind,
        )


__all__ = [
    "IDENTIFIER_MAX_LENGTH",
    "DELETE_POLICY_NONE",
    "DELETE_POLICY_CASCADE",
    "ParentResourceInfo",
    "MappedData",
    "ExtraMappedData",
    "ExtraDefinition",
    "Mapper",
    "RecordEnvironment",
    "create_environment",
    "validate_identifier",
]
