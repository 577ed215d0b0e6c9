"""JSON codec for authorization models.

The wire shape follows the OpenFGA "schema 1.1" document::

    {
      "schema_version": "1.1",
      "type_definitions": [
        {"type": "user"},
        {
          "type": "document",
          "relations": {
            "owner": {"this": {}},
            "viewer": {"union": {"child": [
              {"this": {}},
              {"computedUserset": {"relation": "owner"}},
              {"tupleToUserset": {"tupleset": {"relation": "parent"},
                                  "computedUserset": {"relation": "viewer"}}}
            ]}}
          },
          "metadata": {"relations": {
            "owner": {"directly_related_user_types": [{"type": "user"}]}
          }}
        }
      ]
    }

Both camelCase and snake_case rule keys are accepted on input; output uses
camelCase like the upstream API.
"""

from __future__ import annotations

from typing import Any, Mapping

from .errors import ValidationError
from .model import (
    AuthorizationModel,
    ComputedUserset,
    Exclusion,
    Intersection,
    RelationReference,
    RewriteRule,
    This,
    TupleToUserset,
    TypeDefinition,
    Union,
)

DEFAULT_SCHEMA_VERSION = "1.1"
SUPPORTED_SCHEMA_VERSIONS = ("1.1",)

_ALIASES = {
    "computed_userset": "computedUserset",
    "tuple_to_userset": "tupleToUserset",
}


def _relation_name(obj: Any, where: str) -> str:
    if isinstance(obj, Mapping) and isinstance(obj.get("relation"), str) and obj["relation"]:
        return obj["relation"]
    raise ValidationError(f"{where}: expected an object with a non-empty 'relation'")


def _children(obj: Any, where: str) -> list[RewriteRule]:
    if not isinstance(obj, Mapping):
        raise ValidationError(f"{where}: expected an object with 'child'")
    raw = obj.get("child")
    if not isinstance(raw, list):
        raise ValidationError(f"{where}: 'child' must be a list")
    return [parse_rule(c) for c in raw]


def parse_rule(obj: Any) -> RewriteRule:
    """Turn one userset JSON object into a rewrite rule."""
    if not isinstance(obj, Mapping) or len(obj) != 1:
        raise ValidationError(f"userset must be an object with exactly one key, got {obj!r}")
    ((kind, body),) = obj.items()
    kind = _ALIASES.get(kind, kind)

    if kind == "this":
        return This()
    if kind == "computedUserset":
        return ComputedUserset(_relation_name(body, "computedUserset"))
    if kind == "tupleToUserset":
        if not isinstance(body, Mapping):
            raise ValidationError("tupleToUserset: expected an object")
        cu = body.get("computedUserset", body.get("computed_userset"))
        return TupleToUserset(
            tupleset=_relation_name(body.get("tupleset"), "tupleToUserset.tupleset"),
            computed_userset=_relation_name(cu, "tupleToUserset.computedUserset"),
        )
    if kind == "union":
        return Union(tuple(_children(body, "union")))
    if kind == "intersection":
        return Intersection(tuple(_children(body, "intersection")))
    if kind in ("difference", "exclusion"):
        if not isinstance(body, Mapping) or "base" not in body or "subtract" not in body:
            raise ValidationError("difference: expected 'base' and 'subtract'")
        return Exclusion(parse_rule(body["base"]), parse_rule(body["subtract"]))
    raise ValidationError(f"unknown userset kind {kind!r}")


def dump_rule(rule: RewriteRule) -> dict[str, Any]:
    if isinstance(rule, This):
        return {"this": {}}
    if isinstance(rule, ComputedUserset):
        return {"computedUserset": {"relation": rule.relation}}
    if isinstance(rule, TupleToUserset):
        return {
            "tupleToUserset": {
                "tupleset": {"relation": rule.tupleset},
                "computedUserset": {"relation": rule.computed_userset},
            }
        }
    if isinstance(rule, Union):
        return {"union": {"child": [dump_rule(c) for c in rule.children]}}
    if isinstance(rule, Intersection):
        return {"intersection": {"child": [dump_rule(c) for c in rule.children]}}
    if isinstance(rule, Exclusion):
        return {"difference": {"base": dump_rule(rule.base), "subtract": dump_rule(rule.subtract)}}
    raise TypeError(f"not a rewrite rule: {rule!r}")


def _parse_reference(obj: Any, where: str) -> RelationReference:
    if not isinstance(obj, Mapping) or not isinstance(obj.get("type"), str) or not obj["type"]:
        raise ValidationError(f"{where}: expected {{'type': ...}}, got {obj!r}")
    relation = obj.get("relation") or None
    wildcard = "wildcard" in obj
    if relation and wildcard:
        raise ValidationError(f"{where}: a reference cannot be both a userset and a wildcard")
    return RelationReference(type=obj["type"], relation=relation, wildcard=wildcard)


def _dump_reference(ref: RelationReference) -> dict[str, Any]:
    out: dict[str, Any] = {"type": ref.type}
    if ref.relation:
        out["relation"] = ref.relation
    if ref.wildcard:
        out["wildcard"] = {}
    return out


def parse_type_definition(obj: Any) -> TypeDefinition:
    if not isinstance(obj, Mapping) or not isinstance(obj.get("type"), str):
        raise ValidationError(f"type definition must have a string 'type', got {obj!r}")
    type_name = obj["type"]

    raw_rel = obj.get("relations") or {}
    if not isinstance(raw_rel, Mapping):
        raise ValidationError(f"{type_name}: 'relations' must be an object")
    relations = {str(name): parse_rule(rule) for name, rule in raw_rel.items()}

    meta = (obj.get("metadata") or {}).get("relations") or {}
    if not isinstance(meta, Mapping):
        raise ValidationError(f"{type_name}: 'metadata.relations' must be an object")
    direct: dict[str, tuple[RelationReference, ...]] = {}
    for name, rel_meta in meta.items():
        refs = (rel_meta or {}).get("directly_related_user_types") or []
        if not isinstance(refs, list):
            raise ValidationError(f"{type_name}#{name}: directly_related_user_types must be a list")
        if refs:
            direct[str(name)] = tuple(
                _parse_reference(r, f"{type_name}#{name}") for r in refs
            )

    return TypeDefinition(type=type_name, relations=relations, directly_related=direct)


def parse_model(doc: Mapping[str, Any], model_id: str = "") -> AuthorizationModel:
    """Parse (but do not validate) a model document."""
    if not isinstance(doc, Mapping):
        raise ValidationError("authorization model must be a JSON object")
    version = str(doc.get("schema_version") or DEFAULT_SCHEMA_VERSION)
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ValidationError(f"unsupported schema_version {version!r}")
    tds = doc.get("type_definitions")
    if not isinstance(tds, list):
        raise ValidationError("'type_definitions' must be a list")
    return AuthorizationModel(
        id=str(doc.get("id") or model_id),
        schema_version=version,
        type_definitions=tuple(parse_type_definition(td) for td in tds),
    )


def dump_model(model: AuthorizationModel) -> dict[str, Any]:
    tds: list[dict[str, Any]] = []
    for td in model.type_definitions:
        item: dict[str, Any] = {"type": td.type}
        if td.relations:
            item["relations"] = {name: dump_rule(r) for name, r in td.relations.items()}
            item["metadata"] = {
                "relations": {
                    name: {
                        "directly_related_user_types": [
                            _dump_reference(ref) for ref in td.allowed_types(name)
                        ]
                    }
                    for name in td.relations
                }
            }
        tds.append(item)
    return {"id": model.id, "schema_version": model.schema_version, "type_definitions": tds}


__all__ = [
    "DEFAULT_SCHEMA_VERSION",
    "parse_rule",
    "dump_rule",
    "parse_type_definition",
    "parse_model",
    "dump_model",
]
