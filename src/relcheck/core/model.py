from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from .errors import EvaluationLimitError, ValidationError

# ----------------------------------------------------------------------------
# Rewrite rules (userset expressions)
# ----------------------------------------------------------------------------


@dataclass(frozen=True)
class This:
    """Direct assignment: the relation is granted by a stored tuple."""


@dataclass(frozen=True)
class ComputedUserset:
    """Another relation on the same object (``viewer`` <- ``editor``)."""

    relation: str


@dataclass(frozen=True)
class TupleToUserset:
    """Follow ``tupleset`` edges from the object, then evaluate ``computed_userset`` there.

    ``TupleToUserset("parent", "viewer")`` on ``document`` reads as
    "viewer from parent".
    """

    tupleset: str
    computed_userset: str


@dataclass(frozen=True)
class Union:
    children: tuple["RewriteRule", ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", tuple(self.children))


@dataclass(frozen=True)
class Intersection:
    children: tuple["RewriteRule", ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", tuple(self.children))


@dataclass(frozen=True)
class Exclusion:
    """``base but not subtract``."""

    base: "RewriteRule"
    subtract: "RewriteRule"


RewriteRule = This | ComputedUserset | TupleToUserset | Union | Intersection | Exclusion


def contains_this(rule: RewriteRule) -> bool:
    """True when the rule allows direct assignment anywhere in its tree."""
    if isinstance(rule, This):
        return True
    if isinstance(rule, (Union, Intersection)):
        return any(contains_this(c) for c in rule.children)
    if isinstance(rule, Exclusion):
        return contains_this(rule.base) or contains_this(rule.subtract)
    return False


def iter_rules(rule: RewriteRule) -> Iterable[RewriteRule]:
    """Pre-order walk over a rewrite tree."""
    yield rule
    if isinstance(rule, (Union, Intersection)):
        for c in rule.children:
            yield from iter_rules(c)
    elif isinstance(rule, Exclusion):
        yield from iter_rules(rule.base)
        yield from iter_rules(rule.subtract)


# ----------------------------------------------------------------------------
# References and tuple keys
# ----------------------------------------------------------------------------

WILDCARD = "*"


def split_object(ref: str) -> tuple[str, str]:
    """Split ``type:id``. A bare id is treated as a ``user``."""
    if ":" not in ref:
        return "user", ref
    t, i = ref.split(":", 1)
    return t, i


def split_user(ref: str) -> tuple[str, Optional[str]]:
    """Split ``type:id#relation`` into (``type:id``, ``relation``)."""
    if "#" in ref:
        obj, rel = ref.split("#", 1)
        return obj, rel
    return ref, None


def _is_name(value: str) -> bool:
    return bool(value) and not any(ch in value for ch in ":#* \t\n")


@dataclass(frozen=True)
class RelationReference:
    """An entry of ``directly_related_user_types``.

    ``user`` -> RelationReference("user"), ``group#member`` ->
    RelationReference("group", "member"), ``user:*`` ->
    RelationReference("user", wildcard=True).
    """

    type: str
    relation: Optional[str] = None
    wildcard: bool = False

    def __str__(self) -> str:
        if self.wildcard:
            return f"{self.type}:{WILDCARD}"
        if self.relation:
            return f"{self.type}#{self.relation}"
        return self.type

    def admits(self, user: str) -> bool:
        obj, rel = split_user(user)
        utype, uid = split_object(obj)
        if utype != self.type:
            return False
        if self.wildcard:
            return uid == WILDCARD and rel is None
        if uid == WILDCARD:
            return False
        return rel == self.relation


@dataclass(frozen=True)
class TupleKey:
    user: str
    relation: str
    object: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TupleKey":
        try:
            return cls(
                user=str(data["user"]), relation=str(data["relation"]), object=str(data["object"])
            )
        except (KeyError, TypeError) as e:
            raise ValidationError(f"invalid tuple key {data!r}: missing {e}") from e

    def to_dict(self) -> dict[str, str]:
        return {"user": self.user, "relation": self.relation, "object": self.object}

    @property
    def object_type(self) -> str:
        return split_object(self.object)[0]

    @property
    def user_type(self) -> str:
        return split_object(split_user(self.user)[0])[0]

    def __str__(self) -> str:
        return f"{self.object}#{self.relation}@{self.user}"


def validate_tuple_key(key: TupleKey) -> None:
    """Check the syntax of a key; does not consult any model."""
    otype, oid = split_object(key.object)
    if ":" not in key.object or not _is_name(otype) or not oid or oid == WILDCARD:
        raise ValidationError(f"invalid object {key.object!r} (expected type:id)")
    if not _is_name(key.relation):
        raise ValidationError(f"invalid relation {key.relation!r}")
    obj, rel = split_user(key.user)
    utype, uid = split_object(obj)
    if ":" not in obj or not _is_name(utype) or not uid:
        raise ValidationError(f"invalid user {key.user!r} (expected type:id or type:id#relation)")
    if rel is not None and (not _is_name(rel) or uid == WILDCARD):
        raise ValidationError(f"invalid userset {key.user!r}")


@dataclass(frozen=True)
class ReadFilter:
    """Constrains any subset of (user, relation, object).

    ``object`` may be ``type:`` to match every object of that type.
    """

    user: Optional[str] = None
    relation: Optional[str] = None
    object: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ReadFilter":
        data = data or {}
        return cls(
            user=data.get("user") or None,
            relation=data.get("relation") or None,
            object=data.get("object") or None,
        )

    def matches(self, key: TupleKey) -> bool:
        if self.user is not None and key.user != self.user:
            return False
        if self.relation is not None and key.relation != self.relation:
            return False
        if self.object is not None:
            if self.object.endswith(":"):
                return key.object.startswith(self.object)
            return key.object == self.object
        return True


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Tuple:
    key: TupleKey
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key.to_dict(), "timestamp": self.timestamp.isoformat()}


@dataclass(frozen=True)
class TupleChange:
    key: TupleKey
    operation: str  # "write" | "delete"
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tuple_key": self.key.to_dict(),
            "operation": self.operation,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class Store:
    id: str
    name: str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "created_at": self.created_at.isoformat()}


# ----------------------------------------------------------------------------
# Authorization model
# ----------------------------------------------------------------------------


@dataclass(frozen=True)
class TypeDefinition:
    type: str
    relations: Mapping[str, RewriteRule] = field(default_factory=dict)
    directly_related: Mapping[str, tuple[RelationReference, ...]] = field(default_factory=dict)

    def rule(self, relation: str) -> Optional[RewriteRule]:
        return self.relations.get(relation)

    def allowed_types(self, relation: str) -> tuple[RelationReference, ...]:
        return tuple(self.directly_related.get(relation, ()))


@dataclass(frozen=True)
class AuthorizationModel:
    """An immutable, versioned set of type definitions."""

    id: str
    schema_version: str
    type_definitions: tuple[TypeDefinition, ...]
    _by_type: dict[str, TypeDefinition] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        tds = tuple(self.type_definitions)
        object.__setattr__(self, "type_definitions", tds)
        object.__setattr__(self, "_by_type", {td.type: td for td in tds})

    def type_definition(self, type_name: str) -> Optional[TypeDefinition]:
        return self._by_type.get(type_name)

    def rule_for(self, type_name: str, relation: str) -> Optional[RewriteRule]:
        td = self._by_type.get(type_name)
        return td.rule(relation) if td is not None else None

    def with_id(self, model_id: str) -> "AuthorizationModel":
        return replace(self, id=model_id)


@dataclass(frozen=True)
class CheckResult:
    allowed: bool
    diagnostic: Optional[EvaluationLimitError] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"allowed": self.allowed}
        if self.diagnostic is not None:
            out["diagnostic"] = self.diagnostic.to_dict()
        return out


__all__ = [
    "This",
    "ComputedUserset",
    "TupleToUserset",
    "Union",
    "Intersection",
    "Exclusion",
    "RewriteRule",
    "contains_this",
    "iter_rules",
    "WILDCARD",
    "split_object",
    "split_user",
    "RelationReference",
    "TupleKey",
    "validate_tuple_key",
    "ReadFilter",
    "Tuple",
    "TupleChange",
    "Store",
    "TypeDefinition",
    "AuthorizationModel",
    "CheckResult",
    "utcnow",
]
