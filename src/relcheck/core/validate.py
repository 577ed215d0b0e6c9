from __future__ import annotations

import logging
from typing import Iterable, List

from .errors import ValidationError
from .model import (
    AuthorizationModel,
    ComputedUserset,
    Intersection,
    TupleKey,
    TupleToUserset,
    TypeDefinition,
    Union,
    contains_this,
    iter_rules,
    validate_tuple_key,
)

logger = logging.getLogger("relcheck.validate")


def model_errors(model: AuthorizationModel) -> List[str]:
    """Return every problem found in *model* (empty list when valid)."""
    errors: list[str] = []
    seen: set[str] = set()
    for td in model.type_definitions:
        if not td.type or any(ch in td.type for ch in ":#* "):
            errors.append(f"invalid type name {td.type!r}")
        if td.type in seen:
            errors.append(f"duplicate type {td.type!r}")
        seen.add(td.type)

    for td in model.type_definitions:
        errors.extend(_relation_errors(model, td))
        errors.extend(_cycle_errors(td))
    return errors


def validate_model(model: AuthorizationModel) -> None:
    errors = model_errors(model)
    if errors:
        logger.debug("model rejected: %s", errors)
        raise ValidationError("; ".join(errors))


def _relation_errors(model: AuthorizationModel, td: TypeDefinition) -> Iterable[str]:
    for name, rule in td.relations.items():
        where = f"{td.type}#{name}"
        if not name or any(ch in name for ch in ":#* "):
            yield f"invalid relation name {where!r}"

        for node in iter_rules(rule):
            if isinstance(node, (Union, Intersection)) and not node.children:
                yield f"{where}: {type(node).__name__.lower()} needs at least one child"
            elif isinstance(node, ComputedUserset):
                if node.relation not in td.relations:
                    yield f"{where}: undefined relation {node.relation!r} on {td.type!r}"
            elif isinstance(node, TupleToUserset):
                yield from _tupleset_errors(model, td, where, node)

        direct = contains_this(rule)
        refs = td.allowed_types(name)
        if direct and not refs:
            yield f"{where}: directly assignable relation declares no user types"
        if refs and not direct:
            yield f"{where}: user types declared but relation is not directly assignable"
        for ref in refs:
            target = model.type_definition(ref.type)
            if target is None:
                yield f"{where}: undefined type {ref.type!r}"
            elif ref.relation and ref.relation not in target.relations:
                yield f"{where}: undefined relation {ref.relation!r} on {ref.type!r}"

    for name in td.directly_related:
        if name not in td.relations:
            yield f"{td.type}: metadata for undefined relation {name!r}"


def _tupleset_errors(
    model: AuthorizationModel, td: TypeDefinition, where: str, node: TupleToUserset
) -> Iterable[str]:
    ts_rule = td.relations.get(node.tupleset)
    if ts_rule is None:
        yield f"{where}: undefined tupleset relation {node.tupleset!r} on {td.type!r}"
        return
    if not contains_this(ts_rule):
        yield f"{where}: tupleset relation {node.tupleset!r} must be directly assignable"
        return
    refs = td.allowed_types(node.tupleset)
    if any(r.relation or r.wildcard for r in refs):
        yield f"{where}: tupleset relation {node.tupleset!r} may only reference plain types"
    targets = [model.type_definition(r.type) for r in refs]
    if refs and not any(t is not None and node.computed_userset in t.relations for t in targets):
        yield (
            f"{where}: relation {node.computed_userset!r} is not defined on any type "
            f"reachable through {node.tupleset!r}"
        )


def _cycle_errors(td: TypeDefinition) -> Iterable[str]:
    """Reject relations that reach themselves through computed usersets alone."""
    edges = {
        name: [n.relation for n in iter_rules(rule) if isinstance(n, ComputedUserset)]
        for name, rule in td.relations.items()
    }
    state: dict[str, int] = {}  # 1 = on stack, 2 = done
    found: list[str] = []

    def visit(rel: str, path: list[str]) -> None:
        state[rel] = 1
        for nxt in edges.get(rel, ()):
            if state.get(nxt) == 1:
                cycle = path[path.index(nxt):] + [nxt]
                found.append(f"{td.type}: cyclic relation definition {' -> '.join(cycle)}")
            elif nxt in edges and state.get(nxt) is None:
                visit(nxt, path + [nxt])
        state[rel] = 2

    for rel in edges:
        if state.get(rel) is None:
            visit(rel, [rel])
    return found


def validate_tuple_for_model(model: AuthorizationModel, key: TupleKey) -> None:
    """Check that *key* may be stored under *model*."""
    validate_tuple_key(key)
    td = model.type_definition(key.object_type)
    if td is None:
        raise ValidationError(f"type {key.object_type!r} is not defined in model {model.id}")
    rule = td.rule(key.relation)
    if rule is None:
        raise ValidationError(f"relation {key.object_type}#{key.relation} is not defined")
    if not contains_this(rule):
        raise ValidationError(
            f"relation {key.object_type}#{key.relation} is not directly assignable"
        )
    refs = td.allowed_types(key.relation)
    if not any(ref.admits(key.user) for ref in refs):
        allowed = ", ".join(str(r) for r in refs) or "none"
        raise ValidationError(
            f"user {key.user!r} is not allowed on {key.object_type}#{key.relation} "
            f"(allowed: {allowed})"
        )


__all__ = ["model_errors", "validate_model", "validate_tuple_for_model"]
