from __future__ import annotations

import logging
import threading
import time
from typing import Callable, FrozenSet, Iterable, List, Optional, Tuple

from .errors import (
    CheckCancelledError,
    CycleDetectedError,
    DeadlineExceededError,
    DepthExceededError,
    EvaluationLimitError,
)
from .model import (
    WILDCARD,
    AuthorizationModel,
    ComputedUserset,
    Exclusion,
    Intersection,
    ReadFilter,
    RewriteRule,
    This,
    TupleKey,
    TupleToUserset,
    Union,
    split_object,
    split_user,
)

logger = logging.getLogger("relcheck.evaluator")

DEFAULT_MAX_DEPTH = 25

# (user, relation, "type:id") on the current resolution path
Visit = Tuple[str, str, str]
TupleReader = Callable[[ReadFilter], Iterable[TupleKey]]


class RewriteEvaluator:
    """Resolve a relation's rewrite rule against stored tuples.

    The evaluator is bound to a single model and a tuple reader for the
    duration of one check. Recursion state is passed explicitly:

    - ``visited``: frozenset of (user, relation, object) on the current path;
      a repeat raises :class:`CycleDetectedError`.
    - ``depth``: number of nested resolutions; above ``max_depth`` raises
      :class:`DepthExceededError`.

    A cycle or depth hit fails only the path it occurs on: sibling usersets and
    tuple-to-userset targets are still tried, and the first such error is kept
    in ``diagnostic``. Inside the subtracted side of an exclusion the error
    propagates instead, so a guard hit never turns into a grant.

    Optional ``deadline_ms`` and ``cancel`` are checked before every store read.
    """

    def __init__(
        self,
        model: AuthorizationModel,
        reader: TupleReader,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        deadline_ms: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.model = model
        self.reader = reader
        self.max_depth = int(max_depth)
        self.cancel = cancel
        self._deadline: Optional[float] = None
        if deadline_ms is not None:
            self._deadline = time.monotonic() + max(0, deadline_ms) / 1000.0
        self.reads = 0
        self.diagnostic: Optional[EvaluationLimitError] = None
        self._negated = 0

    # ------------- public -------------

    def evaluate(
        self,
        user: str,
        relation: str,
        object_type: str,
        object_id: str,
        visited: FrozenSet[Visit] = frozenset(),
        depth: int = 0,
    ) -> bool:
        obj = f"{object_type}:{object_id}"
        key = (user, relation, obj)
        if key in visited:
            raise CycleDetectedError(f"cycle detected while resolving {obj}#{relation}@{user}")
        if depth > self.max_depth:
            raise DepthExceededError(
                f"resolution depth exceeded {self.max_depth} at {obj}#{relation}@{user}"
            )

        # A userset always holds its own relation: group:eng#member is a member of group:eng.
        user_obj, user_rel = split_user(user)
        if user_rel == relation and user_obj == obj:
            return True

        rule = self.model.rule_for(object_type, relation)
        if rule is None:
            return False
        return self._rule(rule, user, relation, object_type, object_id, visited | {key}, depth)

    # ------------- rule dispatch -------------

    def _rule(
        self,
        rule: RewriteRule,
        user: str,
        relation: str,
        object_type: str,
        object_id: str,
        visited: FrozenSet[Visit],
        depth: int,
    ) -> bool:
        if isinstance(rule, This):
            return self._direct(user, relation, object_type, object_id, visited, depth)

        if isinstance(rule, ComputedUserset):
            return self._branch(user, rule.relation, object_type, object_id, visited, depth + 1)

        if isinstance(rule, Union):
            for child in rule.children:
                if self._rule(child, user, relation, object_type, object_id, visited, depth):
                    return True
            return False

        if isinstance(rule, Intersection):
            for child in rule.children:
                if not self._rule(child, user, relation, object_type, object_id, visited, depth):
                    return False
            return bool(rule.children)

        if isinstance(rule, Exclusion):
            if not self._rule(rule.base, user, relation, object_type, object_id, visited, depth):
                return False
            self._negated += 1
            try:
                return not self._rule(
                    rule.subtract, user, relation, object_type, object_id, visited, depth
                )
            finally:
                self._negated -= 1

        if isinstance(rule, TupleToUserset):
            return self._tuple_to_userset(rule, user, object_type, object_id, visited, depth)

        logger.debug("ignoring unknown rewrite rule %r", rule)
        return False

    def _direct(
        self,
        user: str,
        relation: str,
        object_type: str,
        object_id: str,
        visited: FrozenSet[Visit],
        depth: int,
    ) -> bool:
        user_obj, user_rel = split_user(user)
        user_type = split_object(user_obj)[0]

        usersets: List[Tuple[str, str]] = []
        for key in self._read(ReadFilter(relation=relation, object=f"{object_type}:{object_id}")):
            if key.user == user:
                return True
            t_obj, t_rel = split_user(key.user)
            if t_rel is not None:
                usersets.append((t_obj, t_rel))
                continue
            t_type, t_id = split_object(t_obj)
            if t_id == WILDCARD and t_type == user_type and user_rel is None:
                return True

        for t_obj, t_rel in usersets:
            t_type, t_id = split_object(t_obj)
            if self._branch(user, t_rel, t_type, t_id, visited, depth + 1):
                return True
        return False

    def _tuple_to_userset(
        self,
        rule: TupleToUserset,
        user: str,
        object_type: str,
        object_id: str,
        visited: FrozenSet[Visit],
        depth: int,
    ) -> bool:
        flt = ReadFilter(relation=rule.tupleset, object=f"{object_type}:{object_id}")
        for key in self._read(flt):
            target, rel = split_user(key.user)
            if rel is not None:
                continue
            t_type, t_id = split_object(target)
            if t_id == WILDCARD or self.model.rule_for(t_type, rule.computed_userset) is None:
                continue
            if self._branch(user, rule.computed_userset, t_type, t_id, visited, depth + 1):
                return True
        return False

    def _branch(
        self,
        user: str,
        relation: str,
        object_type: str,
        object_id: str,
        visited: FrozenSet[Visit],
        depth: int,
    ) -> bool:
        try:
            return self.evaluate(user, relation, object_type, object_id, visited, depth)
        except (CycleDetectedError, DepthExceededError) as e:
            if self._negated:
                raise
            if self.diagnostic is None:
                self.diagnostic = e
            logger.debug("relcheck: path abandoned: %s", e.message)
            return False

    # ------------- store access -------------

    def _read(self, flt: ReadFilter) -> List[TupleKey]:
        if self.cancel is not None and self.cancel.is_set():
            raise CheckCancelledError("check cancelled")
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise DeadlineExceededError("check deadline exceeded")
        self.reads += 1
        return list(self.reader(flt))


def evaluate(
    model: AuthorizationModel,
    reader: TupleReader,
    user: str,
    relation: str,
    object_type: str,
    object_id: str,
    visited: FrozenSet[Visit] = frozenset(),
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> bool:
    """One-shot helper around :class:`RewriteEvaluator`.

    A denial caused by a cycle or depth hit raises that error instead of
    returning ``False``.
    """
    ev = RewriteEvaluator(model, reader, max_depth=max_depth)
    allowed = ev.evaluate(user, relation, object_type, object_id, visited)
    if not allowed and ev.diagnostic is not None:
        raise ev.diagnostic
    return allowed


__all__ = ["DEFAULT_MAX_DEPTH", "RewriteEvaluator", "TupleReader", "evaluate"]
