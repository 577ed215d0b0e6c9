from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import threading
import time
import uuid
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from .config import ServiceConfig
from .errors import EvaluationLimitError, ValidationError
from .evaluator import RewriteEvaluator
from .model import (
    AuthorizationModel,
    CheckResult,
    ReadFilter,
    Store,
    Tuple,
    TupleChange,
    TupleKey,
    split_object,
    split_user,
    validate_tuple_key,
)
from .ports import DecisionLogSink, MetricsObserve, MetricsSink, ModelStore, TupleStore
from .validate import validate_model, validate_tuple_for_model

logger = logging.getLogger("relcheck.service")

TupleKeyLike = Union[TupleKey, Dict[str, Any]]


def _as_key(value: TupleKeyLike) -> TupleKey:
    return value if isinstance(value, TupleKey) else TupleKey.from_dict(value)


def _new_id() -> str:
    return uuid.uuid4().hex


class AuthorizationService:
    """Query façade: stores, models, tuples and checks.

    Storage is pluggable through the :class:`ModelStore` / :class:`TupleStore`
    ports; the in-memory implementations are used by default. Checks are
    read-only and may run concurrently from any number of threads.
    """

    def __init__(
        self,
        *,
        model_store: Optional[ModelStore] = None,
        tuple_store: Optional[TupleStore] = None,
        config: Optional[ServiceConfig] = None,
        metrics: Optional[MetricsSink] = None,
        logger_sink: Optional[DecisionLogSink] = None,
    ) -> None:
        from ..store.memory import InMemoryModelStore, InMemoryTupleStore

        self.models: ModelStore = model_store if model_store is not None else InMemoryModelStore()
        self.tuples: TupleStore = tuple_store if tuple_store is not None else InMemoryTupleStore()
        self.config = config or ServiceConfig()
        self.metrics = metrics
        self.logger_sink = logger_sink

    # ------------- stores -------------

    def create_store(self, name: str) -> Store:
        if not name or not str(name).strip():
            raise ValidationError("store name must not be empty")
        store = Store(id=_new_id(), name=str(name))
        self.models.create_store(store)
        logger.info("relcheck: created store %s (%s)", store.id, store.name)
        return store

    def get_store(self, store_id: str) -> Store:
        return self.models.get_store(store_id)

    def list_stores(self) -> Sequence[Store]:
        return self.models.list_stores()

    def delete_store(self, store_id: str) -> None:
        self.models.delete_store(store_id)
        self.tuples.drop(store_id)
        logger.info("relcheck: deleted store %s", store_id)

    # ------------- models -------------

    def write_model(self, store_id: str, model: AuthorizationModel) -> str:
        """Validate and append *model*; returns the newly assigned model id."""
        self.models.get_store(store_id)
        validate_model(model)
        model_id = _new_id()
        self.models.append_model(store_id, model.with_id(model_id))
        logger.info("relcheck: store %s: wrote authorization model %s", store_id, model_id)
        return model_id

    def get_model(self, store_id: str, model_id: Optional[str] = None) -> AuthorizationModel:
        return self.models.get_model(store_id, model_id)

    def list_models(self, store_id: str) -> Sequence[AuthorizationModel]:
        return self.models.list_models(store_id)

    # ------------- tuples -------------

    def write_tuples(
        self,
        store_id: str,
        writes: Iterable[TupleKeyLike] = (),
        deletes: Iterable[TupleKeyLike] = (),
        *,
        model_id: Optional[str] = None,
        strict: Optional[bool] = None,
    ) -> None:
        """Validate every key, then apply deletes and writes as one unit."""
        w = [_as_key(k) for k in writes]
        d = [_as_key(k) for k in deletes]
        total = len(w) + len(d)
        if total == 0:
            raise ValidationError("write request contains no tuples")
        if total > self.config.max_tuples_per_write:
            raise ValidationError(
                f"write request has {total} tuples; at most "
                f"{self.config.max_tuples_per_write} are allowed"
            )
        if len(set(w) | set(d)) != total:
            raise ValidationError("write request contains duplicate tuples")

        model = self.models.get_model(store_id, model_id)
        for key in w:
            validate_tuple_for_model(model, key)
        for key in d:
            validate_tuple_key(key)

        strict_mode = self.config.strict_writes if strict is None else bool(strict)
        self.tuples.apply(store_id, w, d, strict=strict_mode)
        logger.debug("relcheck: store %s: %d writes, %d deletes", store_id, len(w), len(d))

    def read_tuples(
        self,
        store_id: str,
        flt: ReadFilter | Dict[str, Any] | None = None,
        *,
        page_size: Optional[int] = None,
        continuation_token: Optional[str] = None,
    ) -> tuple[List[Tuple], str]:
        """Return one page of matching tuples and the token for the next page ("" at end)."""
        self.models.get_store(store_id)
        if not isinstance(flt, ReadFilter):
            flt = ReadFilter.from_dict(flt)
        if page_size is None:
            size = self.config.default_page_size
        else:
            try:
                size = int(page_size)
            except (TypeError, ValueError):
                raise ValidationError(f"page_size must be an integer, got {page_size!r}") from None
        if size < 1 or size > self.config.max_page_size:
            raise ValidationError(f"page_size must be between 1 and {self.config.max_page_size}")
        offset = _decode_token(continuation_token)

        rows = list(self.tuples.read(store_id, flt))
        page = rows[offset : offset + size]
        nxt = offset + size
        return page, (_encode_token(nxt) if nxt < len(rows) else "")

    def read_changes(self, store_id: str, object_type: Optional[str] = None) -> Sequence[TupleChange]:
        self.models.get_store(store_id)
        return self.tuples.read_changes(store_id, object_type)

    # ------------- checks -------------

    def check(
        self,
        store_id: str,
        model_id: Optional[str],
        user: str,
        relation: str,
        object: str,
        *,
        contextual_tuples: Iterable[TupleKeyLike] = (),
        cancel: Optional[threading.Event] = None,
    ) -> CheckResult:
        """Decide whether *user* has *relation* on *object*.

        Cycle, depth and deadline limits never raise here. A cycle or depth hit
        only fails the path it occurs on, so another path may still grant; when
        none does the result is ``allowed=False`` with the first limit error
        attached as ``diagnostic``. A cancelled check raises
        :class:`CheckCancelledError`.
        """
        t0 = time.perf_counter()
        model = self.models.get_model(store_id, model_id)
        extra = [_as_key(k) for k in contextual_tuples]
        self._validate_query(model, user, relation, object, extra)

        ev = RewriteEvaluator(
            model,
            self._reader(store_id, extra),
            max_depth=self.config.max_depth,
            deadline_ms=self.config.deadline_ms,
            cancel=cancel,
        )
        otype, oid = split_object(object)
        diagnostic: Optional[EvaluationLimitError] = None
        try:
            allowed = ev.evaluate(user, relation, otype, oid)
            if not allowed:
                diagnostic = ev.diagnostic
        except EvaluationLimitError as e:
            allowed = False
            diagnostic = e
        if diagnostic is not None:
            logger.warning(
                "relcheck: check %s#%s@%s denied: %s", object, relation, user, diagnostic.message
            )

        result = CheckResult(allowed=allowed, diagnostic=diagnostic)
        self._emit(store_id, model.id, user, relation, object, result, time.perf_counter() - t0)
        return result

    async def check_async(
        self,
        store_id: str,
        model_id: Optional[str],
        user: str,
        relation: str,
        object: str,
        *,
        contextual_tuples: Iterable[TupleKeyLike] = (),
    ) -> CheckResult:
        """Run :meth:`check` in a worker thread; cancelling the task stops the check."""
        cancel = threading.Event()
        try:
            return await asyncio.to_thread(
                self.check,
                store_id,
                model_id,
                user,
                relation,
                object,
                contextual_tuples=list(contextual_tuples),
                cancel=cancel,
            )
        except asyncio.CancelledError:
            cancel.set()
            raise

    def batch_check(
        self,
        store_id: str,
        queries: Sequence[TupleKeyLike],
        *,
        model_id: Optional[str] = None,
    ) -> List[CheckResult]:
        model = self.models.get_model(store_id, model_id)
        out: list[CheckResult] = []
        for q in queries:
            key = _as_key(q)
            out.append(self.check(store_id, model.id, key.user, key.relation, key.object))
        return out

    def list_objects(
        self,
        store_id: str,
        user: str,
        relation: str,
        object_type: str,
        *,
        model_id: Optional[str] = None,
    ) -> List[str]:
        """Objects of *object_type* on which *user* has *relation*.

        Candidates are the objects of that type present in the tuple store,
        each confirmed with a full check.
        """
        model = self.models.get_model(store_id, model_id)
        candidates = {t.key.object for t in self.tuples.read(store_id, ReadFilter(object=f"{object_type}:"))}
        return sorted(
            o for o in candidates if self.check(store_id, model.id, user, relation, o).allowed
        )

    def list_users(
        self,
        store_id: str,
        object: str,
        relation: str,
        user_type: str,
        *,
        model_id: Optional[str] = None,
    ) -> List[str]:
        """Users of *user_type* that have *relation* on *object*.

        Candidates are the users of that type named in some stored tuple. When a
        ``user_type:*`` tuple exists the wildcard is checked as well, and a
        ``user_type:*`` entry in the result means every user of the type is
        granted through it; users excluded by an exclusion rule are not listed
        separately, so confirm individual users with :meth:`check`.
        """
        model = self.models.get_model(store_id, model_id)
        candidates = set()
        for t in self.tuples.read(store_id):
            obj, rel = split_user(t.key.user)
            utype, uid = split_object(obj)
            if rel is None and utype == user_type:
                candidates.add(obj)
        return sorted(
            u for u in candidates if self.check(store_id, model.id, u, relation, object).allowed
        )

    # ------------- helpers -------------

    def _validate_query(
        self,
        model: AuthorizationModel,
        user: str,
        relation: str,
        object: str,
        contextual: Sequence[TupleKey],
    ) -> None:
        validate_tuple_key(TupleKey(user=user, relation=relation, object=object))
        otype = split_object(object)[0]
        td = model.type_definition(otype)
        if td is None:
            raise ValidationError(f"type {otype!r} is not defined in model {model.id}")
        if td.rule(relation) is None:
            raise ValidationError(f"relation {otype}#{relation} is not defined")
        for key in contextual:
            validate_tuple_for_model(model, key)

    def _reader(self, store_id: str, contextual: Sequence[TupleKey]):
        store = self.tuples

        def read(flt: ReadFilter) -> Iterator[TupleKey]:
            for t in store.read(store_id, flt):
                yield t.key
            for key in contextual:
                if flt.matches(key):
                    yield key

        return read

    def _emit(
        self,
        store_id: str,
        model_id: str,
        user: str,
        relation: str,
        object: str,
        result: CheckResult,
        seconds: float,
    ) -> None:
        decision = "allow" if result.allowed else "deny"
        if self.metrics is not None:
            try:
                self.metrics.inc("relcheck_checks_total", {"decision": decision})
                if isinstance(self.metrics, MetricsObserve):
                    self.metrics.observe("relcheck_check_seconds", seconds, {"decision": decision})
            except Exception:
                logger.exception("relcheck: metrics sink failed")
        if self.logger_sink is not None:
            payload: Dict[str, Any] = {
                "store_id": store_id,
                "authorization_model_id": model_id,
                "tuple_key": {"user": user, "relation": relation, "object": object},
                "decision": decision,
                "allowed": result.allowed,
                "duration_ms": round(seconds * 1000.0, 3),
            }
            if result.diagnostic is not None:
                payload["diagnostic"] = result.diagnostic.to_dict()
            try:
                self.logger_sink.log(payload)
            except Exception:
                logger.exception("relcheck: decision logger failed")


def _encode_token(offset: int) -> str:
    return base64.urlsafe_b64encode(str(offset).encode("ascii")).decode("ascii")


def _decode_token(token: Optional[str]) -> int:
    if not token:
        return 0
    try:
        value = int(base64.urlsafe_b64decode(token.encode("ascii")).decode("ascii"))
    except (binascii.Error, ValueError, UnicodeError):
        raise ValidationError(f"invalid continuation_token {token!r}") from None
    if value < 0:
        raise ValidationError(f"invalid continuation_token {token!r}")
    return value


__all__ = ["AuthorizationService"]
