from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Protocol, Sequence, runtime_checkable

from .model import AuthorizationModel, ReadFilter, Store, Tuple, TupleChange, TupleKey


@runtime_checkable
class ModelStore(Protocol):
    """Append-only, per-store list of authorization models."""

    def create_store(self, store: Store) -> None: ...

    def get_store(self, store_id: str) -> Store: ...

    def list_stores(self) -> Sequence[Store]: ...

    def delete_store(self, store_id: str) -> None: ...

    def append_model(self, store_id: str, model: AuthorizationModel) -> None: ...

    def get_model(self, store_id: str, model_id: Optional[str] = None) -> AuthorizationModel: ...

    def list_models(self, store_id: str) -> Sequence[AuthorizationModel]: ...


@runtime_checkable
class TupleStore(Protocol):
    """Set of relationship tuples per store."""

    def write(self, store_id: str, key: TupleKey, *, strict: bool = False) -> bool: ...

    def delete(self, store_id: str, key: TupleKey, *, strict: bool = False) -> bool: ...

    def apply(
        self,
        store_id: str,
        writes: Sequence[TupleKey],
        deletes: Sequence[TupleKey],
        *,
        strict: bool = False,
    ) -> None: ...

    def read(self, store_id: str, flt: ReadFilter | None = None) -> Iterable[Tuple]: ...

    def read_changes(
        self, store_id: str, object_type: Optional[str] = None
    ) -> Sequence[TupleChange]: ...

    def drop(self, store_id: str) -> None: ...


@runtime_checkable
class RelationshipChecker(Protocol):
    """Anything that can answer "does user have relation on object"."""

    def check(self, user: str, relation: str, object: str, **kwargs: Any) -> Any: ...

    def batch_check(self, triples: list[tuple[str, str, str]], **kwargs: Any) -> Any: ...


class MetricsSink(Protocol):
    def inc(self, name: str, labels: Dict[str, str] | None = None) -> None: ...


@runtime_checkable
class MetricsObserve(Protocol):
    def observe(self, name: str, value: float, labels: Dict[str, str] | None = None) -> None: ...


class DecisionLogSink(Protocol):
    def log(self, payload: Dict[str, Any]) -> None: ...


__all__ = [
    "ModelStore",
    "TupleStore",
    "RelationshipChecker",
    "MetricsSink",
    "MetricsObserve",
    "DecisionLogSink",
]
