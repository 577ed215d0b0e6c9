from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from ..core.errors import AlreadyExistsError, NotFoundError
from ..core.model import AuthorizationModel, ReadFilter, Store, Tuple, TupleChange, TupleKey

logger = logging.getLogger("relcheck.store.memory")


class InMemoryModelStore:
    """Stores and their append-only model versions, kept in process memory."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._stores: Dict[str, Store] = {}
        self._models: Dict[str, List[AuthorizationModel]] = {}

    def create_store(self, store: Store) -> None:
        with self._lock:
            if store.id in self._stores:
                raise AlreadyExistsError(f"store {store.id} already exists")
            self._stores[store.id] = store
            self._models[store.id] = []

    def get_store(self, store_id: str) -> Store:
        with self._lock:
            try:
                return self._stores[store_id]
            except KeyError:
                raise NotFoundError(f"store {store_id} not found") from None

    def list_stores(self) -> Sequence[Store]:
        with self._lock:
            return list(self._stores.values())

    def delete_store(self, store_id: str) -> None:
        with self._lock:
            if self._stores.pop(store_id, None) is None:
                raise NotFoundError(f"store {store_id} not found")
            self._models.pop(store_id, None)

    def append_model(self, store_id: str, model: AuthorizationModel) -> None:
        with self._lock:
            versions = self._versions(store_id)
            if any(m.id == model.id for m in versions):
                raise AlreadyExistsError(f"authorization model {model.id} already exists")
            versions.append(model)

    def get_model(self, store_id: str, model_id: Optional[str] = None) -> AuthorizationModel:
        with self._lock:
            versions = self._versions(store_id)
            if not model_id:
                if not versions:
                    raise NotFoundError(f"store {store_id} has no authorization model")
                return versions[-1]
            for m in versions:
                if m.id == model_id:
                    return m
        raise NotFoundError(f"authorization model {model_id} not found in store {store_id}")

    def list_models(self, store_id: str) -> Sequence[AuthorizationModel]:
        with self._lock:
            return list(reversed(self._versions(store_id)))

    def _versions(self, store_id: str) -> List[AuthorizationModel]:
        try:
            return self._models[store_id]
        except KeyError:
            raise NotFoundError(f"store {store_id} not found") from None


class _Partition:
    """Tuples of one store plus lookup indexes. Callers hold ``lock``."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.tuples: Dict[TupleKey, Tuple] = {}
        # (relation, object) -> keys ; user -> keys. Dicts keep insertion order.
        self.by_object: Dict[tuple[str, str], Dict[TupleKey, None]] = {}
        self.by_user: Dict[str, Dict[TupleKey, None]] = {}
        self.changes: List[TupleChange] = []

    def add(self, key: TupleKey) -> None:
        self.tuples[key] = Tuple(key)
        self.by_object.setdefault((key.relation, key.object), {})[key] = None
        self.by_user.setdefault(key.user, {})[key] = None
        self.changes.append(TupleChange(key, "write"))

    def remove(self, key: TupleKey) -> None:
        del self.tuples[key]
        _discard(self.by_object, (key.relation, key.object), key)
        _discard(self.by_user, key.user, key)
        self.changes.append(TupleChange(key, "delete"))

    def select(self, flt: ReadFilter) -> List[Tuple]:
        keys: Iterable[TupleKey]
        if flt.relation is not None and flt.object is not None and not flt.object.endswith(":"):
            keys = self.by_object.get((flt.relation, flt.object), {})
        elif flt.user is not None:
            keys = self.by_user.get(flt.user, {})
        else:
            keys = self.tuples
        return [self.tuples[k] for k in keys if flt.matches(k)]


def _discard(index: Dict[Any, Dict[TupleKey, None]], ikey: Any, key: TupleKey) -> None:
    bucket = index.get(ikey)
    if bucket is not None:
        bucket.pop(key, None)
        if not bucket:
            del index[ikey]


class TupleView:
    """Lazy, restartable view over a filtered partition.

    Every iteration takes a fresh snapshot under the partition lock, so a
    reader never observes a half-applied write.
    """

    def __init__(self, partition: _Partition, flt: ReadFilter) -> None:
        self._partition = partition
        self._flt = flt

    def __iter__(self) -> Iterator[Tuple]:
        with self._partition.lock:
            snapshot = self._partition.select(self._flt)
        return iter(snapshot)


class InMemoryTupleStore:
    """Thread-safe set of tuples per store.

    Writes are serialized per store. Without ``strict`` a duplicate write or a
    delete of an absent tuple is a no-op; with ``strict`` they raise
    :class:`AlreadyExistsError` / :class:`NotFoundError`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._parts: Dict[str, _Partition] = {}

    def _partition(self, store_id: str) -> _Partition:
        with self._lock:
            part = self._parts.get(store_id)
            if part is None:
                part = self._parts[store_id] = _Partition()
            return part

    # ------------- writes -------------

    def write(self, store_id: str, key: TupleKey, *, strict: bool = False) -> bool:
        part = self._partition(store_id)
        with part.lock:
            if key in part.tuples:
                if strict:
                    raise AlreadyExistsError(f"tuple {key} already exists")
                return False
            part.add(key)
            return True

    def delete(self, store_id: str, key: TupleKey, *, strict: bool = False) -> bool:
        part = self._partition(store_id)
        with part.lock:
            if key not in part.tuples:
                if strict:
                    raise NotFoundError(f"tuple {key} does not exist")
                return False
            part.remove(key)
            return True

    def apply(
        self,
        store_id: str,
        writes: Sequence[TupleKey],
        deletes: Sequence[TupleKey],
        *,
        strict: bool = False,
    ) -> None:
        """Apply deletes then writes atomically: in strict mode nothing changes on error."""
        part = self._partition(store_id)
        with part.lock:
            if strict:
                for key in deletes:
                    if key not in part.tuples:
                        raise NotFoundError(f"tuple {key} does not exist")
                for key in writes:
                    if key in part.tuples:
                        raise AlreadyExistsError(f"tuple {key} already exists")
            for key in deletes:
                if key in part.tuples:
                    part.remove(key)
            for key in writes:
                if key not in part.tuples:
                    part.add(key)
        logger.debug("store %s: applied %d writes, %d deletes", store_id, len(writes), len(deletes))

    # ------------- reads -------------

    def read(self, store_id: str, flt: ReadFilter | None = None) -> TupleView:
        return TupleView(self._partition(store_id), flt or ReadFilter())

    def read_changes(self, store_id: str, object_type: Optional[str] = None) -> Sequence[TupleChange]:
        part = self._partition(store_id)
        with part.lock:
            changes = list(part.changes)
        if object_type:
            changes = [c for c in changes if c.key.object_type == object_type]
        return changes

    def drop(self, store_id: str) -> None:
        with self._lock:
            self._parts.pop(store_id, None)


__all__ = ["InMemoryModelStore", "InMemoryTupleStore", "TupleView"]
