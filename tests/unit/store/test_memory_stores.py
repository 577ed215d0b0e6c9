import threading

import pytest

from relcheck.core.errors import AlreadyExistsError, NotFoundError
from relcheck.core.model import AuthorizationModel, ReadFilter, Store, TupleKey
from relcheck.store import InMemoryModelStore, InMemoryTupleStore, TupleView

K1 = TupleKey("user:alice", "owner", "document:1")
K2 = TupleKey("user:bob", "viewer", "document:1")
K3 = TupleKey("user:alice", "viewer", "folder:x")


def model(mid):
    return AuthorizationModel(id=mid, schema_version="1.1", type_definitions=())


# ------------- model store -------------


def test_store_lifecycle():
    ms = InMemoryModelStore()
    ms.create_store(Store("s1", "demo"))
    assert ms.get_store("s1").name == "demo"
    assert [s.id for s in ms.list_stores()] == ["s1"]
    with pytest.raises(AlreadyExistsError):
        ms.create_store(Store("s1", "again"))
    ms.delete_store("s1")
    with pytest.raises(NotFoundError):
        ms.get_store("s1")
    with pytest.raises(NotFoundError):
        ms.delete_store("s1")


def test_models_are_versioned_latest_first():
    ms = InMemoryModelStore()
    ms.create_store(Store("s1", "demo"))
    with pytest.raises(NotFoundError) as ei:
        ms.get_model("s1")
    assert "has no authorization model" in ei.value.message

    ms.append_model("s1", model("m1"))
    ms.append_model("s1", model("m2"))
    assert ms.get_model("s1").id == "m2"
    assert ms.get_model("s1", "m1").id == "m1"
    assert [m.id for m in ms.list_models("s1")] == ["m2", "m1"]
    with pytest.raises(AlreadyExistsError):
        ms.append_model("s1", model("m1"))
    with pytest.raises(NotFoundError):
        ms.get_model("s1", "m9")
    with pytest.raises(NotFoundError):
        ms.append_model("nope", model("m1"))


# ------------- tuple store -------------


def test_write_is_idempotent_and_delete_of_absent_is_noop():
    ts = InMemoryTupleStore()
    assert ts.write("s", K1) is True
    assert ts.write("s", K1) is False
    assert [t.key for t in ts.read("s")] == [K1]
    assert ts.delete("s", K2) is False
    assert ts.delete("s", K1) is True
    assert list(ts.read("s")) == []


def test_strict_mode_raises():
    ts = InMemoryTupleStore()
    ts.write("s", K1, strict=True)
    with pytest.raises(AlreadyExistsError):
        ts.write("s", K1, strict=True)
    with pytest.raises(NotFoundError):
        ts.delete("s", K2, strict=True)


def test_apply_strict_is_all_or_nothing():
    ts = InMemoryTupleStore()
    ts.write("s", K1)
    with pytest.raises(AlreadyExistsError):
        ts.apply("s", [K2, K1], [], strict=True)
    assert [t.key for t in ts.read("s")] == [K1]

    with pytest.raises(NotFoundError):
        ts.apply("s", [K2], [K3], strict=True)
    assert [t.key for t in ts.read("s")] == [K1]

    ts.apply("s", [K2, K3], [K1])
    assert {t.key for t in ts.read("s")} == {K2, K3}


def test_read_filters():
    ts = InMemoryTupleStore()
    ts.apply("s", [K1, K2, K3], [])
    assert [t.key for t in ts.read("s", ReadFilter(relation="owner", object="document:1"))] == [K1]
    assert [t.key for t in ts.read("s", ReadFilter(user="user:alice"))] == [K1, K3]
    assert [t.key for t in ts.read("s", ReadFilter(object="document:"))] == [K1, K2]
    assert [t.key for t in ts.read("s", ReadFilter(object="folder:x"))] == [K3]
    assert list(ts.read("other")) == []


def test_view_is_lazy_and_restartable():
    ts = InMemoryTupleStore()
    view = ts.read("s", ReadFilter(object="document:"))
    assert isinstance(view, TupleView)
    ts.write("s", K1)
    assert [t.key for t in view] == [K1]
    ts.write("s", K2)
    assert [t.key for t in view] == [K1, K2]
    assert [t.key for t in view] == [K1, K2]


def test_changelog_records_writes_and_deletes():
    ts = InMemoryTupleStore()
    ts.write("s", K1)
    ts.write("s", K1)  # no-op, not logged
    ts.write("s", K3)
    ts.delete("s", K1)
    changes = ts.read_changes("s")
    assert [(c.key, c.operation) for c in changes] == [(K1, "write"), (K3, "write"), (K1, "delete")]
    assert [c.key for c in ts.read_changes("s", "folder")] == [K3]
    assert changes[0].to_dict()["tuple_key"] == K1.to_dict()


def test_drop_forgets_store():
    ts = InMemoryTupleStore()
    ts.write("s", K1)
    ts.drop("s")
    assert list(ts.read("s")) == []
    ts.drop("never-existed")


def test_concurrent_writers_do_not_lose_tuples():
    ts = InMemoryTupleStore()

    def writer(n):
        for i in range(200):
            ts.write("s", TupleKey(f"user:{n}-{i}", "viewer", "document:1"))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(list(ts.read("s", ReadFilter(relation="viewer", object="document:1")))) == 800
