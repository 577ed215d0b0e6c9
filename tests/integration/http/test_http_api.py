import pytest
from starlette.testclient import TestClient

from relcheck import AuthorizationService
from relcheck.core.errors import CheckCancelledError, CycleDetectedError, NotFoundError, RelCheckError, ValidationError
from relcheck.http import create_app
from relcheck.http.app import status_for

QUICKSTART_TYPES = [
    {"type": "user"},
    {
        "type": "document",
        "relations": {"owner": {"union": {"child": [{"this": {}}]}}},
        "metadata": {"relations": {"owner": {"directly_related_user_types": [{"type": "user"}]}}},
    },
]


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


@pytest.fixture
def store_ids(client, model_doc):
    r = client.post("/stores", json={"name": "document-sharing-system"})
    sid = r.json()["id"]
    r = client.post(f"/stores/{sid}/authorization-models", json=model_doc)
    return sid, r.json()["authorization_model_id"]


def test_quickstart_flow(client):
    r = client.post("/stores", json={"name": "document-sharing-system"})
    assert r.status_code == 201
    store = r.json()
    assert store["name"] == "document-sharing-system"
    sid = store["id"]

    r = client.post(
        f"/stores/{sid}/authorization-models",
        json={"schema_version": "1.1", "type_definitions": QUICKSTART_TYPES},
    )
    assert r.status_code == 201
    mid = r.json()["authorization_model_id"]

    # list-of-{tuple_key} form, as sent by the demo client
    r = client.post(
        f"/stores/{sid}/write",
        json={
            "writes": [
                {"tuple_key": {"user": "user:alice", "relation": "owner", "object": "document:budget-2024"}}
            ],
            "authorization_model_id": mid,
        },
    )
    assert r.status_code == 200
    assert r.json() == {}

    body = {"user": "user:alice", "relation": "owner", "object": "document:budget-2024"}
    r = client.post(f"/stores/{sid}/check", json={**body, "authorization_model_id": mid})
    assert r.json() == {"allowed": True}
    r = client.post(f"/stores/{sid}/check", json={"tuple_key": {**body, "user": "user:bob"}})
    assert r.json() == {"allowed": False}

    r = client.post(f"/stores/{sid}/read")
    tuples = r.json()["tuples"]
    assert [t["key"] for t in tuples] == [body]
    assert r.json()["continuation_token"] == ""


def test_store_routes(client):
    sid = client.post("/stores", json={"name": "a"}).json()["id"]
    assert client.get(f"/stores/{sid}").json()["name"] == "a"
    assert [s["id"] for s in client.get("/stores").json()["stores"]] == [sid]
    assert client.delete(f"/stores/{sid}").status_code == 204
    r = client.get(f"/stores/{sid}")
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_model_routes(client, store_ids, model_doc):
    sid, mid = store_ids
    r = client.get(f"/stores/{sid}/authorization-models/{mid}")
    assert r.status_code == 200
    model = r.json()["authorization_model"]
    assert model["id"] == mid
    assert [td["type"] for td in model["type_definitions"]] == ["user", "group", "folder", "document"]

    mid2 = client.post(f"/stores/{sid}/authorization-models", json=model_doc).json()["authorization_model_id"]
    ids = [m["id"] for m in client.get(f"/stores/{sid}/authorization-models").json()["authorization_models"]]
    assert ids == [mid2, mid]

    assert client.get(f"/stores/{sid}/authorization-models/nope").status_code == 404


def test_invalid_model_is_400(client, store_ids):
    sid, _ = store_ids
    r = client.post(
        f"/stores/{sid}/authorization-models",
        json={"type_definitions": [{"type": "doc", "relations": {"a": {"computedUserset": {"relation": "a"}}}}]},
    )
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"
    assert "cyclic" in r.json()["message"]


@pytest.mark.parametrize("raw", [b"{not json", b"[1, 2]"])
def test_bad_bodies_are_400(client, store_ids, raw):
    sid, _ = store_ids
    r = client.post(f"/stores/{sid}/check", content=raw, headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_write_errors(client, store_ids):
    sid, _ = store_ids
    key = {"user": "user:alice", "relation": "owner", "object": "document:1"}
    r = client.post(f"/stores/{sid}/write", json={})
    assert r.status_code == 400

    r = client.post(f"/stores/{sid}/write", json={"writes": {"tuple_keys": [{**key, "user": "user:*"}]}})
    assert r.status_code == 400
    assert "not allowed" in r.json()["message"]

    r = client.post("/stores/missing/write", json={"writes": {"tuple_keys": [key]}})
    assert r.status_code == 404


def test_check_with_contextual_tuples_and_diagnostics(client, store_ids):
    sid, _ = store_ids
    r = client.post(
        f"/stores/{sid}/check",
        json={
            "tuple_key": {"user": "user:carol", "relation": "viewer", "object": "document:x"},
            "contextual_tuples": {
                "tuple_keys": [{"user": "user:carol", "relation": "editor", "object": "document:x"}]
            },
        },
    )
    assert r.json() == {"allowed": True}

    client.post(
        f"/stores/{sid}/write",
        json={
            "writes": {
                "tuple_keys": [
                    {"user": "group:b#member", "relation": "member", "object": "group:a"},
                    {"user": "group:a#member", "relation": "member", "object": "group:b"},
                ]
            }
        },
    )
    r = client.post(
        f"/stores/{sid}/check",
        json={"tuple_key": {"user": "user:alice", "relation": "member", "object": "group:a"}},
    )
    assert r.status_code == 200
    data = r.json()
    assert data["allowed"] is False
    assert data["diagnostic"]["code"] == "cycle_detected"


def test_check_undefined_relation_is_400(client, store_ids):
    sid, _ = store_ids
    r = client.post(
        f"/stores/{sid}/check",
        json={"tuple_key": {"user": "user:alice", "relation": "nope", "object": "document:1"}},
    )
    assert r.status_code == 400


def test_batch_check(client, store_ids):
    sid, _ = store_ids
    client.post(
        f"/stores/{sid}/write",
        json={"writes": [{"user": "user:alice", "relation": "owner", "object": "document:1"}]},
    )
    r = client.post(
        f"/stores/{sid}/batch-check",
        json={
            "checks": [
                {"correlation_id": "a", "tuple_key": {"user": "user:alice", "relation": "viewer", "object": "document:1"}},
                {"correlation_id": "b", "tuple_key": {"user": "user:bob", "relation": "viewer", "object": "document:1"}},
                {"correlation_id": "c", "tuple_key": {"user": "user:bob", "relation": "nope", "object": "document:1"}},
            ]
        },
    )
    results = r.json()["results"]
    assert results["a"] == {"allowed": True}
    assert results["b"] == {"allowed": False}
    assert results["c"]["allowed"] is False
    assert results["c"]["error"]["code"] == "validation_error"

    r = client.post(f"/stores/{sid}/batch-check", json={"checks": []})
    assert r.status_code == 400
    dup = {"correlation_id": "x", "tuple_key": {"user": "user:a", "relation": "owner", "object": "document:1"}}
    r = client.post(f"/stores/{sid}/batch-check", json={"checks": [dup, dup]})
    assert r.status_code == 400


def test_read_pagination_and_changes(client, store_ids):
    sid, _ = store_ids
    keys = [{"user": f"user:u{i}", "relation": "viewer", "object": "document:1"} for i in range(3)]
    client.post(f"/stores/{sid}/write", json={"writes": {"tuple_keys": keys}})

    r = client.post(f"/stores/{sid}/read", json={"tuple_key": {"object": "document:1"}, "page_size": 2})
    first = r.json()
    assert len(first["tuples"]) == 2
    assert first["continuation_token"]
    r = client.post(
        f"/stores/{sid}/read",
        json={"tuple_key": {"object": "document:1"}, "page_size": 2, "continuation_token": first["continuation_token"]},
    )
    assert [t["key"]["user"] for t in r.json()["tuples"]] == ["user:u2"]
    assert r.json()["continuation_token"] == ""

    changes = client.get(f"/stores/{sid}/changes").json()["changes"]
    assert [c["operation"] for c in changes] == ["write"] * 3
    assert client.get(f"/stores/{sid}/changes", params={"type": "folder"}).json() == {"changes": []}


@pytest.mark.parametrize("page_size", ["ten", 0, -1, 101, [2]])
def test_read_rejects_bad_page_size(client, store_ids, page_size):
    sid, _ = store_ids
    r = client.post(f"/stores/{sid}/read", json={"page_size": page_size})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_read_accepts_numeric_page_size_string(client, store_ids):
    sid, _ = store_ids
    keys = [{"user": f"user:u{i}", "relation": "viewer", "object": "document:1"} for i in range(3)]
    client.post(f"/stores/{sid}/write", json={"writes": {"tuple_keys": keys}})
    r = client.post(f"/stores/{sid}/read", json={"page_size": "2"})
    assert r.status_code == 200
    assert len(r.json()["tuples"]) == 2


def test_list_objects_and_users(client, store_ids):
    sid, _ = store_ids
    client.post(
        f"/stores/{sid}/write",
        json={
            "writes": {
                "tuple_keys": [
                    {"user": "user:alice", "relation": "owner", "object": "document:1"},
                    {"user": "user:bob", "relation": "editor", "object": "document:2"},
                ]
            }
        },
    )
    r = client.post(f"/stores/{sid}/list-objects", json={"user": "user:alice", "relation": "viewer", "type": "document"})
    assert r.json() == {"objects": ["document:1"]}
    r = client.post(f"/stores/{sid}/list-objects", json={"user": "user:alice", "relation": "viewer"})
    assert r.status_code == 400

    r = client.post(
        f"/stores/{sid}/list-users",
        json={"object": {"type": "document", "id": "2"}, "relation": "viewer", "user_filters": [{"type": "user"}]},
    )
    assert r.json() == {"users": ["user:bob"]}
    r = client.post(
        f"/stores/{sid}/list-users",
        json={"object": "document:1", "relation": "viewer", "user_type": "user"},
    )
    assert r.json() == {"users": ["user:alice"]}
    r = client.post(f"/stores/{sid}/list-users", json={"object": "document:1", "relation": "viewer"})
    assert r.status_code == 400


def test_status_mapping():
    assert status_for(ValidationError("x")) == 400
    assert status_for(NotFoundError("x")) == 404
    assert status_for(CheckCancelledError("x")) == 409
    assert status_for(CycleDetectedError("x")) == 500
    assert status_for(RelCheckError("x")) == 500


def test_app_exposes_service():
    svc = AuthorizationService()
    assert create_app(svc).state.service is svc
    assert isinstance(create_app().state.service, AuthorizationService)
