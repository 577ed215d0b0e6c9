import logging

from relcheck import AuthorizationService, parse_model

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


def build_model() -> dict:
    # --- userset rewrite rules (per object type) ---
    # - document.owner: direct assignment.
    # - document.viewer: direct, owners, or anyone who can view the parent folder.
    # - folder.viewer: direct.
    return {
        "schema_version": "1.1",
        "type_definitions": [
            {"type": "user"},
            {
                "type": "folder",
                "relations": {"viewer": {"this": {}}},
                "metadata": {
                    "relations": {"viewer": {"directly_related_user_types": [{"type": "user"}]}}
                },
            },
            {
                "type": "document",
                "relations": {
                    "owner": {"this": {}},
                    "parent": {"this": {}},
                    "viewer": {
                        "union": {
                            "child": [
                                {"this": {}},
                                {"computedUserset": {"relation": "owner"}},
                                {
                                    "tupleToUserset": {
                                        "tupleset": {"relation": "parent"},
                                        "computedUserset": {"relation": "viewer"},
                                    }
                                },
                            ]
                        }
                    },
                },
                "metadata": {
                    "relations": {
                        "owner": {"directly_related_user_types": [{"type": "user"}]},
                        "parent": {"directly_related_user_types": [{"type": "folder"}]},
                        "viewer": {
                            "directly_related_user_types": [
                                {"type": "user"},
                                {"type": "user", "wildcard": {}},
                            ]
                        },
                    }
                },
            },
        ],
    }


def main() -> None:
    svc = AuthorizationService()
    store = svc.create_store("document-sharing-system")
    model_id = svc.write_model(store.id, parse_model(build_model()))

    svc.write_tuples(
        store.id,
        [
            # Alice owns the budget
            {"user": "user:alice", "relation": "owner", "object": "document:budget-2024"},
            # the budget lives in folder:finance, which Carol can view
            {"user": "folder:finance", "relation": "parent", "object": "document:budget-2024"},
            {"user": "user:carol", "relation": "viewer", "object": "folder:finance"},
        ],
        model_id=model_id,
    )

    # NB: Bob has no relationships -> should be denied
    for user in ("user:alice", "user:bob", "user:carol"):
        for relation in ("owner", "viewer"):
            res = svc.check(store.id, model_id, user, relation, "document:budget-2024")
            print(f"{user:12} {relation:7} document:budget-2024 -> {res.allowed}")

    print("carol can view:", svc.list_objects(store.id, "user:carol", "viewer", "document"))
    print("viewers:", svc.list_users(store.id, "document:budget-2024", "viewer", "user"))


if __name__ == "__main__":
    main()
