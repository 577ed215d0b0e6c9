import copy

import pytest

from relcheck import AuthorizationService, parse_model

# A document-sharing model exercising every rewrite kind.
DOCS_MODEL = {
    "schema_version": "1.1",
    "type_definitions": [
        {"type": "user"},
        {
            "type": "group",
            "relations": {"member": {"this": {}}},
            "metadata": {
                "relations": {
                    "member": {
                        "directly_related_user_types": [
                            {"type": "user"},
                            {"type": "group", "relation": "member"},
                        ]
                    }
                }
            },
        },
        {
            "type": "folder",
            "relations": {"viewer": {"this": {}}},
            "metadata": {
                "relations": {
                    "viewer": {
                        "directly_related_user_types": [
                            {"type": "user"},
                            {"type": "group", "relation": "member"},
                        ]
                    }
                }
            },
        },
        {
            "type": "document",
            "relations": {
                "parent": {"this": {}},
                "owner": {"this": {}},
                "editor": {"this": {}},
                "banned": {"this": {}},
                "viewer": {
                    "union": {
                        "child": [
                            {"this": {}},
                            {"computedUserset": {"relation": "owner"}},
                            {"computedUserset": {"relation": "editor"}},
                            {
                                "tupleToUserset": {
                                    "tupleset": {"relation": "parent"},
                                    "computedUserset": {"relation": "viewer"},
                                }
                            },
                        ]
                    }
                },
                "approver": {
                    "intersection": {
                        "child": [
                            {"computedUserset": {"relation": "owner"}},
                            {"computedUserset": {"relation": "editor"}},
                        ]
                    }
                },
                "reader": {
                    "difference": {
                        "base": {"computedUserset": {"relation": "viewer"}},
                        "subtract": {"computedUserset": {"relation": "banned"}},
                    }
                },
            },
            "metadata": {
                "relations": {
                    "parent": {"directly_related_user_types": [{"type": "folder"}]},
                    "owner": {"directly_related_user_types": [{"type": "user"}]},
                    "editor": {
                        "directly_related_user_types": [
                            {"type": "user"},
                            {"type": "group", "relation": "member"},
                        ]
                    },
                    "banned": {"directly_related_user_types": [{"type": "user"}]},
                    "viewer": {
                        "directly_related_user_types": [
                            {"type": "user"},
                            {"type": "user", "wildcard": {}},
                            {"type": "group", "relation": "member"},
                        ]
                    },
                }
            },
        },
    ],
}


@pytest.fixture
def model_doc():
    return copy.deepcopy(DOCS_MODEL)


@pytest.fixture
def service():
    return AuthorizationService()


@pytest.fixture
def store(service, model_doc):
    """(store_id, model_id) with the document-sharing model written."""
    st = service.create_store("document-sharing-system")
    model_id = service.write_model(st.id, parse_model(model_doc))
    return st.id, model_id
