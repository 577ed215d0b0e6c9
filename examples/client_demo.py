"""
Demo: the document-sharing quick start against a running relcheck (or OpenFGA) server.
Start the server first, e.g.:
  uvicorn deploy.compose.app.service:app --port 8080
Optional environment:
  RELCHECK_API_URL=http://localhost:8080
  RELCHECK_API_TOKEN=<bearer token>
"""

import os
import sys

import httpx

from relcheck.client import ClientConfig, RelCheckClient

API_URL = os.getenv("RELCHECK_API_URL", "http://localhost:8080")

TYPE_DEFINITIONS = [
    {"type": "user"},
    {
        "type": "document",
        "relations": {"owner": {"union": {"child": [{"this": {}}]}}},
        "metadata": {"relations": {"owner": {"directly_related_user_types": [{"type": "user"}]}}},
    },
]

client = RelCheckClient(
    ClientConfig(api_url=API_URL, api_token=os.getenv("RELCHECK_API_TOKEN"), timeout_seconds=5.0)
)

try:
    store = client.create_store("document-sharing-system")
except httpx.HTTPError as e:
    print(f"Cannot reach {API_URL}: {e}", file=sys.stderr)
    sys.exit(2)
print("Store:", store["id"])

model_id = client.write_authorization_model(TYPE_DEFINITIONS)
print("Authorization model:", model_id)

client.write([{"user": "user:alice", "relation": "owner", "object": "document:budget-2024"}])
print("Tuple written: user:alice owner document:budget-2024")

for user in ("user:alice", "user:bob"):
    print(f"{user} owner document:budget-2024 ->", client.check(user, "owner", "document:budget-2024"))
