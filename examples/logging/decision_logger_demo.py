#!/usr/bin/env python3
"""
DecisionLogger configuration demo.

Run:
  python examples/logging/decision_logger_demo.py

This script shows:
  1) Text lines (default)
  2) JSON lines with the user redacted
  3) Sampling, and how denials carrying a diagnostic bypass it

It emits to stdout via the 'relcheck.audit' logger.
"""

import logging

from relcheck import AuthorizationService, parse_model
from relcheck.logging import DecisionLogger


def setup_logging() -> None:
    """Configure logging so 'relcheck.audit' emits to stdout."""
    root = logging.getLogger()
    if not root.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(h)
    root.setLevel(logging.INFO)


MODEL = {
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
    ]
}


def run(title: str, sink: DecisionLogger) -> None:
    print(f"\n=== {title} ===")
    svc = AuthorizationService(logger_sink=sink)
    sid = svc.create_store("audit-demo").id
    mid = svc.write_model(sid, parse_model(MODEL))
    svc.write_tuples(
        sid,
        [
            {"user": "user:alice", "relation": "member", "object": "group:eng"},
            # a membership loop: resolving group:a for a non-member hits a cycle
            {"user": "group:b#member", "relation": "member", "object": "group:a"},
            {"user": "group:a#member", "relation": "member", "object": "group:b"},
        ],
    )
    svc.check(sid, mid, "user:alice", "member", "group:eng")
    svc.check(sid, mid, "user:bob", "member", "group:eng")
    svc.check(sid, mid, "user:bob", "member", "group:a")


def main() -> None:
    setup_logging()
    run("1) text lines", DecisionLogger())
    run("2) JSON, redacted users", DecisionLogger(as_json=True, redact_users=True))
    run("3) sample_rate=0: only the cycle diagnostic is logged", DecisionLogger(sample_rate=0.0))


if __name__ == "__main__":
    main()
