from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from typing import Any, List, Optional, Sequence

from . import __version__
from .core.config import ServiceConfig
from .core.errors import RelCheckError, ValidationError
from .core.model import TupleKey
from .core.schema import parse_model
from .core.service import AuthorizationService
from .core.validate import model_errors
from .storage import load_document

EXIT_OK = 0
EXIT_DENIED = 1
EXIT_VALIDATION_ERRORS = 2
EXIT_USAGE = 64


def _print(data: Any, fmt: str) -> None:
    if fmt == "json":
        sys.stdout.write(json.dumps(data, indent=2, sort_keys=True) + "\n")
    else:
        text = data if isinstance(data, str) else str(data)
        sys.stdout.write(text if text.endswith("\n") else text + "\n")


def _load_model(path: str):
    doc = load_document(path)
    if not isinstance(doc, dict):
        raise ValidationError(f"{path}: model document must be an object")
    return parse_model(doc)


def _load_tuples(path: str) -> List[TupleKey]:
    doc = load_document(path)
    if isinstance(doc, dict):
        doc = doc.get("tuples") or []
    if not isinstance(doc, list):
        raise ValidationError(f"{path}: expected a list of tuple keys")
    return [TupleKey.from_dict(item) for item in doc]


def cmd_validate(args: argparse.Namespace) -> int:
    fmt = getattr(args, "format", "text")
    try:
        model = _load_model(args.model)
    except ValidationError as e:
        errors = [e.message]
    else:
        errors = model_errors(model)

    if fmt == "json":
        _print(errors, fmt)
    elif errors:
        _print("\n".join(f"error: {msg}" for msg in errors), fmt)
    else:
        _print("OK", fmt)
    return EXIT_VALIDATION_ERRORS if errors else EXIT_OK


def cmd_check(args: argparse.Namespace) -> int:
    fmt = getattr(args, "format", "text")
    cfg = ServiceConfig.from_env()
    if getattr(args, "max_depth", None) is not None:
        cfg = dataclasses.replace(cfg, max_depth=args.max_depth)
    svc = AuthorizationService(config=cfg)

    try:
        store = svc.create_store("cli")
        model_id = svc.write_model(store.id, _load_model(args.model))
        keys = _load_tuples(args.tuples) if args.tuples else []
        step = cfg.max_tuples_per_write
        for i in range(0, len(keys), step):
            svc.write_tuples(store.id, keys[i : i + step], model_id=model_id)
        result = svc.check(store.id, model_id, args.user, args.relation, args.object)
    except RelCheckError as e:
        if fmt == "json":
            _print({"error": e.to_dict()}, fmt)
        else:
            _print(f"error: {e.message}", fmt)
        return EXIT_VALIDATION_ERRORS

    if fmt == "json":
        _print(result.to_dict(), fmt)
    else:
        line = "allowed" if result.allowed else "denied"
        if result.diagnostic is not None:
            line += f" ({result.diagnostic.code}: {result.diagnostic.message})"
        _print(line, fmt)
    return EXIT_OK if result.allowed else EXIT_DENIED


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="relcheck", description="Validate authorization models and run relationship checks."
    )
    p.add_argument("--version", action="store_true", help="print version and exit")
    p.add_argument("-v", "--verbose", action="store_true", help="log at DEBUG level")
    sub = p.add_subparsers(dest="command")

    v = sub.add_parser("validate", help="validate an authorization model file (JSON or YAML)")
    v.add_argument("--model", required=True, help="path to the model document")
    v.add_argument("--format", choices=("text", "json"), default="text")
    v.set_defaults(func=cmd_validate)

    c = sub.add_parser("check", help="evaluate one check against a model and tuple file")
    c.add_argument("--model", required=True, help="path to the model document")
    c.add_argument("--tuples", help="path to a list of tuple keys (JSON or YAML)")
    c.add_argument("--user", required=True, help="e.g. user:alice or group:eng#member")
    c.add_argument("--relation", required=True)
    c.add_argument("--object", required=True, help="e.g. document:budget-2024")
    c.add_argument("--max-depth", type=int, default=None)
    c.add_argument("--format", choices=("text", "json"), default="text")
    c.set_defaults(func=cmd_check)
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        sys.stdout.write(f"relcheck {__version__}\n")
        return EXIT_OK
    if not getattr(args, "func", None):
        parser.print_help(sys.stdout)
        return EXIT_USAGE

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    rc = args.func(args)
    return rc if isinstance(rc, int) else EXIT_OK


def run() -> None:  # console_scripts entry point
    raise SystemExit(main())


if __name__ == "__main__":  # pragma: no cover
    run()
