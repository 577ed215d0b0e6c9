from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Any, Dict, List

import yaml

from ..core.errors import ValidationError
from ..core.model import AuthorizationModel, TupleKey
from ..core.schema import dump_model, parse_model
from ..core.service import AuthorizationService
from ..core.validate import validate_model, validate_tuple_for_model

logger = logging.getLogger("relcheck.storage")

SNAPSHOT_VERSION = 1


def atomic_write(path: str, data: str, *, encoding: str = "utf-8") -> None:
    """Write data atomically to *path*.

    Uses a temporary file in the same directory followed by os.replace().
    """
    directory = os.path.dirname(path) or "."
    fd, tmp = tempfile.mkstemp(prefix=".relcheck.tmp.", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(data)
        os.replace(tmp, path)
    finally:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass


def parse_document(text: str, *, filename: str | None = None) -> Any:
    """Parse JSON or YAML text.

    ``.yaml``/``.yml`` files are read as YAML, ``.json`` as JSON; anything else
    is tried as JSON first and then as YAML.
    """
    name = (filename or "").lower()
    if name.endswith((".yaml", ".yml")):
        return yaml.safe_load(text)
    if name.endswith(".json"):
        return json.loads(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return yaml.safe_load(text)


def load_document(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    return parse_document(text, filename=path)


def _admitted_by_any(models: List[AuthorizationModel], key: TupleKey) -> None:
    """Tuples may have been written under any model version; the newest one reports the error."""
    for model in models[:-1]:
        try:
            validate_tuple_for_model(model, key)
            return
        except ValidationError:
            continue
    validate_tuple_for_model(models[-1], key)


class FileSnapshot:
    """Durable JSON document holding one store: metadata, every model version, tuples.

    ``save`` writes atomically; ``load`` recreates the store in a service and
    returns its (new) id. Model ids are preserved so pinned clients keep working.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def dump(self, service: AuthorizationService, store_id: str) -> Dict[str, Any]:
        store = service.get_store(store_id)
        models = list(reversed(service.list_models(store_id)))  # oldest first
        tuples = [t.key.to_dict() for t in service.tuples.read(store_id)]
        return {
            "version": SNAPSHOT_VERSION,
            "store": store.to_dict(),
            "authorization_models": [dump_model(m) for m in models],
            "tuples": tuples,
        }

    def save(self, service: AuthorizationService, store_id: str) -> None:
        doc = self.dump(service, store_id)
        atomic_write(self.path, json.dumps(doc, indent=2, sort_keys=True))
        logger.info(
            "relcheck: saved store %s (%d models, %d tuples) to %s",
            store_id,
            len(doc["authorization_models"]),
            len(doc["tuples"]),
            self.path,
        )

    def load(self, service: AuthorizationService) -> str:
        doc = load_document(self.path)
        if not isinstance(doc, dict) or doc.get("version") != SNAPSHOT_VERSION:
            raise ValidationError(f"{self.path}: not a relcheck snapshot (version {SNAPSHOT_VERSION})")

        # everything is validated before the store exists: a bad document leaves no trace
        models: List[AuthorizationModel] = []
        for raw in doc.get("authorization_models") or []:
            model = parse_model(raw)
            validate_model(model)
            models.append(model)
        keys = [TupleKey.from_dict(t) for t in doc.get("tuples") or []]
        if keys and not models:
            raise ValidationError(f"{self.path}: snapshot has tuples but no authorization model")
        for key in keys:
            _admitted_by_any(models, key)

        meta = doc.get("store") or {}
        store = service.create_store(str(meta.get("name") or "restored"))
        for model in models:
            service.models.append_model(store.id, model)
        # bypass max_tuples_per_write: a snapshot is restored in one go
        if keys:
            service.tuples.apply(store.id, keys, [], strict=False)
        logger.info("relcheck: restored store %s from %s", store.id, self.path)
        return store.id


__all__ = ["atomic_write", "parse_document", "load_document", "FileSnapshot"]
