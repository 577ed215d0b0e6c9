from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping

import httpx

from .core.errors import error_from_code
from .core.model import TupleKey
from .core.ports import RelationshipChecker

logger = logging.getLogger("relcheck.client")

Triple = tuple[str, str, str]


@dataclass(frozen=True)
class ClientConfig:
    """Configuration of :class:`RelCheckClient`."""

    api_url: str  # e.g. "http://localhost:8080"
    store_id: str | None = None
    authorization_model_id: str | None = None
    api_token: str | None = None  # Bearer <token>, if the deployment requires it
    timeout_seconds: float = 2.0


class RelCheckClient(RelationshipChecker):
    """HTTP client for the relcheck (and OpenFGA-compatible) JSON API.

    - ``create_store`` / ``write_authorization_model`` remember the returned ids,
      so the usual quick-start sequence needs no manual bookkeeping.
    - ``check`` and ``batch_check`` return awaitables when constructed with an
      ``httpx.AsyncClient``; everything else is synchronous.
    - Error documents (``{"code", "message"}``) are raised as the matching
      :mod:`relcheck.core.errors` class; other HTTP failures surface as
      ``httpx.HTTPStatusError``. Nothing is retried.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        client: "httpx.Client | None" = None,
        async_client: "httpx.AsyncClient | None" = None,
    ) -> None:
        self.cfg = config
        self.store_id = config.store_id
        self.authorization_model_id = config.authorization_model_id
        self._client = client
        self._aclient = async_client

        if self._client is None and self._aclient is None:
            self._client = httpx.Client(timeout=self.cfg.timeout_seconds)

    # ------------- helpers -------------

    def _headers(self) -> dict[str, str]:
        h = {"content-type": "application/json"}
        if self.cfg.api_token:
            h["authorization"] = f"Bearer {self.cfg.api_token}"
        return h

    def _url(self, suffix: str) -> str:
        return f"{self.cfg.api_url.rstrip('/')}/{suffix.lstrip('/')}"

    def _store_url(self, suffix: str) -> str:
        if not self.store_id:
            raise RuntimeError("RelCheckClient has no store_id; call create_store() first")
        return self._url(f"stores/{self.store_id}/{suffix.lstrip('/')}")

    @staticmethod
    def _decode(resp: httpx.Response) -> Dict[str, Any]:
        if resp.status_code >= 400:
            try:
                data = resp.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                err = error_from_code(data.get("code"), str(data.get("message") or ""))
                if err is not None:
                    raise err
            resp.raise_for_status()
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json() or {}

    def _request(self, method: str, url: str, body: Any = None) -> Dict[str, Any]:
        if self._client is None:
            raise RuntimeError("this operation needs a synchronous httpx.Client")
        logger.debug("relcheck client: %s %s", method, url)
        resp = self._client.request(method, url, json=body, headers=self._headers())
        return self._decode(resp)

    def _model_body(self, body: Dict[str, Any], model_id: str | None) -> Dict[str, Any]:
        mid = model_id or self.authorization_model_id
        if mid:
            body["authorization_model_id"] = mid
        return body

    # ------------- stores & models -------------

    def create_store(self, name: str) -> Dict[str, Any]:
        data = self._request("POST", self._url("stores"), {"name": name})
        self.store_id = data.get("id")
        return data

    def write_authorization_model(
        self, type_definitions: List[Dict[str, Any]], schema_version: str = "1.1"
    ) -> str:
        data = self._request(
            "POST",
            self._store_url("authorization-models"),
            {"schema_version": schema_version, "type_definitions": type_definitions},
        )
        self.authorization_model_id = data.get("authorization_model_id")
        return str(self.authorization_model_id)

    # ------------- tuples -------------

    def write(
        self,
        writes: Iterable[TupleKey | Mapping[str, str]] = (),
        deletes: Iterable[TupleKey | Mapping[str, str]] = (),
        *,
        authorization_model_id: str | None = None,
    ) -> None:
        body: Dict[str, Any] = {}
        w = [_key_dict(k) for k in writes]
        d = [_key_dict(k) for k in deletes]
        if w:
            body["writes"] = {"tuple_keys": w}
        if d:
            body["deletes"] = {"tuple_keys": d}
        self._request("POST", self._store_url("write"), self._model_body(body, authorization_model_id))

    def read(
        self,
        user: str | None = None,
        relation: str | None = None,
        object: str | None = None,
        *,
        page_size: int | None = None,
    ) -> List[TupleKey]:
        """Read every matching tuple, following continuation tokens."""
        key = {k: v for k, v in (("user", user), ("relation", relation), ("object", object)) if v}
        out: List[TupleKey] = []
        token = ""
        while True:
            body: Dict[str, Any] = {}
            if key:
                body["tuple_key"] = key
            if page_size is not None:
                body["page_size"] = page_size
            if token:
                body["continuation_token"] = token
            data = self._request("POST", self._store_url("read"), body)
            out.extend(TupleKey.from_dict(t["key"]) for t in data.get("tuples") or [])
            token = data.get("continuation_token") or ""
            if not token:
                return out

    # ------------- RelationshipChecker -------------

    def check(  # sync OR async depending on which client is provided
        self,
        user: str,
        relation: str,
        object: str,
        *,
        contextual_tuples: Iterable[TupleKey | Mapping[str, str]] = (),
        authorization_model_id: str | None = None,
    ):
        body: Dict[str, Any] = {"tuple_key": {"user": user, "relation": relation, "object": object}}
        ctx = [_key_dict(k) for k in contextual_tuples]
        if ctx:
            body["contextual_tuples"] = {"tuple_keys": ctx}
        self._model_body(body, authorization_model_id)
        url = self._store_url("check")

        if self._aclient is not None:
            aclient = self._aclient

            async def _run() -> bool:
                resp = await aclient.post(url, json=body, headers=self._headers())
                return bool(self._decode(resp).get("allowed", False))

            return _run()

        return bool(self._request("POST", url, body).get("allowed", False))

    def batch_check(
        self,
        triples: list[Triple],
        *,
        authorization_model_id: str | None = None,
    ):
        corr_ids: list[str] = []
        checks: list[dict[str, Any]] = []
        for u, r, o in triples:
            cid = str(uuid.uuid4())
            corr_ids.append(cid)
            checks.append(
                {"tuple_key": {"user": u, "relation": r, "object": o}, "correlation_id": cid}
            )
        body = self._model_body({"checks": checks}, authorization_model_id)
        url = self._store_url("batch-check")

        def _collect(data: Mapping[str, Any]) -> list[bool]:
            results: Mapping[str, Mapping[str, Any]] = data.get("results") or {}
            return [bool((results.get(cid) or {}).get("allowed", False)) for cid in corr_ids]

        if self._aclient is not None:
            aclient = self._aclient

            async def _run() -> list[bool]:
                resp = await aclient.post(url, json=body, headers=self._headers())
                return _collect(self._decode(resp))

            return _run()

        return _collect(self._request("POST", url, body))


def _key_dict(key: TupleKey | Mapping[str, str]) -> Dict[str, str]:
    if isinstance(key, TupleKey):
        return key.to_dict()
    return TupleKey.from_dict(key).to_dict()


__all__ = ["ClientConfig", "RelCheckClient"]
