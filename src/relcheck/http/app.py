from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..core.errors import (
    AlreadyExistsError,
    CheckCancelledError,
    NotFoundError,
    RelCheckError,
    ValidationError,
)
from ..core.model import TupleKey
from ..core.schema import dump_model, parse_model
from ..core.service import AuthorizationService

logger = logging.getLogger("relcheck.http")

_STATUS: Dict[type, int] = {
    ValidationError: 400,
    NotFoundError: 404,
    AlreadyExistsError: 409,
    CheckCancelledError: 409,
}


def status_for(err: RelCheckError) -> int:
    for cls in type(err).__mro__:
        if cls in _STATUS:
            return _STATUS[cls]
    return 500


async def _error_handler(request: Request, exc: RelCheckError) -> Response:
    status = status_for(exc)
    if status >= 500:
        logger.error("relcheck: %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(exc.to_dict(), status_code=status)


# ------------- body helpers -------------


async def _body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"request body is not valid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def _keys(section: Any) -> List[TupleKey]:
    """Accept ``{"tuple_keys": [...]}``, ``[{"tuple_key": {...}}, ...]`` or a plain list of keys."""
    if section is None:
        return []
    if isinstance(section, dict):
        section = section.get("tuple_keys") or []
    if not isinstance(section, list):
        raise ValidationError("tuple keys must be a list")
    out: List[TupleKey] = []
    for item in section:
        if isinstance(item, dict) and isinstance(item.get("tuple_key"), dict):
            item = item["tuple_key"]
        if not isinstance(item, dict):
            raise ValidationError(f"invalid tuple key {item!r}")
        out.append(TupleKey.from_dict(item))
    return out


def _check_key(body: Dict[str, Any]) -> TupleKey:
    raw = body.get("tuple_key")
    if raw is None:
        raw = {k: body.get(k) for k in ("user", "relation", "object") if k in body}
    if not isinstance(raw, dict):
        raise ValidationError("'tuple_key' must be an object")
    return TupleKey.from_dict(raw)


def _model_id(body: Dict[str, Any]) -> Optional[str]:
    return body.get("authorization_model_id") or None


def _object_ref(value: Any) -> str:
    if isinstance(value, dict):
        return f"{value.get('type')}:{value.get('id')}"
    if isinstance(value, str):
        return value
    raise ValidationError("'object' must be 'type:id' or {'type', 'id'}")


# ------------- application -------------


def create_app(service: Optional[AuthorizationService] = None, *, debug: bool = False) -> Starlette:
    """Build the Starlette application serving *service* over HTTP/JSON."""
    svc = service or AuthorizationService()

    async def create_store(request: Request) -> Response:
        body = await _body(request)
        store = await run_in_threadpool(svc.create_store, body.get("name") or "")
        return JSONResponse(store.to_dict(), status_code=201)

    async def list_stores(request: Request) -> Response:
        stores = await run_in_threadpool(svc.list_stores)
        return JSONResponse({"stores": [s.to_dict() for s in stores]})

    async def get_store(request: Request) -> Response:
        store = await run_in_threadpool(svc.get_store, request.path_params["store_id"])
        return JSONResponse(store.to_dict())

    async def delete_store(request: Request) -> Response:
        await run_in_threadpool(svc.delete_store, request.path_params["store_id"])
        return Response(status_code=204)

    async def write_model(request: Request) -> Response:
        body = await _body(request)
        model = parse_model(body)
        model_id = await run_in_threadpool(svc.write_model, request.path_params["store_id"], model)
        return JSONResponse({"authorization_model_id": model_id}, status_code=201)

    async def list_models(request: Request) -> Response:
        models = await run_in_threadpool(svc.list_models, request.path_params["store_id"])
        return JSONResponse({"authorization_models": [dump_model(m) for m in models]})

    async def get_model(request: Request) -> Response:
        model = await run_in_threadpool(
            svc.get_model, request.path_params["store_id"], request.path_params["model_id"]
        )
        return JSONResponse({"authorization_model": dump_model(model)})

    async def write(request: Request) -> Response:
        body = await _body(request)
        await run_in_threadpool(
            lambda: svc.write_tuples(
                request.path_params["store_id"],
                _keys(body.get("writes")),
                _keys(body.get("deletes")),
                model_id=_model_id(body),
            )
        )
        return JSONResponse({})

    async def check(request: Request) -> Response:
        body = await _body(request)
        key = _check_key(body)
        result = await run_in_threadpool(
            lambda: svc.check(
                request.path_params["store_id"],
                _model_id(body),
                key.user,
                key.relation,
                key.object,
                contextual_tuples=_keys(body.get("contextual_tuples")),
            )
        )
        return JSONResponse(result.to_dict())

    async def batch_check(request: Request) -> Response:
        body = await _body(request)
        checks = body.get("checks")
        if not isinstance(checks, list) or not checks:
            raise ValidationError("'checks' must be a non-empty list")
        store_id = request.path_params["store_id"]
        model_id = _model_id(body)

        def run() -> Dict[str, Any]:
            results: Dict[str, Any] = {}
            for item in checks:
                if not isinstance(item, dict) or not item.get("correlation_id"):
                    raise ValidationError("every check needs a 'correlation_id'")
                cid = str(item["correlation_id"])
                if cid in results:
                    raise ValidationError(f"duplicate correlation_id {cid!r}")
                try:
                    key = _check_key(item)
                    res = svc.check(store_id, model_id, key.user, key.relation, key.object)
                    results[cid] = res.to_dict()
                except (ValidationError, NotFoundError) as e:
                    results[cid] = {"allowed": False, "error": e.to_dict()}
            return results

        return JSONResponse({"results": await run_in_threadpool(run)})

    async def read(request: Request) -> Response:
        body = await _body(request)
        page, token = await run_in_threadpool(
            lambda: svc.read_tuples(
                request.path_params["store_id"],
                body.get("tuple_key"),
                page_size=body.get("page_size"),
                continuation_token=body.get("continuation_token"),
            )
        )
        return JSONResponse({"tuples": [t.to_dict() for t in page], "continuation_token": token})

    async def read_changes(request: Request) -> Response:
        changes = await run_in_threadpool(
            svc.read_changes, request.path_params["store_id"], request.query_params.get("type")
        )
        return JSONResponse({"changes": [c.to_dict() for c in changes]})

    async def list_objects(request: Request) -> Response:
        body = await _body(request)
        for field in ("user", "relation", "type"):
            if not body.get(field):
                raise ValidationError(f"'{field}' is required")
        objects = await run_in_threadpool(
            lambda: svc.list_objects(
                request.path_params["store_id"],
                body["user"],
                body["relation"],
                body["type"],
                model_id=_model_id(body),
            )
        )
        return JSONResponse({"objects": objects})

    async def list_users(request: Request) -> Response:
        body = await _body(request)
        user_type = body.get("user_type")
        filters = body.get("user_filters")
        if not user_type and isinstance(filters, list) and filters and isinstance(filters[0], dict):
            user_type = filters[0].get("type")
        if not body.get("relation") or not user_type or "object" not in body:
            raise ValidationError("'object', 'relation' and 'user_type' are required")
        users = await run_in_threadpool(
            lambda: svc.list_users(
                request.path_params["store_id"],
                _object_ref(body["object"]),
                body["relation"],
                user_type,
                model_id=_model_id(body),
            )
        )
        return JSONResponse({"users": users})

    routes = [
        Route("/stores", create_store, methods=["POST"]),
        Route("/stores", list_stores, methods=["GET"]),
        Route("/stores/{store_id}", get_store, methods=["GET"]),
        Route("/stores/{store_id}", delete_store, methods=["DELETE"]),
        Route("/stores/{store_id}/authorization-models", write_model, methods=["POST"]),
        Route("/stores/{store_id}/authorization-models", list_models, methods=["GET"]),
        Route("/stores/{store_id}/authorization-models/{model_id}", get_model, methods=["GET"]),
        Route("/stores/{store_id}/write", write, methods=["POST"]),
        Route("/stores/{store_id}/check", check, methods=["POST"]),
        Route("/stores/{store_id}/batch-check", batch_check, methods=["POST"]),
        Route("/stores/{store_id}/read", read, methods=["POST"]),
        Route("/stores/{store_id}/changes", read_changes, methods=["GET"]),
        Route("/stores/{store_id}/list-objects", list_objects, methods=["POST"]),
        Route("/stores/{store_id}/list-users", list_users, methods=["POST"]),
    ]
    app = Starlette(debug=debug, routes=routes, exception_handlers={RelCheckError: _error_handler})
    app.state.service = svc
    return app


__all__ = ["create_app", "status_for"]
