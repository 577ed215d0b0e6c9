import logging

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from relcheck import AuthorizationService, ServiceConfig
from relcheck.http import create_app
from relcheck.logging import DecisionLogger
from relcheck.metrics.prometheus import PrometheusMetrics

# Run: uvicorn deploy.compose.app.service:app --port 8080
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

service = AuthorizationService(
    config=ServiceConfig.from_env(),
    metrics=PrometheusMetrics(),
    logger_sink=DecisionLogger(as_json=True, sample_rate=0.1),
)
app = create_app(service)


async def ping(request: Request) -> Response:
    return JSONResponse({"pong": True})


async def metrics_endpoint(request: Request) -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.add_route("/ping", ping, methods=["GET"])
app.add_route("/metrics", metrics_endpoint, methods=["GET"])
