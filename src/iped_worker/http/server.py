"""HTTP adapter: health, readiness, metrics and job submission.

    GET  /healthz    liveness
    GET  /readiness  503 while a job holds the lock
    GET  /metrics    JSON snapshot of worker metrics
    POST /start      submit one job (only when listening for jobs)
"""

from __future__ import annotations

import json
import logging
import threading

import uvicorn
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from iped_worker import __version__
from iped_worker.execution.dispatch import DEFAULT_START_WAIT_SECONDS, Dispatcher
from iped_worker.execution.metrics import WorkerMetrics
from iped_worker.execution.models import Job

logger = logging.getLogger(__name__)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST",
    "Access-Control-Allow-Headers": "Origin, X-Requested-With, Content-Type, Accept",
}


def create_app(
    dispatcher: Dispatcher,
    metrics: WorkerMetrics,
    *,
    listen: bool = True,
    start_wait_seconds: float = DEFAULT_START_WAIT_SECONDS,
) -> FastAPI:
    """Build the FastAPI application around one dispatcher."""

    app = FastAPI(title="IPED worker", version=__version__)
    context = dispatcher.coordinator.context

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz() -> str:
        return "ok"

    @app.get("/readiness", response_class=PlainTextResponse)
    async def readiness() -> PlainTextResponse:
        if context.busy:
            return PlainTextResponse("not ready", status_code=503)
        return PlainTextResponse("ok")

    @app.get("/metrics")
    async def get_metrics() -> JSONResponse:
        return JSONResponse(content=metrics.snapshot())

    if not listen:
        return app

    @app.options("/start")
    async def start_preflight() -> Response:
        return Response(headers=_CORS_HEADERS)

    @app.post("/start")
    def start(request_body: bytes = Depends(_read_body)) -> Response:  # noqa: B008
        # Sync handler: runs in the threadpool while waiting for early failure.
        cors = {"Access-Control-Allow-Origin": "*"}
        try:
            job = Job.from_payload(json.loads(request_body or b"null"))
        except (ValueError, TypeError) as error:
            return PlainTextResponse(
                f"could not parse JSON: {error}",
                status_code=400,
                headers=cors,
            )
        logger.info("Received job for %s", job.evidence_path or "<missing evidence>")
        error = dispatcher.submit(job, wait_seconds=start_wait_seconds)
        if error is not None:
            return PlainTextResponse(f"error : {error}", status_code=400, headers=cors)
        return JSONResponse(content={"status": "started"}, headers=cors)

    return app


async def _read_body(request: Request) -> bytes:
    return await request.body()


def serve(app: FastAPI, *, host: str, port: int) -> None:
    """Run the adapter in the foreground."""

    logger.info("Listening on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_level="info")


def serve_in_background(app: FastAPI, *, host: str, port: int) -> threading.Thread:
    """Run the adapter on a daemon thread (health and metrics during batch work)."""

    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    thread = threading.Thread(target=server.run, daemon=True, name="http-adapter")
    thread.start()
    logger.info("Listening on %s:%d", host, port)
    return thread
