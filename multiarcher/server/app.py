from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect

from multiarcher import __version__
from multiarcher.admission.engine import AdmissionEngine
from multiarcher.cache.store import build_cache
from multiarcher.common.deadline import Deadline
from multiarcher.config.settings import Settings
from multiarcher.config.tolerations import load_platform_toleration_config
from multiarcher.errors import AdmissionError
from multiarcher.kube.client import KubernetesClientHandle
from multiarcher.kube.namespaces import NamespaceFilter

logger = logging.getLogger(__name__)


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache()
def get_engine() -> AdmissionEngine:
    settings = get_settings()
    return AdmissionEngine(
        cache=build_cache(settings),
        config=load_platform_toleration_config(),
        kube=KubernetesClientHandle(),
        namespace_filter=NamespaceFilter.from_env(),
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="k8s-multiarcher",
        description="Adds platform tolerations to workloads whose images support them.",
        version=__version__,
    )

    @app.post("/mutate")
    async def mutate(
        request: Request,
        engine: AdmissionEngine = Depends(get_engine),
        settings: Settings = Depends(get_settings),
    ) -> JSONResponse:
        try:
            body = await request.body()
        except ClientDisconnect:
            logger.error("failed to read request body")
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "invalid request body"})

        deadline = Deadline.after(settings.request_timeout_seconds)
        try:
            review = await run_in_threadpool(engine.process, deadline, body)
        except AdmissionError as exc:
            logger.error("failed to process admission review: %s", exc)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "internal server error"},
            )
        return JSONResponse(content=review.to_wire())

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"status": "ok"}

    @app.get("/livez")
    def livez() -> Dict[str, Any]:
        return {"status": "ok"}

    return app


app = create_app()


__all__ = ["app", "create_app", "get_engine", "get_settings"]
