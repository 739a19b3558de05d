from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware

from api.routes_volume import router as volume_router
from api.state import RuntimeState
from config.load_config import AppConfig
from observability.logging import setup_logging
from observability.metrics import metrics_middleware, metrics_response, setup_metrics


def create_app(config: AppConfig | None = None) -> FastAPI:
    runtime = RuntimeState.build(config)
    obs = runtime.config.observability
    setup_logging(level=obs.log_level, json_logs=obs.json_logs)

    app = FastAPI(title="tsdf-fusion", version="1.0.0")
    app.add_middleware(GZipMiddleware, minimum_size=1000, compresslevel=5)
    app.state.runtime = runtime

    metrics_enabled = bool(obs.metrics_enabled)
    if metrics_enabled:
        setup_metrics()

    @app.middleware("http")
    async def _metrics(request: Request, call_next):
        if not metrics_enabled:
            return await call_next(request)
        return await metrics_middleware(request, call_next)

    app.include_router(volume_router)

    @app.get("/metrics")
    def metrics():
        if not metrics_enabled:
            return {"status": "disabled"}
        return metrics_response()

    @app.get("/health")
    def health() -> dict[str, object]:
        volume = app.state.runtime.volume
        return {
            "status": "ok",
            "version": app.version,
            "volume": None if volume is None else {"dims": [int(d) for d in volume.dims]},
        }

    return app


if __name__ == "__main__":
    import uvicorn

    _app = create_app()
    _srv = _app.state.runtime.config.server
    uvicorn.run(_app, host=_srv.host, port=int(_srv.port))
