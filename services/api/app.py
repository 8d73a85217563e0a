from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import psycopg
from sqlalchemy.engine import make_url
from fastapi import FastAPI, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, Gauge, generate_latest

from modules.generation.metrics import HEALTH_HITS, REGISTRY
from modules.storage import s3

from .config import Settings, get_settings
from .deps import ServiceContainer, build_container
from .errors import install_error_handlers
from .routes import router as v1_router


logger = logging.getLogger(__name__)

_READY_GAUGE = Gauge("bs_api_ready", "Readiness status (1=ready, 0=not)", registry=REGISTRY)


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(level.upper())
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _normalize_conninfo(url: str) -> str:
    # Support SQLAlchemy-style URLs (e.g., postgresql+psycopg://) by normalizing to psycopg form.
    if "+" in url.split("://", 1)[0]:
        url = make_url(url).set(drivername="postgresql").render_as_string(hide_password=False)
    return url


def _check_db(url: str, timeout_s: int = 1) -> None:
    url = _normalize_conninfo(url)
    with psycopg.connect(url, connect_timeout=timeout_s) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()


def _check_s3(endpoint: str, access_key: str, secret_key: str, bucket: str, region: str | None) -> None:
    s3.head_bucket(
        s3.S3Config(endpoint=endpoint, access_key=access_key, secret_key=secret_key, bucket=bucket, region=region)
    )


def create_app(settings: Settings | None = None, *, container: ServiceContainer | None = None) -> FastAPI:
    settings = settings or (container.settings if container else get_settings())
    configure_logging(settings.log_level)
    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        container.close()

    app = FastAPI(title="Buyer Show API", version="0.1.0", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.container = container
    install_error_handlers(app, production=settings.is_production)

    @app.get("/healthz")
    def healthz() -> dict[str, Any]:
        HEALTH_HITS.inc()
        return {"status": "ok", "ts": int(time.time())}

    @app.get("/readyz")
    def readyz() -> Any:
        checks = settings.ready_check_set()
        try:
            if "db" in checks:
                if not settings.db_url:
                    raise RuntimeError("DB readiness requested but BS_DB_URL not set")
                _check_db(settings.db_url)

            if "s3" in checks:
                if not all([settings.s3_endpoint, settings.s3_access_key, settings.s3_secret_key, settings.s3_bucket]):
                    raise RuntimeError("S3 readiness requested but one or more BS_S3_* settings are missing")
                _check_s3(
                    endpoint=str(settings.s3_endpoint),
                    access_key=str(settings.s3_access_key),
                    secret_key=str(settings.s3_secret_key),
                    bucket=str(settings.s3_bucket),
                    region=settings.s3_region,
                )

            _READY_GAUGE.set(1)
            return {"status": "ready"}
        except Exception as exc:  # noqa: BLE001
            _READY_GAUGE.set(0)
            logger.warning("readiness check failed: %s", exc)
            return Response(content=f"not ready: {exc}", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    if settings.metrics_enabled:

        @app.get("/metrics")
        def metrics() -> Response:
            output = generate_latest(REGISTRY)
            return Response(output, media_type=CONTENT_TYPE_LATEST)

    app.include_router(v1_router)

    return app
