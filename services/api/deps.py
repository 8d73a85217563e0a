"""Service wiring: one container per app, built at startup and read from ``app.state``."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from fastapi import Depends, Request

from modules.errors import Unauthorized
from modules.generation.client import ClientConfig, GeminiImageClient, ImageGenerator
from modules.generation.orchestrator import GenerationOrchestrator
from modules.persistence.db import Database
from modules.persistence.store import GenerationStore, build_store
from modules.storage.s3 import S3Config
from modules.storage.uploads import LocalUploadService, S3UploadService, UploadService

from .config import Settings


logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


class IdentityProvider(Protocol):
    def user_id(self, request: Request) -> str | None: ...


class HeaderIdentityProvider:
    def __init__(self, header: str = USER_HEADER) -> None:
        self.header = header

    def user_id(self, request: Request) -> str | None:
        value = (request.headers.get(self.header) or "").strip()
        return value or None


@dataclass
class ServiceContainer:
    settings: Settings
    store: GenerationStore
    uploads: UploadService
    client: ImageGenerator
    orchestrator: GenerationOrchestrator
    identity: IdentityProvider
    db: Database | None = None

    def close(self) -> None:
        if self.db is not None:
            self.db.dispose()


def build_uploads(settings: Settings) -> UploadService:
    if settings.storage_backend == "s3":
        if not all([settings.s3_endpoint, settings.s3_access_key, settings.s3_secret_key, settings.s3_bucket]):
            raise RuntimeError("s3 upload backend selected but one or more BS_S3_* settings are missing")
        cfg = S3Config(
            endpoint=str(settings.s3_endpoint),
            access_key=str(settings.s3_access_key),
            secret_key=str(settings.s3_secret_key),
            bucket=str(settings.s3_bucket),
            region=settings.s3_region,
            public_endpoint=settings.s3_public_endpoint,
        )
        return S3UploadService(cfg, max_size=settings.upload_max_size)
    return LocalUploadService(settings.upload_dir, max_size=settings.upload_max_size)


def build_client(settings: Settings) -> GeminiImageClient:
    if not settings.gemini_api_key:
        logger.warning("no image provider API key configured; generation calls will fail")
    return GeminiImageClient(
        ClientConfig(
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            model=settings.gemini_model,
            proxy_url=settings.proxy_url,
            max_retries=settings.max_retries,
            retry_base_delay_s=settings.retry_base_delay_s,
            timeout_s=settings.request_timeout_s,
            default_temperature=settings.default_temperature,
            default_max_output_tokens=settings.max_output_tokens,
        )
    )


def build_container(
    settings: Settings,
    *,
    store: GenerationStore | None = None,
    uploads: UploadService | None = None,
    client: ImageGenerator | None = None,
    identity: IdentityProvider | None = None,
) -> ServiceContainer:
    db: Database | None = None
    if store is None:
        if settings.store_backend == "sql":
            db = Database(settings.db_url)
        store = build_store(settings.store_backend, db)
    uploads = uploads or build_uploads(settings)
    client = client or build_client(settings)
    orchestrator = GenerationOrchestrator(
        store,
        uploads,
        client,
        default_temperature=settings.default_temperature,
        max_output_tokens=settings.max_output_tokens,
    )
    logger.info(
        "services ready store=%s uploads=%s model=%s",
        type(store).__name__,
        type(uploads).__name__,
        client.model,
    )
    return ServiceContainer(
        settings=settings,
        store=store,
        uploads=uploads,
        client=client,
        orchestrator=orchestrator,
        identity=identity or HeaderIdentityProvider(),
        db=db,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def current_user(request: Request, container: ServiceContainer = Depends(get_container)) -> str:
    user_id = container.identity.user_id(request)
    if not user_id:
        raise Unauthorized("Authentication required", details={"header": USER_HEADER})
    return user_id
