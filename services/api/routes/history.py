from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from modules.errors import NotFound
from modules.persistence.records import GenerationStatus
from services.api.deps import ServiceContainer, current_user, get_container
from services.api.schemas.common import ErrorResponse
from services.api.schemas.history import DeleteResult, GenerationDetail, HistoryPage, HistoryStats


router = APIRouter(prefix="/history", tags=["history"])


@router.get("", response_model=HistoryPage, responses={401: {"model": ErrorResponse}})
def list_history(
    status: GenerationStatus | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> HistoryPage:
    rows, total = container.store.list_generations(
        user_id=user_id, status=status.value if status else None, limit=limit, offset=offset
    )
    return HistoryPage(
        generations=[GenerationDetail.from_record(r) for r in rows],
        total=total,
        has_more=offset + limit < total,
    )


@router.get("/stats", response_model=HistoryStats, responses={401: {"model": ErrorResponse}})
def get_stats(
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> HistoryStats:
    return HistoryStats.from_stats(container.store.generation_stats(user_id=user_id))


@router.get("/{generation_id}", response_model=GenerationDetail, responses={404: {"model": ErrorResponse}})
def get_by_id(
    generation_id: str,
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> GenerationDetail:
    record = container.store.get_generation(generation_id, user_id=user_id)
    if record is None:
        raise NotFound("Generation record not found", details={"generationId": generation_id})
    return GenerationDetail.from_record(record)


@router.delete("/{generation_id}", response_model=DeleteResult, responses={404: {"model": ErrorResponse}})
def delete_generation(
    generation_id: str,
    user_id: str = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
) -> DeleteResult:
    if not container.store.delete_generation(generation_id, user_id=user_id):
        raise NotFound("Generation record not found", details={"generationId": generation_id})
    return DeleteResult(success=True, message="Generation record deleted")
