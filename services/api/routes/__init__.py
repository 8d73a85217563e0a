from fastapi import APIRouter
from .generation import router as generation_router
from .upload import router as upload_router
from .history import router as history_router
from .products import router as products_router

router = APIRouter(prefix="/v1")

@router.get("/", tags=["meta"])
def root() -> dict[str, str]:
    return {"service": "buyershow", "version": "v1"}

router.include_router(generation_router)
router.include_router(upload_router)
router.include_router(history_router)
router.include_router(products_router)
