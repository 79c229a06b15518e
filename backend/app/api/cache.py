from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional
from app.api.deps import get_category_service, admin_required
from app.services.categories import CategoryService

router = APIRouter(prefix="/api/admin/cache", tags=["admin-cache"])


class CacheHealthResponse(BaseModel):
    redis: str
    stats: dict


class CacheClearResponse(BaseModel):
    message: str
    deleted_keys: int


class CacheWarmupResponse(BaseModel):
    message: str
    available: bool
    elapsed_ms: Optional[float] = None


@router.get("/stats")
def get_cache_stats(
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    """Статистика Redis по ключам категорий"""
    return service.cache_stats()


@router.get("/health", response_model=CacheHealthResponse)
def cache_health(
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    connected = service.cache.ping()
    return CacheHealthResponse(
        redis="connected" if connected else "disconnected",
        stats=service.cache_stats(),
    )


@router.delete("/clear", response_model=CacheClearResponse)
def clear_cache(
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    deleted = service.clear_cache()
    return CacheClearResponse(message="Category cache cleared", deleted_keys=deleted)


@router.post("/warmup", response_model=CacheWarmupResponse)
def warm_up_cache(
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    result = service.warm_up_cache()
    return CacheWarmupResponse(message="Cache warmed up", **result)


@router.get("/test/{category_id}")
def test_cache(
    category_id: int,
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    """Два чтения категории подряд: промах и попадание"""
    return service.measure_cache(category_id)
