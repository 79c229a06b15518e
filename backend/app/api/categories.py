from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from app.api.deps import get_category_service
from app.core.exceptions import InvalidInputError
from app.schemas.category import (
    CategoryResponse,
    CategoryCountResponse,
    CategoryTreeNode,
    CategoryListResponse,
    CategoryCoursesResponse,
)
from app.services.categories import CategoryService
from app.services.category_store import ANY_PARENT

router = APIRouter(prefix="/api/categories", tags=["categories"])


def parse_parent_filter(parent_id: Optional[str]):
    """None -> любой родитель, "null" -> корневые, иначе id"""
    if parent_id is None:
        return ANY_PARENT
    if parent_id.strip().lower() in ("", "null", "root"):
        return None
    try:
        return int(parent_id)
    except ValueError:
        raise InvalidInputError("parent_id must be an integer or 'null'")


@router.get("/", response_model=CategoryListResponse)
def list_categories(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    parent_id: Optional[str] = Query(None, description="Category id or 'null' for root categories"),
    is_active: Optional[bool] = Query(None),
    service: CategoryService = Depends(get_category_service),
):
    """Список категорий с пагинацией"""
    return service.list_categories(
        page=page,
        limit=limit,
        parent_id=parse_parent_filter(parent_id),
        is_active=is_active,
    )


@router.get("/hierarchy", response_model=List[CategoryTreeNode])
def get_hierarchy(
    active_only: bool = Query(False),
    service: CategoryService = Depends(get_category_service),
):
    """Дерево категорий"""
    return service.get_hierarchy(active_only=active_only)


@router.get("/counts", response_model=List[CategoryCountResponse])
def get_category_counts(service: CategoryService = Depends(get_category_service)):
    """Количество курсов в каждой категории"""
    return service.get_category_counts()


@router.get("/course/{course_id}", response_model=List[CategoryResponse])
def get_categories_for_course(course_id: int, service: CategoryService = Depends(get_category_service)):
    return service.get_categories_for_course(course_id)


@router.get("/slug/{slug}", response_model=CategoryResponse)
def get_category_by_slug(slug: str, service: CategoryService = Depends(get_category_service)):
    return service.get_by_slug(slug)


@router.get("/{category_id}", response_model=CategoryResponse)
def get_category(category_id: int, service: CategoryService = Depends(get_category_service)):
    return service.get_by_id(category_id)


@router.get("/{category_id}/courses", response_model=CategoryCoursesResponse)
def get_courses_for_category(
    category_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    include_subcategories: bool = Query(False),
    service: CategoryService = Depends(get_category_service),
):
    """Курсы категории (опционально вместе с подкатегориями)"""
    return service.get_courses_for_category(
        category_id,
        page=page,
        limit=limit,
        include_subcategories=include_subcategories,
    )
