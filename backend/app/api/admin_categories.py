from fastapi import APIRouter, Depends, status
from typing import List
from app.api.deps import get_category_service, admin_required
from app.schemas.category import (
    CategoryResponse,
    CategoryCreate,
    CategoryUpdate,
    CourseCategoriesRequest,
)
from app.services.categories import CategoryService

router = APIRouter(prefix="/api/admin/categories", tags=["admin-categories"])


@router.post("/", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
def create_category(
    data: CategoryCreate,
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    return service.create(
        name=data.name,
        description=data.description,
        parent_id=data.parent_id,
        is_active=data.is_active,
    )


@router.post("/defaults", response_model=List[CategoryResponse])
def add_default_categories(
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    """Стартовый набор категорий"""
    return service.add_default_categories()


@router.patch("/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: int,
    data: CategoryUpdate,
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    # Только переданные поля: parent_id=null означает перенос в корень
    return service.update(category_id, data.model_dump(exclude_unset=True))


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    service.delete(category_id)
    return {"message": "Category deleted"}


# === Связи курс <-> категория ===

@router.post("/course/{course_id}")
def associate_course(
    course_id: int,
    data: CourseCategoriesRequest,
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    linked = service.associate(course_id, data.category_ids)
    return {"message": "Course associated with categories", "linked_category_ids": linked}


@router.delete("/course/{course_id}")
def disassociate_course(
    course_id: int,
    data: CourseCategoriesRequest,
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    removed = service.disassociate(course_id, data.category_ids)
    return {"message": "Course disassociated from categories", "removed_category_ids": removed}


@router.put("/course/{course_id}")
def replace_course_categories(
    course_id: int,
    data: CourseCategoriesRequest,
    service: CategoryService = Depends(get_category_service),
    _: dict = Depends(admin_required)
):
    category_ids = service.replace_associations(course_id, data.category_ids)
    return {"message": "Course categories updated", "category_ids": category_ids}
