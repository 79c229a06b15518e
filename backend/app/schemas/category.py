from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime


def _blank_parent_to_none(value):
    # Формы присылают parent_id="" для корневой категории
    if isinstance(value, str) and value.strip() in ("", "null"):
        return None
    return value


class CategoryResponse(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[int] = None
    display_order: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CategoryCountResponse(CategoryResponse):
    course_count: int


class CategoryTreeNode(BaseModel):
    """Узел дерева категорий"""
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[int] = None
    display_order: int
    is_active: bool
    children: List["CategoryTreeNode"] = []


class CategoryListResponse(BaseModel):
    """Пагинированный список"""
    items: List[CategoryResponse]
    total: int
    page: int
    limit: int
    pages: int


class CategoryCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: bool = True

    @field_validator("parent_id", mode="before")
    @classmethod
    def normalize_parent(cls, value):
        return _blank_parent_to_none(value)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("parent_id", mode="before")
    @classmethod
    def normalize_parent(cls, value):
        return _blank_parent_to_none(value)


class CourseCategoriesRequest(BaseModel):
    category_ids: List[int] = []


class CategoryCoursesResponse(BaseModel):
    course_ids: List[int]
    total: int
    page: int
    limit: int
    pages: int
