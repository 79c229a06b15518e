from .category import (
    CategoryResponse,
    CategoryCountResponse,
    CategoryTreeNode,
    CategoryListResponse,
    CategoryCreate,
    CategoryUpdate,
    CourseCategoriesRequest,
    CategoryCoursesResponse,
)

__all__ = [
    "CategoryResponse", "CategoryCountResponse", "CategoryTreeNode", "CategoryListResponse",
    "CategoryCreate", "CategoryUpdate",
    "CourseCategoriesRequest", "CategoryCoursesResponse",
]
