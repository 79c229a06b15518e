from .category import Category
from .course_category import CourseCategory

__all__ = [
    "Category",
    "CourseCategory",
]
