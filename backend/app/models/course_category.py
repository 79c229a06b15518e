from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .category import Category


class CourseCategory(SQLModel, table=True):
    __tablename__ = "course_categories"

    # Курсы живут в другом сервисе, храним только идентификатор
    course_id: int = Field(primary_key=True, index=True)
    category_id: int = Field(foreign_key="categories.id", primary_key=True, index=True)

    # Relationships
    category: Optional["Category"] = Relationship(back_populates="course_links")
