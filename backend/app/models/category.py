from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Index
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime

if TYPE_CHECKING:
    from .course_category import CourseCategory


class Category(SQLModel, table=True):
    __tablename__ = "categories"
    __table_args__ = (
        Index("categories_parent_order_idx", "parent_id", "display_order"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, max_length=100)
    slug: str = Field(unique=True, index=True)
    description: Optional[str] = None

    # Дерево хранится плоско: только ссылка на родителя
    parent_id: Optional[int] = Field(default=None, foreign_key="categories.id", index=True)
    display_order: int = Field(default=0)
    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    course_links: List["CourseCategory"] = Relationship(back_populates="category")
