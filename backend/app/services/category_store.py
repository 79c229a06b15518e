"""
Хранилище дерева категорий и связей курс <-> категория.

Только работа со строками, без бизнес-правил. Ни одна функция не делает
commit: транзакцией владеет вызывающий (CategoryService).
"""
from datetime import datetime
from typing import Optional, List, Set, Tuple, Union
from sqlmodel import Session, select, func, col
from app.core.exceptions import NotFoundError, ConflictError
from app.models.category import Category
from app.models.course_category import CourseCategory

# Фильтр "любой родитель" для списка (None означает корневые)
ANY_PARENT = "any"

ParentFilter = Union[int, None, str]


def get(db: Session, category_id: int) -> Optional[Category]:
    return db.get(Category, category_id)


def find_by_slug(db: Session, slug: str) -> Optional[Category]:
    return db.exec(select(Category).where(Category.slug == slug)).first()


def exists_by_name(db: Session, name: str) -> bool:
    return db.exec(select(Category.id).where(Category.name == name)).first() is not None


def all_slugs(db: Session, excluding_id: Optional[int] = None) -> Set[str]:
    stmt = select(Category.slug)
    if excluding_id is not None:
        stmt = stmt.where(Category.id != excluding_id)
    return set(db.exec(stmt).all())


def children_of(db: Session, parent_id: Optional[int], for_update: bool = False) -> List[Category]:
    """Прямые потомки по display_order (parent_id=None - корневые)"""
    stmt = (
        select(Category)
        .where(Category.parent_id == parent_id)
        .order_by(Category.display_order, Category.id)
    )
    if for_update:
        # Писатели одного набора соседей сериализуются на уровне БД
        stmt = stmt.with_for_update()
    return list(db.exec(stmt).all())


def lock_siblings(db: Session, parent_id: Optional[int]) -> List[Category]:
    """Блокировка набора соседей; у некорневых - ещё и строки родителя"""
    if parent_id is not None:
        # Пустой набор детей FOR UPDATE не блокирует
        db.get(Category, parent_id, with_for_update=True)
    return children_of(db, parent_id, for_update=True)


def siblings_of(db: Session, parent_id: Optional[int], excluding: Optional[int] = None) -> List[Category]:
    return [c for c in children_of(db, parent_id) if c.id != excluding]


def next_display_order(db: Session, parent_id: Optional[int]) -> int:
    """max(display_order) + 1 среди детей родителя, 0 если детей нет"""
    current_max = db.exec(
        select(func.max(Category.display_order)).where(Category.parent_id == parent_id)
    ).one()
    return 0 if current_max is None else current_max + 1


def create(db: Session, **fields) -> Category:
    category = Category(**fields)
    db.add(category)
    db.flush()
    db.refresh(category)
    return category


def update_fields(db: Session, category_id: int, **partial) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise NotFoundError()

    for key, value in partial.items():
        setattr(category, key, value)
    category.updated_at = datetime.utcnow()

    db.add(category)
    db.flush()
    return category


def delete(db: Session, category_id: int) -> None:
    category = db.get(Category, category_id)
    if not category:
        raise NotFoundError()
    db.delete(category)
    db.flush()


def shift_display_order_down(db: Session, parent_id: Optional[int], threshold_order: int) -> List[Category]:
    """Сдвиг на -1 всех детей с display_order > threshold (закрывает дырку)"""
    shifted = []
    for child in children_of(db, parent_id, for_update=True):
        if child.display_order > threshold_order:
            child.display_order -= 1
            child.updated_at = datetime.utcnow()
            db.add(child)
            shifted.append(child)
    db.flush()
    return shifted


def reindex_siblings(db: Session, parent_id: Optional[int]) -> List[Category]:
    """
    Перенумерация детей родителя в 0..n-1 с сохранением порядка.
    Возвращает категории, у которых изменился display_order.
    """
    changed = []
    for position, child in enumerate(children_of(db, parent_id, for_update=True)):
        if child.display_order != position:
            child.display_order = position
            child.updated_at = datetime.utcnow()
            db.add(child)
            changed.append(child)
    db.flush()
    return changed


def list_page(
    db: Session,
    offset: int,
    limit: int,
    parent_id: ParentFilter = ANY_PARENT,
    is_active: Optional[bool] = None,
) -> Tuple[List[Category], int]:
    conditions = []
    if parent_id != ANY_PARENT:
        conditions.append(Category.parent_id == parent_id)
    if is_active is not None:
        conditions.append(Category.is_active == is_active)

    total = db.exec(select(func.count(Category.id)).where(*conditions)).one()
    rows = db.exec(
        select(Category)
        .where(*conditions)
        .order_by(Category.parent_id, Category.display_order, Category.id)
        .offset(offset)
        .limit(limit)
    ).all()
    return list(rows), total


def list_all(db: Session, active_only: bool = False) -> List[Category]:
    stmt = select(Category)
    if active_only:
        stmt = stmt.where(Category.is_active == True)
    return list(db.exec(stmt.order_by(Category.display_order, Category.id)).all())


def course_counts(db: Session) -> List[Tuple[Category, int]]:
    """Все категории с количеством привязанных курсов"""
    stmt = (
        select(Category, func.count(CourseCategory.course_id))
        .outerjoin(CourseCategory, CourseCategory.category_id == Category.id)
        .group_by(Category.id)
        .order_by(Category.parent_id, Category.display_order, Category.id)
    )
    return [(category, count) for category, count in db.exec(stmt).all()]


def descendant_ids(db: Session, category_id: int) -> List[int]:
    """Все потомки категории (обход в ширину, без рекурсии)"""
    found = []
    visited = {category_id}
    frontier = [category_id]
    while frontier:
        rows = db.exec(select(Category.id).where(col(Category.parent_id).in_(frontier))).all()
        frontier = []
        for child_id in rows:
            if child_id in visited:
                continue
            visited.add(child_id)
            found.append(child_id)
            frontier.append(child_id)
    return found


# === Связи курс <-> категория ===

def get_link(db: Session, course_id: int, category_id: int) -> Optional[CourseCategory]:
    return db.get(CourseCategory, (course_id, category_id))


def link_course_category(db: Session, course_id: int, category_id: int) -> CourseCategory:
    if get_link(db, course_id, category_id):
        raise ConflictError()
    link = CourseCategory(course_id=course_id, category_id=category_id)
    db.add(link)
    db.flush()
    return link


def unlink_course_category(db: Session, course_id: int, category_id: int) -> bool:
    link = get_link(db, course_id, category_id)
    if not link:
        return False
    db.delete(link)
    db.flush()
    return True


def unlink_all_for_category(db: Session, category_id: int) -> List[int]:
    """Удаляет все связи категории, возвращает затронутые course_id"""
    links = db.exec(select(CourseCategory).where(CourseCategory.category_id == category_id)).all()
    course_ids = [link.course_id for link in links]
    for link in links:
        db.delete(link)
    db.flush()
    return course_ids


def category_ids_for_course(db: Session, course_id: int) -> List[int]:
    return list(db.exec(
        select(CourseCategory.category_id)
        .where(CourseCategory.course_id == course_id)
        .order_by(CourseCategory.category_id)
    ).all())


def categories_for_course(db: Session, course_id: int) -> List[Category]:
    return list(db.exec(
        select(Category)
        .join(CourseCategory, CourseCategory.category_id == Category.id)
        .where(CourseCategory.course_id == course_id)
        .order_by(Category.parent_id, Category.display_order, Category.id)
    ).all())


def course_ids_for_category(
    db: Session,
    category_ids: List[int],
    offset: int = 0,
    limit: Optional[int] = None,
) -> Tuple[List[int], int]:
    """Курсы (без дублей) в любой из категорий, с пагинацией"""
    condition = col(CourseCategory.category_id).in_(category_ids)
    total = db.exec(
        select(func.count(func.distinct(CourseCategory.course_id))).where(condition)
    ).one()

    stmt = (
        select(CourseCategory.course_id)
        .where(condition)
        .distinct()
        .order_by(CourseCategory.course_id)
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.exec(stmt).all()), total
