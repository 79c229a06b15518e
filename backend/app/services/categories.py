"""
Сервис категорий: дерево, связи с курсами, cache-aside.

Все изменения выполняются в одной транзакции сессии; кэш инвалидируется
строго после commit, чтобы параллельный читатель не вернул в кэш
данные незакоммиченной записи.
"""
import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from math import ceil
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session
from app.core.exceptions import (
    CategoryError,
    ConflictError,
    CyclicReferenceError,
    InvalidInputError,
    InvalidParentError,
    NotFoundError,
    SelfParentError,
)
from app.models.category import Category
from app.schemas.category import CategoryResponse
from app.services import category_store as store
from app.services.cache import CategoryCache
from app.services.category_store import ANY_PARENT, ParentFilter
from app.services.slugs import DEFAULT_SLUG, make_slug, slugify, uniquify

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    {"name": "Programming", "description": "Learn programming languages and concepts"},
    {"name": "Data Science", "description": "Explore data analysis and machine learning"},
    {"name": "Web Development", "description": "Build websites and web applications"},
    {"name": "Mobile Development", "description": "Create apps for iOS and Android"},
    {"name": "DevOps", "description": "Learn about DevOps practices and tools"},
]


def category_to_dict(category: Category) -> dict:
    """Сериализация категории (формат кэша и ответа API)"""
    return CategoryResponse.model_validate(category).model_dump(mode="json")


def _normalize_parent(parent_id: Any) -> Optional[int]:
    if parent_id == "":
        return None
    return parent_id


def _pages(total: int, limit: int) -> int:
    return ceil(total / limit) if total > 0 else 1


class CategoryService:
    def __init__(self, db: Session, cache: CategoryCache):
        self.db = db
        self.cache = cache

    @contextmanager
    def _transaction(self):
        """commit при успехе, полный rollback при любой ошибке"""
        try:
            yield
            self.db.commit()
        except CategoryError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception("Category transaction rolled back")
            raise

    def _get_or_404(self, category_id: int) -> Category:
        category = store.get(self.db, category_id)
        if not category:
            raise NotFoundError()
        return category

    # === Чтение (cache-aside) ===

    def get_by_id(self, category_id: int) -> dict:
        cached = self.cache.get_category(category_id)
        if cached is not None:
            return cached

        data = category_to_dict(self._get_or_404(category_id))
        self.cache.set_category(data)
        return data

    def get_by_slug(self, slug: str) -> dict:
        cached = self.cache.get_category_by_slug(slug)
        if cached is not None:
            return cached

        category = store.find_by_slug(self.db, slug)
        if not category:
            raise NotFoundError()

        data = category_to_dict(category)
        self.cache.set_category_by_slug(data)
        return data

    def list_categories(
        self,
        page: int = 1,
        limit: int = 10,
        parent_id: ParentFilter = ANY_PARENT,
        is_active: Optional[bool] = None,
    ) -> dict:
        """Пагинированный список с фильтрами по родителю и активности"""
        cached = self.cache.get_list(page, limit, parent_id, is_active)
        if cached is not None:
            return cached

        rows, total = store.list_page(
            self.db,
            offset=(page - 1) * limit,
            limit=limit,
            parent_id=parent_id,
            is_active=is_active,
        )
        data = {
            "items": [category_to_dict(c) for c in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "pages": _pages(total, limit),
        }
        self.cache.set_list(page, limit, parent_id, is_active, data)
        return data

    def get_hierarchy(self, active_only: bool = False) -> List[dict]:
        """
        Дерево категорий от корней.

        Карта parent -> children строится за один проход по всем строкам.
        При active_only потомки неактивной категории в дерево не попадают.
        """
        cached = self.cache.get_hierarchy(active_only)
        if cached is not None:
            return cached

        children_map: Dict[Optional[int], List[Category]] = defaultdict(list)
        for category in store.list_all(self.db, active_only=active_only):
            children_map[category.parent_id].append(category)

        def build(parent_id: Optional[int]) -> List[dict]:
            return [
                {
                    "id": c.id,
                    "name": c.name,
                    "slug": c.slug,
                    "description": c.description,
                    "parent_id": c.parent_id,
                    "display_order": c.display_order,
                    "is_active": c.is_active,
                    "children": build(c.id),
                }
                for c in children_map.get(parent_id, [])
            ]

        tree = build(None)
        self.cache.set_hierarchy(active_only, tree)
        return tree

    def get_category_counts(self) -> List[dict]:
        """Категории с количеством курсов"""
        def load():
            return [
                {**category_to_dict(category), "course_count": count}
                for category, count in store.course_counts(self.db)
            ]

        return self.cache.remember(self.cache.keys.counts(), self.cache.list_ttl, load)

    def get_categories_for_course(self, course_id: int) -> List[dict]:
        def load():
            return [category_to_dict(c) for c in store.categories_for_course(self.db, course_id)]

        return self.cache.remember(
            self.cache.keys.categories_for_course(course_id), self.cache.point_ttl, load
        )

    def get_courses_for_category(
        self,
        category_id: int,
        page: int = 1,
        limit: int = 10,
        include_subcategories: bool = False,
    ) -> dict:
        cached = self.cache.get_courses_for_category(category_id, page, limit, include_subcategories)
        if cached is not None:
            return cached

        self._get_or_404(category_id)

        category_ids = [category_id]
        if include_subcategories:
            category_ids.extend(store.descendant_ids(self.db, category_id))

        course_ids, total = store.course_ids_for_category(
            self.db, category_ids, offset=(page - 1) * limit, limit=limit
        )
        data = {
            "course_ids": course_ids,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": _pages(total, limit),
        }
        self.cache.set_courses_for_category(category_id, page, limit, include_subcategories, data)
        return data

    # === Запись ===

    def create(
        self,
        name: str,
        description: Optional[str] = None,
        parent_id: Optional[int] = None,
        is_active: bool = True,
    ) -> dict:
        parent_id = _normalize_parent(parent_id)

        with self._transaction():
            if parent_id is not None and not store.get(self.db, parent_id):
                raise InvalidParentError()

            slug = make_slug(name, store.all_slugs(self.db))

            store.lock_siblings(self.db, parent_id)
            category = store.create(
                self.db,
                name=name,
                slug=slug,
                description=description,
                parent_id=parent_id,
                is_active=is_active,
                display_order=store.next_display_order(self.db, parent_id),
            )
            result = category_to_dict(category)

        logger.info("Category %s created (slug=%s, parent=%s)", result["id"], slug, parent_id)
        self.cache.invalidate_category_write(result["id"], {parent_id}, slugs=[slug])
        return result

    def update(self, category_id: int, data: Dict[str, Any]) -> dict:
        """
        Частичное обновление: data содержит только переданные поля.

        Смена родителя (включая перенос в корень) ставит категорию последней
        среди детей нового родителя и перенумеровывает старых соседей.
        """
        category = self._get_or_404(category_id)
        old_parent_id = category.parent_id
        old_slug = category.slug

        changes: Dict[str, Any] = {}
        if data.get("name") is not None:
            changes["name"] = data["name"]
            if data["name"] != category.name:
                changes["slug"] = self._regenerate_slug(category, data["name"])
        if "description" in data:
            changes["description"] = data["description"]
        if data.get("is_active") is not None:
            changes["is_active"] = data["is_active"]

        new_parent_id = _normalize_parent(data.get("parent_id", old_parent_id))
        parent_changed = new_parent_id != old_parent_id
        reindexed: List[Category] = []

        with self._transaction():
            if parent_changed:
                if new_parent_id == category_id:
                    raise SelfParentError()
                if new_parent_id is not None:
                    if not store.get(self.db, new_parent_id):
                        raise InvalidParentError()
                    self._check_cyclic_reference(category_id, new_parent_id)

                store.lock_siblings(self.db, new_parent_id)
                changes["parent_id"] = new_parent_id
                changes["display_order"] = store.next_display_order(self.db, new_parent_id)

            if changes:
                store.update_fields(self.db, category_id, **changes)

            if parent_changed:
                reindexed = store.reindex_siblings(self.db, old_parent_id)

            result = category_to_dict(category)
            related_ids = [c.id for c in reindexed]
            slugs = [old_slug, result["slug"]] + [c.slug for c in reindexed]

        if parent_changed:
            logger.info("Category %s moved from parent %s to %s", category_id, old_parent_id, new_parent_id)

        self.cache.invalidate_category_write(
            category_id,
            {old_parent_id, new_parent_id},
            related_ids=related_ids,
            slugs=slugs,
        )
        return result

    def delete(self, category_id: int) -> None:
        """
        Удаление категории. Дети становятся корневыми и добавляются в конец
        корневого уровня в прежнем порядке; связи с курсами удаляются.
        """
        category = self._get_or_404(category_id)
        parent_id = category.parent_id
        slugs = [category.slug]

        with self._transaction():
            children = store.lock_siblings(self.db, category_id)
            store.lock_siblings(self.db, None)
            next_root_order = store.next_display_order(self.db, None)
            for offset, child in enumerate(children):
                store.update_fields(self.db, child.id, parent_id=None, display_order=next_root_order + offset)

            unlinked_courses = store.unlink_all_for_category(self.db, category_id)
            store.delete(self.db, category_id)

            reindexed = store.reindex_siblings(self.db, parent_id)
            if children and parent_id is not None:
                reindexed += store.reindex_siblings(self.db, None)

            related = children + reindexed
            related_ids = [c.id for c in related]
            slugs += [c.slug for c in related]

        logger.info(
            "Category %s deleted (%s children re-rooted, %s course links removed)",
            category_id, len(children), len(unlinked_courses),
        )
        self.cache.invalidate_category_write(
            category_id,
            {parent_id, None},
            related_ids=related_ids,
            slugs=slugs,
        )

    def _regenerate_slug(self, category: Category, name: str) -> str:
        new_slug = slugify(name) or DEFAULT_SLUG
        if new_slug == category.slug:
            return category.slug
        return uniquify(new_slug, store.all_slugs(self.db, excluding_id=category.id))

    def _check_cyclic_reference(self, category_id: int, parent_id: int) -> None:
        """
        Подъём от кандидата в родители по parent_id до корня.
        Встретили саму категорию или повторный узел - цикл.
        """
        current_id: Optional[int] = parent_id
        visited = set()

        while current_id is not None:
            if current_id == category_id or current_id in visited:
                raise CyclicReferenceError()
            visited.add(current_id)

            node = store.get(self.db, current_id)
            if not node:
                break
            current_id = node.parent_id

    # === Связи курс <-> категория ===

    def _require_categories(self, category_ids: Iterable[int], allow_empty: bool = False) -> List[int]:
        """Все id должны существовать; проверка до любых изменений"""
        ids = list(dict.fromkeys(category_ids))
        if not ids and not allow_empty:
            raise InvalidInputError("category_ids is required")

        missing = [cid for cid in ids if not store.get(self.db, cid)]
        if missing:
            raise NotFoundError(f"Categories not found: {missing}")
        return ids

    def associate(self, course_id: int, category_ids: Iterable[int]) -> List[int]:
        """Привязка курса к категориям (уже существующие связи пропускаются)"""
        with self._transaction():
            ids = self._require_categories(category_ids)
            linked = []
            try:
                for category_id in ids:
                    if store.get_link(self.db, course_id, category_id):
                        continue
                    store.link_course_category(self.db, course_id, category_id)
                    linked.append(category_id)
            except IntegrityError as e:
                # Параллельный запрос успел вставить ту же связь
                raise ConflictError() from e

        self.cache.invalidate_course_category_links(course_id, ids)
        return linked

    def disassociate(self, course_id: int, category_ids: Iterable[int]) -> List[int]:
        with self._transaction():
            ids = self._require_categories(category_ids)
            removed = [cid for cid in ids if store.unlink_course_category(self.db, course_id, cid)]
            if not removed:
                raise NotFoundError("Course-category association not found")

        self.cache.invalidate_course_category_links(course_id, ids)
        return removed

    def replace_associations(self, course_id: int, category_ids: Iterable[int]) -> List[int]:
        """Полная замена набора категорий курса (пустой список - отвязать всё)"""
        with self._transaction():
            requested = set(self._require_categories(category_ids, allow_empty=True))
            current = set(store.category_ids_for_course(self.db, course_id))

            for category_id in sorted(current - requested):
                store.unlink_course_category(self.db, course_id, category_id)
            try:
                for category_id in sorted(requested - current):
                    store.link_course_category(self.db, course_id, category_id)
            except IntegrityError as e:
                raise ConflictError() from e

        # Старые и новые категории одним пакетом
        self.cache.invalidate_course_category_links(course_id, current | requested)
        return sorted(requested)

    # === Служебное ===

    def add_default_categories(self) -> List[dict]:
        """Стартовый набор корневых категорий (существующие по имени пропускаются)"""
        created = []
        for item in DEFAULT_CATEGORIES:
            if store.exists_by_name(self.db, item["name"]):
                continue
            created.append(self.create(name=item["name"], description=item["description"]))
        return created

    def warm_up_cache(self) -> dict:
        """Прогрев часто читаемых ключей"""
        started = time.perf_counter()
        self.get_hierarchy(active_only=True)
        self.get_hierarchy(active_only=False)
        self.get_category_counts()
        self.list_categories(parent_id=None)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info("Category cache warmed up in %sms", elapsed_ms)
        return {"available": self.cache.is_available(), "elapsed_ms": elapsed_ms}

    def clear_cache(self) -> int:
        return self.cache.clear_all()

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def measure_cache(self, category_id: int) -> dict:
        """Два чтения подряд: первое обычно промах, второе - попадание"""
        started = time.perf_counter()
        category = self.get_by_id(category_id)
        first_ms = (time.perf_counter() - started) * 1000

        started = time.perf_counter()
        self.get_by_id(category_id)
        second_ms = (time.perf_counter() - started) * 1000

        improvement = ((first_ms - second_ms) / first_ms * 100) if first_ms > 0 else 0.0
        return {
            "category": category,
            "performance": {
                "first_call_ms": round(first_ms, 3),
                "second_call_ms": round(second_ms, 3),
                "improvement_percent": round(improvement, 2),
            },
        }
