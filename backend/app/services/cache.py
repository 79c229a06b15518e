"""
Cache-aside слой для данных категорий поверх Redis.

Кэш никогда не является источником истины и работает "fail open":
любая ошибка Redis логируется и трактуется как промах.
"""
import json
import logging
from typing import Any, Callable, Iterable, List, Optional
import redis
from app.core.config import settings
from app.core.exceptions import CacheUnavailable

logger = logging.getLogger(__name__)

NAMESPACE = "category"


def encode_key(*parts: Any, **params: Any) -> str:
    """
    Детерминированный ключ: category:<parts>[:name=value ...].
    Параметры сортируются по имени, None кодируется как "null".
    """
    segments = [NAMESPACE]
    segments.extend(_encode_value(part) for part in parts)
    segments.extend(f"{name}={_encode_value(params[name])}" for name in sorted(params))
    return ":".join(segments)


def _encode_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


class CategoryCacheKeys:
    """Шаблоны ключей кэша категорий"""

    @staticmethod
    def by_id(category_id: int) -> str:
        return encode_key("id", category_id)

    @staticmethod
    def by_slug(slug: str) -> str:
        return encode_key("slug", slug)

    @staticmethod
    def list_page(page: int, limit: int, parent: Any, is_active: Optional[bool]) -> str:
        return encode_key("list", page=page, limit=limit, parent=parent, active=_all_if_none(is_active))

    @staticmethod
    def hierarchy(active_only: bool) -> str:
        return encode_key("hierarchy", active=active_only)

    @staticmethod
    def counts() -> str:
        return encode_key("counts")

    @staticmethod
    def categories_for_course(course_id: int) -> str:
        return encode_key("course", course_id)

    @staticmethod
    def courses_for_category(category_id: int, page: int, limit: int, include_subcategories: bool) -> str:
        return encode_key("courses", category_id, page=page, limit=limit, sub=include_subcategories)

    # Шаблоны для удаления по маске
    LIST_PATTERN = f"{NAMESPACE}:list:*"
    COURSE_PATTERN = f"{NAMESPACE}:course:*"
    COURSES_PATTERN = f"{NAMESPACE}:courses:*"
    # Выборки с подкатегориями: зависят от связей всех потомков
    SUBTREE_COURSES_PATTERN = f"{NAMESPACE}:courses:*:sub=1"
    ALL_PATTERN = f"{NAMESPACE}:*"

    @staticmethod
    def courses_for_category_pattern(category_id: int) -> str:
        return f"{encode_key('courses', category_id)}:*"


def _all_if_none(flag: Optional[bool]) -> Any:
    return "all" if flag is None else flag


class CategoryCache:
    """Redis-кэш категорий с типизированными read-through хелперами"""

    keys = CategoryCacheKeys

    def __init__(
        self,
        client: Optional[redis.Redis],
        point_ttl: int = settings.CACHE_TTL_POINT,
        list_ttl: int = settings.CACHE_TTL_LIST,
    ):
        self._redis = client
        self.point_ttl = point_ttl
        self.list_ttl = list_ttl

    def _client(self) -> redis.Redis:
        if self._redis is None:
            raise CacheUnavailable("Redis client is not configured")
        return self._redis

    def is_available(self) -> bool:
        return self._redis is not None

    def ping(self) -> bool:
        try:
            return bool(self._client().ping())
        except (CacheUnavailable, redis.RedisError) as e:
            logger.warning("Cache ping failed: %s", e)
            return False

    # === Базовые операции ===

    def get(self, key: str) -> Optional[Any]:
        """Значение из кэша или None при промахе/ошибке"""
        try:
            raw = self._client().get(key)
        except (CacheUnavailable, redis.RedisError) as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None

        if raw is None:
            logger.debug("Cache MISS: %s", key)
            return None

        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning("Cache entry %s is not valid JSON, dropping it", key)
            self.delete(key)
            return None

        logger.debug("Cache HIT: %s", key)
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ttl = ttl or self.point_ttl
        try:
            self._client().setex(key, ttl, json.dumps(value, default=str))
        except (CacheUnavailable, redis.RedisError) as e:
            logger.warning("Cache set failed for %s: %s", key, e)
            return False
        logger.debug("Cache SET: %s (ttl=%ss)", key, ttl)
        return True

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return self._client().delete(*keys)
        except (CacheUnavailable, redis.RedisError) as e:
            logger.warning("Cache delete failed for %s: %s", keys, e)
            return 0

    def keys_matching(self, pattern: str) -> List[str]:
        try:
            return list(self._client().scan_iter(match=pattern, count=500))
        except (CacheUnavailable, redis.RedisError) as e:
            logger.warning("Cache scan failed for %s: %s", pattern, e)
            return []

    def delete_pattern(self, pattern: str) -> int:
        """Удаление всех ключей по маске (SCAN, без блокирующего KEYS)"""
        keys = self.keys_matching(pattern)
        if not keys:
            return 0
        deleted = self.delete(*keys)
        logger.debug("Cache DELETE PATTERN: %s (%s keys)", pattern, deleted)
        return deleted

    def remember(self, key: str, ttl: int, loader: Callable[[], Any]) -> Any:
        """Cache-aside: из кэша, иначе loader() и запись в кэш"""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value, ttl)
        return value

    # === Типизированные хелперы ===

    def get_category(self, category_id: int) -> Optional[dict]:
        return self.get(self.keys.by_id(category_id))

    def set_category(self, category: dict) -> None:
        self.set(self.keys.by_id(category["id"]), category, self.point_ttl)

    def get_category_by_slug(self, slug: str) -> Optional[dict]:
        return self.get(self.keys.by_slug(slug))

    def set_category_by_slug(self, category: dict) -> None:
        self.set(self.keys.by_slug(category["slug"]), category, self.point_ttl)

    def get_list(self, page: int, limit: int, parent: Any, is_active: Optional[bool]) -> Optional[dict]:
        return self.get(self.keys.list_page(page, limit, parent, is_active))

    def set_list(self, page: int, limit: int, parent: Any, is_active: Optional[bool], data: dict) -> None:
        self.set(self.keys.list_page(page, limit, parent, is_active), data, self.list_ttl)

    def get_hierarchy(self, active_only: bool) -> Optional[list]:
        return self.get(self.keys.hierarchy(active_only))

    def set_hierarchy(self, active_only: bool, tree: list) -> None:
        self.set(self.keys.hierarchy(active_only), tree, self.list_ttl)

    def get_counts(self) -> Optional[list]:
        return self.get(self.keys.counts())

    def set_counts(self, counts: list) -> None:
        self.set(self.keys.counts(), counts, self.list_ttl)

    def get_categories_for_course(self, course_id: int) -> Optional[list]:
        return self.get(self.keys.categories_for_course(course_id))

    def set_categories_for_course(self, course_id: int, categories: list) -> None:
        self.set(self.keys.categories_for_course(course_id), categories, self.point_ttl)

    def get_courses_for_category(self, category_id: int, page: int, limit: int, sub: bool) -> Optional[dict]:
        return self.get(self.keys.courses_for_category(category_id, page, limit, sub))

    def set_courses_for_category(self, category_id: int, page: int, limit: int, sub: bool, data: dict) -> None:
        self.set(self.keys.courses_for_category(category_id, page, limit, sub), data, self.list_ttl)

    # === Инвалидация (только после commit) ===

    def invalidate_category_write(
        self,
        category_id: Optional[int] = None,
        affected_parent_ids: Iterable[Optional[int]] = (),
        related_ids: Iterable[int] = (),
        slugs: Iterable[str] = (),
    ) -> None:
        """
        Инвалидация после записи в дерево.

        Точечные ключи (id, slug) удаляются точно, списки/деревья и
        производные от них ключи - по маске: комбинаций параметров
        слишком много для адресного удаления.
        """
        ids = set(related_ids)
        ids.update(pid for pid in affected_parent_ids if pid is not None)
        if category_id is not None:
            ids.add(category_id)

        keys_to_delete = [self.keys.by_id(cid) for cid in sorted(ids)]
        keys_to_delete.extend(self.keys.by_slug(slug) for slug in sorted(set(slugs)) if slug)
        keys_to_delete.extend([
            self.keys.hierarchy(True),
            self.keys.hierarchy(False),
            self.keys.counts(),
        ])

        self.delete(*keys_to_delete)
        for pattern in (self.keys.LIST_PATTERN, self.keys.COURSE_PATTERN, self.keys.COURSES_PATTERN):
            self.delete_pattern(pattern)

        logger.info(
            "Cache invalidated for category write (id=%s, parents=%s, related=%s)",
            category_id, sorted(affected_parent_ids, key=str), len(ids),
        )

    def invalidate_course_category_links(self, course_id: int, category_ids: Iterable[int]) -> None:
        """Инвалидация после изменения связей курса, одним пайплайном"""
        category_ids = sorted(set(category_ids))
        keys_to_delete = [self.keys.categories_for_course(course_id), self.keys.counts()]
        for category_id in category_ids:
            keys_to_delete.extend(self.keys_matching(self.keys.courses_for_category_pattern(category_id)))
        keys_to_delete.extend(self.keys_matching(self.keys.SUBTREE_COURSES_PATTERN))

        try:
            pipe = self._client().pipeline(transaction=False)
            pipe.delete(*keys_to_delete)
            pipe.execute()
        except (CacheUnavailable, redis.RedisError) as e:
            logger.warning("Cache invalidation failed for course %s: %s", course_id, e)
            return

        logger.info("Cache invalidated for course %s links (%s categories)", course_id, len(category_ids))

    # === Утилиты ===

    def clear_all(self) -> int:
        deleted = self.delete_pattern(self.keys.ALL_PATTERN)
        logger.info("Category cache cleared (%s keys)", deleted)
        return deleted

    def stats(self) -> dict:
        try:
            client = self._client()
            total_keys = client.dbsize()
        except (CacheUnavailable, redis.RedisError) as e:
            logger.warning("Cache stats unavailable: %s", e)
            return {"available": False, "error": str(e)}

        try:
            used_memory = client.info("memory").get("used_memory_human")
        except redis.RedisError as e:
            # INFO может быть запрещён в managed-Redis
            logger.debug("Cache memory info unavailable: %s", e)
            used_memory = None

        return {
            "available": True,
            "total_keys": total_keys,
            "category_keys": len(self.keys_matching(self.keys.ALL_PATTERN)),
            "used_memory": used_memory,
            "point_ttl": self.point_ttl,
            "list_ttl": self.list_ttl,
        }
