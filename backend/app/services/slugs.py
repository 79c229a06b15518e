import re
from typing import Iterable

DEFAULT_SLUG = "category"

_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w\-]+")
_HYPHENS = re.compile(r"-{2,}")


def slugify(name: str) -> str:
    """Название -> URL-slug"""
    slug = str(name).lower().strip()
    slug = _WHITESPACE.sub("-", slug)
    slug = _NON_WORD.sub("", slug)
    slug = _HYPHENS.sub("-", slug)
    return slug.strip("-")


def uniquify(base_slug: str, existing_slugs: Iterable[str]) -> str:
    """
    Уникальный slug: base, затем base-1, base-2, ...
    Без обращений к БД, результат зависит только от аргументов.
    """
    existing = set(existing_slugs)
    slug = base_slug
    counter = 1
    while slug in existing:
        slug = f"{base_slug}-{counter}"
        counter += 1
    return slug


def make_slug(name: str, existing_slugs: Iterable[str]) -> str:
    """slugify + uniquify; пустой результат заменяется на DEFAULT_SLUG"""
    return uniquify(slugify(name) or DEFAULT_SLUG, existing_slugs)
