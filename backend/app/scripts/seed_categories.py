"""
Seed-скрипт: создание таблиц и стартовых категорий
Запуск: python -m app.scripts.seed_categories
"""
import logging
from sqlmodel import Session
from app.db.session import engine, create_tables
from app.core.redis import get_redis_client
from app.services.cache import CategoryCache
from app.services.categories import CategoryService

logger = logging.getLogger(__name__)


def seed_categories() -> int:
    """Создание категорий по умолчанию, которых ещё нет"""
    with Session(engine) as session:
        service = CategoryService(session, CategoryCache(get_redis_client()))
        created = service.add_default_categories()

    for category in created:
        print(f"Category created: {category['name']} ({category['slug']})")
    if not created:
        print("Default categories already exist")
    return len(created)


def main():
    logging.basicConfig(level=logging.INFO)
    print("Creating tables...")
    create_tables()
    print("Seeding categories...")
    seed_categories()
    print("Done!")


if __name__ == "__main__":
    main()
