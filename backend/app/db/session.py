from sqlmodel import SQLModel, create_engine
from app.core.config import settings

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    # FastAPI выполняет sync-эндпоинты в пуле потоков
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)


def create_tables():
    """Создание всех таблиц"""
    # Импорт регистрирует модели в metadata
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
