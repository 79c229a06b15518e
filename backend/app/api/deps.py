from fastapi import Depends, HTTPException, status
from fastapi_jwt import JwtAccessBearerCookie, JwtAuthorizationCredentials
from sqlmodel import Session
from app.db.session import engine
from app.core.config import settings
from app.core.redis import get_redis_client
from app.services.cache import CategoryCache
from app.services.categories import CategoryService

ADMIN_ROLE = "admin"

# JWT с HttpOnly cookie (токены выпускает сервис авторизации)
access_security = JwtAccessBearerCookie(
    secret_key=settings.SECRET_KEY,
    auto_error=False
)


def get_db():
    with Session(engine) as session:
        yield session


def get_cache() -> CategoryCache:
    return CategoryCache(get_redis_client())


def get_category_service(
    db: Session = Depends(get_db),
    cache: CategoryCache = Depends(get_cache),
) -> CategoryService:
    return CategoryService(db, cache)


async def admin_required(
    credentials: JwtAuthorizationCredentials = Depends(access_security),
) -> dict:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    subject = credentials.subject or {}
    if subject.get("role") != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return subject
