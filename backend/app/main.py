from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from app.core.config import settings
from app.core.redis import get_redis_client
from app.db.session import engine, create_tables
from app.services.cache import CategoryCache
from app.services.categories import CategoryService

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables()
    if settings.CACHE_WARMUP_ON_STARTUP:
        with Session(engine) as session:
            CategoryService(session, CategoryCache(get_redis_client())).warm_up_cache()
    yield


app = FastAPI(
    title="Course Categories API",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    # Детали БД клиенту не отдаём
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Import routers after app creation to avoid circular imports
from app.api import (
    categories,
    admin_categories,
    cache,
)

# Routers - all already have /api prefix
app.include_router(categories.router)
app.include_router(admin_categories.router)
app.include_router(cache.router)


@app.get("/")
def root():
    return {"status": "ok", "service": "course-categories-api"}


@app.get("/api/health")
def health_check():
    return {
        "status": "healthy",
        "env": settings.ENV
    }
