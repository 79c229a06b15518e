from fastapi import HTTPException, status


class CategoryError(HTTPException):
    """Базовая ошибка домена категорий (отдаётся клиенту как есть)"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Category request failed"

    def __init__(self, detail: str | None = None):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)


class NotFoundError(CategoryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Category not found"


class InvalidInputError(CategoryError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input"


class InvalidParentError(InvalidInputError):
    default_detail = "Parent category does not exist"


class SelfParentError(InvalidInputError):
    default_detail = "A category cannot be its own parent"


class CyclicReferenceError(InvalidInputError):
    default_detail = "Cyclic reference detected in category hierarchy"


class ConflictError(CategoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Course-category association already exists"


class CacheUnavailable(Exception):
    """Redis недоступен; наружу из слоя кэша не выходит"""
