"""
Domain errors raised by the persistence and auth layers.

Every error carries the HTTP status it maps to; the handlers registered in
``taskminder.main`` turn them into ``{"message": ...}`` JSON bodies.
"""
from typing import Any, Dict, List, Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class ConflictError(AppError):
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class NotificationError(AppError):
    status_code = 502
