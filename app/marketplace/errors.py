"""
Service-layer errors. Each carries the HTTP status the JSON API answers with.

A plain ValueError from validation maps to 400 and a PermissionError to 403.
"""
from __future__ import annotations


class ServiceError(Exception):
    status = 400

    def __init__(self, message: str, *, data: object = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationError(ServiceError, ValueError):
    status = 400


class AuthenticationError(ServiceError):
    status = 401


class ForbiddenError(ServiceError, PermissionError):
    status = 403


class NotFoundError(ServiceError, LookupError):
    status = 404


class ConflictError(ServiceError, ValueError):
    status = 409


def status_for(exc: BaseException) -> int:
    if isinstance(exc, ServiceError):
        return exc.status
    if isinstance(exc, PermissionError):
        return 403
    return 400
