"""Typed service failures.

Services raise these; ``homeeasy.main`` renders them with the carried status
code. Nothing in the core retries on them.
"""

from __future__ import annotations


class ServiceError(Exception):
    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(ServiceError):
    status_code = 404


class Forbidden(ServiceError):
    status_code = 403


class InvalidState(ServiceError):
    status_code = 409


class Conflict(ServiceError):
    status_code = 409


class InvalidArgument(ServiceError):
    status_code = 400


class Unauthenticated(ServiceError):
    status_code = 401
