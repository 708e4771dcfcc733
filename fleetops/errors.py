"""Error taxonomy shared by the router, the auth layer and the controllers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Mapping


@dataclass(frozen=True)
class AppError(Exception):
    message: str
    status_code: int | None = None
    payload: Mapping[str, Any] | None = None

    default_status: ClassVar[int] = 500

    def __str__(self) -> str:
        return self.message

    @property
    def status(self) -> int:
        return self.status_code or self.default_status

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": False, "message": self.message}
        if self.payload:
            body.update(self.payload)
        return body


class ValidationError(AppError):
    default_status = 400


class AuthError(AppError):
    default_status = 401


class AuthorizationError(AppError):
    default_status = 403


class NotFoundError(AppError):
    default_status = 404


class ConflictError(AppError):
    default_status = 409


class LockedError(AppError):
    default_status = 423


class RateLimitError(AppError):
    default_status = 429


class ServerError(AppError):
    default_status = 500


def unprocessable(message: str) -> ValidationError:
    return ValidationError(message, status_code=422)
