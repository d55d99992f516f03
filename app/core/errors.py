# app/core/errors.py
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class SchedulingError(Exception):
    """Error de dominio esperado. Se responde como {"error", "code", ...extras}."""

    status_code = 400
    code = "SCHEDULING_ERROR"

    def __init__(self, message: str, *, code: str | None = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.extra}


class ValidationFailed(SchedulingError):
    code = "VALIDATION_ERROR"


class AvailabilityViolation(SchedulingError):
    code = "AVAILABILITY_VIOLATION"


class AppointmentConflict(SchedulingError):
    status_code = 409
    code = "APPOINTMENT_CONFLICT"


class MutationConflicts(SchedulingError):
    status_code = 409
    code = "MUTATION_CONFLICTS"


class InvalidTransition(SchedulingError):
    code = "INVALID_STATUS_TRANSITION"


class NotFound(SchedulingError):
    status_code = 404
    code = "NOT_FOUND"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SchedulingError)
    async def _scheduling_error(_: Request, exc: SchedulingError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
