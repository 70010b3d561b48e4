from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    """Base class for per-request errors raised by the service layer."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(ServiceError):
    """A referenced user, game, library entry or friendship does not exist."""

    status_code = 404


class InvalidOperation(ServiceError):
    """The request breaks a structural rule (self-request, wrong actor, self-block)."""

    status_code = 400


class Conflict(ServiceError):
    """The request clashes with current state (duplicate request, blocked, duplicate identity)."""

    status_code = 409


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
