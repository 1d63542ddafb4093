from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.services.errors import InputError, NotFound, ServiceError, StateConflict

STATUS_CODES = {
    InputError: 400,
    StateConflict: 409,
    NotFound: 404,
}


def _status_code(exc: ServiceError) -> int:
    for cls, code in STATUS_CODES.items():
        if isinstance(exc, cls):
            return code
    return 400


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=_status_code(exc), content=exc.to_dict())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
