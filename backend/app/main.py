from fastapi import FastAPI

from backend.app.api.errors import install_error_handlers
from backend.app.api.v1.router import router as v1_router
from backend.app.core.config import settings
from backend.app.core.logging import setup_logging


def create_app() -> FastAPI:
    setup_logging(settings.log_level)
    app = FastAPI(title=settings.api_title, version="0.1.0")
    install_error_handlers(app)
    app.include_router(v1_router, prefix="/v1")
    return app


app = create_app()
