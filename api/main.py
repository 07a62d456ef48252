import logging

from fastapi import FastAPI

from api.routes import router as reconciliation_router
from config.logging_config import configure_logging
from config.settings import settings

logger = logging.getLogger(__name__)


def get_app() -> FastAPI:
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting reconciliation API")
    app = FastAPI(title="Statement Reconciliation API")
    app.include_router(reconciliation_router)
    return app


app = get_app()
