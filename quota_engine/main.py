import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

# Load env from quota_engine/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from quota_engine.core.config import settings, validate_config  # noqa: E402
from quota_engine.core.logging import configure_logging  # noqa: E402
from quota_engine.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from quota_engine.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from quota_engine.api import health, usage  # noqa: E402

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("quota_engine")
    logger.info("Starting quota engine...")
    try:
        yield
    finally:
        logging.getLogger("quota_engine").info("Stopping quota engine...")


app = FastAPI(title="Quota Engine", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(usage.router)
app.include_router(health.root_router)
