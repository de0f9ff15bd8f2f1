import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from manuflow.api.v1.router import api_router
from manuflow.core.config import settings
from manuflow.core.database import Base, engine
from manuflow.core.errors import AppError, app_error_handler, request_validation_handler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

# Import all models so Base.metadata knows about them
import manuflow.models  # noqa: E402,F401


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create any missing tables (fallback if alembic migration didn't run)
    if settings.AUTO_CREATE_TABLES:
        try:
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables verified/created successfully")
        except Exception as e:
            logger.error("Failed to create database tables: %s", e)
    yield


app = FastAPI(
    title="ManuFlow CRM",
    description="CRM backend for companies, customers, leads and users with role-based permissions.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
def health_check() -> dict:
    return {"status": "ok"}
