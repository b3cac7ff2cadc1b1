"""
learntrack/main.py
FastAPI application: progress aggregation and proctoring-integrity API
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from learntrack.config.settings import settings
from learntrack.database import close_db, init_db
from learntrack.middleware.error_handler import setup_error_handlers
from learntrack.routes import router

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    try:
        await init_db()
        logger.info("Database connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect to database: {str(e)}")
        raise

    yield

    logger.info("Shutting down application...")
    await close_db()


app = FastAPI(
    title="LearnTrack Progress API",
    description="Learning progress aggregation and proctoring integrity scoring",
    version=VERSION,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
    lifespan=lifespan
)

setup_error_handlers(app, debug=settings.debug_errors)
app.include_router(router)


@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.environment,
        "version": VERSION
    }
