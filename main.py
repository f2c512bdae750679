"""Main FastAPI application"""
import logging
import logging.config
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from motor.motor_asyncio import AsyncIOMotorClient

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(name)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "rich.logging.RichHandler",
            "formatter": "default",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_time": True,
            "show_path": False,
            "log_time_format": "%Y-%m-%d %H:%M:%S",
            "markup": False
        },
    },
    "loggers": {
        "uvicorn": {
             "handlers": ["default"],
             "level": "INFO",
             "propagate": False,
        },
        "uvicorn.error": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "": { # Root logger for our application
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
    },
}

# Configure logging before the application modules log their import-time warnings
logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

import config
from routes import router as api_router
from utils.rate_limit import limiter


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Connect to MongoDB
    logger.info("Connecting to MongoDB...")
    try:
        app.state.db_client = AsyncIOMotorClient(config.MONGODB_URI, tz_aware=True)
        db = app.state.db_client[config.DB_NAME]
        app.state.transactions_collection = db.get_collection(config.TRANSACTIONS_COLLECTION)
        app.state.advice_collection = db.get_collection(config.ADVICE_COLLECTION)
        await app.state.db_client.admin.command('ping')
        logger.info(f"Successfully connected to MongoDB database: {config.DB_NAME}")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        app.state.db_client = None
        app.state.transactions_collection = None
        app.state.advice_collection = None

    yield # Application runs here

    # Shutdown: Close MongoDB connection
    if app.state.db_client is not None:
        logger.info("Closing MongoDB connection...")
        app.state.db_client.close()
        logger.info("MongoDB connection closed.")

app = FastAPI(
    title="Finance Tracker API",
    description="API for tracking income and expenses, with assistant-powered entry and advice.",
    version="0.1.0",
    lifespan=lifespan
)

# --- Rate Limiter State and Handler ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(
    api_router,
    prefix="/api",
    tags=["api"],
)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
