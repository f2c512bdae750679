"""Application configuration read from the environment (.env supported)"""
import os
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Searches current dir and parents for a .env file
load_dotenv()

MONGODB_URI = os.getenv("MONGODB_URI")
DB_NAME = os.getenv("DB_NAME", "finance_db")
TRANSACTIONS_COLLECTION = os.getenv("TRANSACTIONS_COLLECTION", "transactions")
ADVICE_COLLECTION = os.getenv("ADVICE_COLLECTION", "advice")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
ASSISTANT_TEMPERATURE = float(os.getenv("ASSISTANT_TEMPERATURE", "0.2"))

# Number of most recent transactions included in advisory prompts
ADVICE_TRANSACTION_LIMIT = int(os.getenv("ADVICE_TRANSACTION_LIMIT", "20"))
# Seconds between re-queries when change streams are unavailable
SNAPSHOT_POLL_INTERVAL = float(os.getenv("SNAPSHOT_POLL_INTERVAL", "2.0"))

ASSISTANT_RATE_LIMIT = os.getenv("ASSISTANT_RATE_LIMIT", "10/minute")
DEFAULT_USER_ID = os.getenv("DEFAULT_USER_ID", "local")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

if not MONGODB_URI:
    logger.error("MONGODB_URI environment variable not set! Database connection will fail.")

if not OPENAI_API_KEY:
    logger.warning("OPENAI_API_KEY not found or not set in .env file. Assistant functionality will likely fail.")
