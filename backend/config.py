"""
Configuration and shared helpers
"""

import os
import logging
from datetime import datetime, timezone, timedelta
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Load .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger("config")

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'crm_documents')

# Every persistence call must complete or fail within this bound
MONGO_TIMEOUT_MS = int(os.environ.get('MONGO_TIMEOUT_MS', '5000'))

client = AsyncIOMotorClient(
    MONGO_URL,
    serverSelectionTimeoutMS=MONGO_TIMEOUT_MS,
    connectTimeoutMS=MONGO_TIMEOUT_MS,
    socketTimeoutMS=MONGO_TIMEOUT_MS,
)
db = client[DB_NAME]

logger.info(f"[CONFIG] Using database: {DB_NAME}")

# Commercial defaults
DEFAULT_PAYMENT_TERMS_DAYS = int(os.environ.get('DEFAULT_PAYMENT_TERMS_DAYS', '30'))
DEFAULT_QUOTATION_VALIDITY_DAYS = int(os.environ.get('DEFAULT_QUOTATION_VALIDITY_DAYS', '30'))

# Outbound mail (optional)
SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY', '')
SENDER_EMAIL = os.environ.get('SENDER_EMAIL', 'noreply@example.org')
SENDER_NAME = os.environ.get('SENDER_NAME', 'CRM Documents')

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()


# ==================== HELPERS ====================

def now_iso() -> str:
    """Current UTC date/time as ISO-8601"""
    return datetime.now(timezone.utc).isoformat()


def days_from_now_iso(days: int) -> str:
    """UTC date/time `days` ahead, as ISO-8601"""
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def current_year() -> int:
    return datetime.now(timezone.utc).year
