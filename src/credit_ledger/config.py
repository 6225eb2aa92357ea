"""
Service settings, read once from the environment.

A `.env` file in (or above) the working directory is loaded first and never
overrides variables that are already set.
"""

from dotenv import find_dotenv, load_dotenv

load_dotenv(find_dotenv(usecwd=True), override=False)

import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./credit_ledger.db")
LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "sql").strip().lower()
DB_ECHO = _flag("DB_ECHO", "false")
AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", "true")

TRANSFER_MAX_RETRIES = int(os.getenv("TRANSFER_MAX_RETRIES", "3"))
TRANSFER_RETRY_BACKOFF = float(os.getenv("TRANSFER_RETRY_BACKOFF", "0.05"))
PERSISTENCE_TIMEOUT = float(os.getenv("PERSISTENCE_TIMEOUT", "5"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
