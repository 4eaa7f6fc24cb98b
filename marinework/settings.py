from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(REPO_ROOT / ".env")

APP_ENV = (os.environ.get("APP_ENV") or os.environ.get("MARINEWORK_ENV") or "development").strip().lower()
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

SERVICE_NAME = "Get permission for marine work"

DATA_DIR = Path(os.environ.get("DATA_DIR") or (REPO_ROOT / "data")).resolve()
TEMPLATES_DIR = (REPO_ROOT / "templates").resolve()
STATIC_DIR = (REPO_ROOT / "static").resolve()

# Session document storage: "memory" keeps documents in-process, "sql" uses db.py
SESSION_STORE = (os.environ.get("SESSION_STORE") or "sql").strip().lower()
SESSION_COOKIE_NAME = os.environ.get("SESSION_COOKIE_NAME", "marinework-session")
SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS", str(4 * 60 * 60)))

# Backend API
BACKEND_API_URL = os.environ.get("BACKEND_API_URL", "http://localhost:3001").rstrip("/")
HTTP_TIMEOUT_SEC = float(os.environ.get("HTTP_TIMEOUT_SEC", "25.0"))

# File upload service
UPLOAD_SERVICE_URL = os.environ.get("UPLOAD_SERVICE_URL", "http://localhost:7337").rstrip("/")
UPLOAD_BUCKET = os.environ.get("UPLOAD_BUCKET", "mmo-uploads")
UPLOAD_PATH_PREFIX = os.environ.get("UPLOAD_PATH_PREFIX", "exemptions")
UPLOAD_MAX_FILE_SIZE = int(os.environ.get("UPLOAD_MAX_FILE_SIZE", str(50 * 1000 * 1000)))
APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:8000").rstrip("/")

# Activity dates may be at most this many years ahead of the current year
DATE_MAX_YEAR_OFFSET = int(os.environ.get("DATE_MAX_YEAR_OFFSET", "75"))

SESSION_SECRET = os.environ.get("SESSION_SECRET")
