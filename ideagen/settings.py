# ideagen/settings.py

import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

# --- Google / LLM ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")

LLM_MODEL = os.getenv("LLM_MODEL", "gemini-2.5-flash-lite")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "300"))

# --- Database ---
# DATABASE_URL wins; otherwise the URL is assembled from the DB_* variables
DATABASE_URL = os.getenv("DATABASE_URL", "")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = int(os.getenv("DB_PORT", "5432"))
DB_NAME = os.getenv("DB_NAME", "ideagen")
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_SECRET_ID = os.getenv("DB_SECRET_ID")

# --- Generation workflow ---
GENERATION_MAX_ATTEMPTS = int(os.getenv("GENERATION_MAX_ATTEMPTS", "3"))
GENERATION_RETRY_DELAY = float(os.getenv("GENERATION_RETRY_DELAY", "2.0"))
PROGRESS_TICK_INTERVAL = float(os.getenv("PROGRESS_TICK_INTERVAL", "0.25"))
RESULT_STORE_TTL = int(os.getenv("RESULT_STORE_TTL", str(24 * 3600)))
# seconds between sweeps of expired result stores
STORE_SWEEP_INTERVAL = float(os.getenv("STORE_SWEEP_INTERVAL", "60"))

# JSON-with-comments feature cost table; defaults to the packaged one
FEATURE_COSTS_PATH = os.getenv(
    "FEATURE_COSTS_PATH",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "feature_costs.jsonc"),
)
