"""
Ouvidoria Dashboard — Configuration
────────────────────────────────────
Environment variables (.env or deploy platform):
    DASH_API_BASE_URL      = http://localhost:3000     # backend the loader talks to
    REDIS_URL              = redis://localhost:6379    # persistent cache (optional)
    FILTER_DEBOUNCE_MS     = 200
    PAGE_DEBOUNCE_MS       = 500
    DASH_MAX_CONCURRENT    = 6                         # unset = adaptive
    DASH_REQUEST_RETRIES   = 1
    CACHE_SWEEP_INTERVAL_S = 300
    DASH_LOG_LEVEL         = INFO
    PORT                   = 8000
"""

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _opt_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


API_BASE_URL         = os.getenv("DASH_API_BASE_URL", "http://localhost:3000").rstrip("/")
REDIS_URL            = os.getenv("REDIS_URL", "")
FILTER_DEBOUNCE_MS   = int(os.getenv("FILTER_DEBOUNCE_MS", "200"))
PAGE_DEBOUNCE_MS     = int(os.getenv("PAGE_DEBOUNCE_MS", "500"))
MAX_CONCURRENT       = _opt_int("DASH_MAX_CONCURRENT")
REQUEST_RETRIES      = int(os.getenv("DASH_REQUEST_RETRIES", "1"))
CACHE_SWEEP_INTERVAL = int(os.getenv("CACHE_SWEEP_INTERVAL_S", "300"))
LOG_LEVEL            = os.getenv("DASH_LOG_LEVEL", "INFO").upper()
PORT                 = int(os.getenv("PORT", "8000"))
