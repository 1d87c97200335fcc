"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from pathlib import Path

CLOSURE_ROOT = Path(__file__).parent.parent

# Persistent store
DB_PATH = Path(os.getenv("CLOSURE_DB_PATH", str(CLOSURE_ROOT / "data" / "closure.db")))

# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS = int(os.getenv("GEMINI_MAX_TOKENS", "512"))
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.3"))

