"""
Gemini model manager: one shared model instance per process.

Supports two backends:
  1. Vertex AI SDK: uses GOOGLE_CLOUD_PROJECT + service account
  2. google-generativeai (local dev): uses GOOGLE_API_KEY
"""

from __future__ import annotations

import os
from functools import lru_cache

from closure.infrastructure.settings import (
    GEMINI_LOCATION,
    GEMINI_MODEL,
    GOOGLE_API_KEY,
    GOOGLE_CLOUD_PROJECT,
)
from closure.observability.logging import get_logger

logger = get_logger(__name__)


class GeminiInitializationError(RuntimeError):
    """Raised when no Gemini backend is installed or configured."""


@lru_cache(maxsize=1)
def get_gemini_model():
    """
    Get or create the shared Gemini model instance.

    Tries Vertex AI first; falls back to google-generativeai with
    GOOGLE_API_KEY.

    Raises:
        GeminiInitializationError: If neither backend can be set up
    """
    # Read env fresh: a .env may have been loaded after settings was imported
    project = os.getenv("GOOGLE_CLOUD_PROJECT") or GOOGLE_CLOUD_PROJECT
    location = os.getenv("GEMINI_LOCATION", "") or GEMINI_LOCATION or "us-central1"

    if project:
        try:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(project=project, location=location)
            model = GenerativeModel(GEMINI_MODEL)
            logger.info(
                "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
                project,
                location,
                GEMINI_MODEL,
            )
            return model
        except ImportError:
            logger.info("Vertex AI SDK not installed, trying google-generativeai")

    try:
        import google.generativeai as genai
    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e

    api_key = os.getenv("GOOGLE_API_KEY") or GOOGLE_API_KEY
    if not api_key:
        raise GeminiInitializationError(
            "Neither GOOGLE_CLOUD_PROJECT nor GOOGLE_API_KEY is set."
        )

    try:
        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(GEMINI_MODEL)
    except Exception as e:
        logger.error("Failed to initialize Gemini model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    logger.info("Initialized Gemini model (google-generativeai): model=%s", GEMINI_MODEL)
    return model

