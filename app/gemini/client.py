from functools import lru_cache

from google import genai

from app.core.config import settings


@lru_cache(maxsize=1)
def get_client() -> genai.Client:
    """Shared Gemini client, created on first use so imports stay offline."""
    if not settings.GOOGLE_GEMINI_API_KEY:
        raise RuntimeError("Gemini is not configured (missing GOOGLE_GEMINI_API_KEY)")
    return genai.Client(api_key=settings.GOOGLE_GEMINI_API_KEY)
