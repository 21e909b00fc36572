import os

from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Production/Dev settings, read from the environment (or a local .env file).
    Tests bypass this class and pass a mapping to create_app().
    """
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///insightflow.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Celery (AI jobs run as fire-and-forget tasks)
    CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")

    # Gemini REST API
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", os.getenv("API_KEY", ""))
    GEMINI_API_URL = os.getenv("GEMINI_API_URL", "https://generativelanguage.googleapis.com/v1beta")
    GEMINI_FORM_MODEL = os.getenv("GEMINI_FORM_MODEL", "gemini-3-flash-preview")
    GEMINI_ANALYSIS_MODEL = os.getenv("GEMINI_ANALYSIS_MODEL", "gemini-3-pro-preview")
    AI_REQUEST_TIMEOUT = int(os.getenv("AI_REQUEST_TIMEOUT", 120))
    ANALYSIS_SAMPLE_LIMIT = int(os.getenv("ANALYSIS_SAMPLE_LIMIT", 50))

    # Store behaviour
    SEED_DEMO_DATA = _as_bool(os.getenv("SEED_DEMO_DATA", "true"))
    SYNC_ON_REQUEST = _as_bool(os.getenv("SYNC_ON_REQUEST", "true"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
