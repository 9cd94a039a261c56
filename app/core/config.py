from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
from dotenv import load_dotenv


# Get the path to the .env file
CONFIG_DIR = Path(__file__).resolve().parent
# Assuming .env is in the project root (two levels up from app/core)
PROJECT_ROOT = CONFIG_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT / '.env'

# Load environment variables from .env file
load_dotenv(ENV_FILE_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding='utf-8',
        extra='ignore'
    )

    DEBUG_MODE: bool = False
    LOG_JSON: bool = False
    LOG_FILE_MAX_BYTES: int = 5 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 5

    # Provider credentials. A missing key removes that provider from the chain.
    GEMINI_API_KEY: str = ""
    GROQ_API_KEY: str = ""

    # Fallback chain, fastest/cheapest first
    PROVIDER_ORDER: List[str] = ["groq", "gemini"]

    # Models tried in order within one provider
    GEMINI_MODELS: List[str] = ["gemini-2.0-flash", "gemini-1.5-flash", "gemini-1.5-pro"]
    GROQ_MODELS: List[str] = ["llama-3.3-70b-versatile", "llama-3.1-8b-instant"]

    # Generation parameters (low temperature keeps JSON output stable)
    GENERATION_TEMPERATURE: float = 0.5
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    QUESTION_SET_MAX_TOKENS: int = 4096
    EXPLANATION_MAX_TOKENS: int = 2048

    # Retry Configuration (linear back-off: attempt n waits n * base delay)
    RETRY_MAX_ATTEMPTS: int = 2
    RETRY_BASE_DELAY: float = 1.0

    # Per-user quotas (fixed window)
    QUESTION_SET_RATE_LIMIT: int = 5
    EXPLANATION_RATE_LIMIT: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 3600

    # Suggested wait surfaced when every provider is throttled
    PROVIDER_RETRY_AFTER_SECONDS: int = 60

    # Request limits
    MAX_QUESTION_COUNT: int = 20

    # How often the HTTP layer checks for a disconnected client (seconds)
    DISCONNECT_POLL_INTERVAL: float = 0.5

    # Probe every configured provider once at startup (never fatal)
    PROVIDER_STARTUP_CHECK: bool = False


# Initialize settings
settings = Settings()
