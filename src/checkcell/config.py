"""Configuration management for CheckCell."""

import math
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

# e * 1000, rounded up
DEFAULT_NUM_BOOTSTRAPS = int(math.ceil(1000 * math.exp(1.0)))
DEFAULT_MAX_DURATION_MS = 5 * 60 * 1000


def _parse_cors_origins() -> list[str]:
    """Parse CORS origins from environment variable."""
    cors_env = os.getenv("CORS_ALLOW_ORIGINS")
    if cors_env:
        return cors_env.split(",")
    return ["*"]


def _parse_optional_int(name: str) -> Optional[int]:
    """Read an optional integer environment variable."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


class Settings(BaseModel):
    """Application settings."""

    # Bootstrap analysis
    num_bootstraps: int = int(os.getenv("NUM_BOOTSTRAPS", str(DEFAULT_NUM_BOOTSTRAPS)))
    max_duration_ms: int = int(os.getenv("MAX_DURATION_MS", str(DEFAULT_MAX_DURATION_MS)))
    tool_significance: float = float(os.getenv("TOOL_SIGNIFICANCE", "0.95"))
    ignore_parse_errors: bool = os.getenv("IGNORE_PARSE_ERRORS", "true").lower() == "true"
    consider_all_outputs: bool = os.getenv("CONSIDER_ALL_OUTPUTS", "true").lower() == "true"
    rng_seed: Optional[int] = _parse_optional_int("RNG_SEED")  # None draws fresh entropy
    resample_workers: int = int(os.getenv("RESAMPLE_WORKERS", "1"))

    # Audit workflow
    flag_color: str = os.getenv("FLAG_COLOR", "#FF0000")
    known_good_color: str = os.getenv("KNOWN_GOOD_COLOR", "#008000")
    debug_mode: bool = os.getenv("DEBUG_MODE", "false").lower() == "true"  # Log the top scores after every pass

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Google Sheets API credentials
    google_credentials_path: Path = Path(os.getenv("GOOGLE_CREDENTIALS_PATH", "credentials.json"))
    google_token_path: Path = Path(os.getenv("GOOGLE_TOKEN_PATH", "token.json"))

    # Server settings
    host: str = os.getenv("HOST", "127.0.0.1")
    port: int = int(os.getenv("PORT", "8000"))
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"

    # CORS settings (comma-separated list of allowed origins, or * for all)
    cors_allow_origins: list[str] = _parse_cors_origins()


settings = Settings()
