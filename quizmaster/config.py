"""
QuizMaster - Configuration
Settings are read from the process environment (and a local .env file).

Set in .env:
  QUIZMASTER_PROVIDER=gemini            (gemini | claude)
  GEMINI_API_KEY=...
  GEMINI_MODEL=gemini-2.5-pro           (optional)
  ANTHROPIC_API_KEY=...
  CLAUDE_MODEL=claude-sonnet-4-5        (optional)
  QUIZMASTER_REQUEST_TIMEOUT=120        (seconds, per AI call)
  QUIZMASTER_DB_URL=sqlite:///./quizmaster.db
  QUIZMASTER_LOG_LEVEL=INFO

A missing API key is not an error here; the gateway raises ConfigurationError
the first time it actually needs the credential.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


_PLACEHOLDER_KEYS = ("", "your_gemini_api_key_here", "your_anthropic_api_key_here")


@dataclass
class Settings:
    provider: str = "gemini"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-pro"
    anthropic_api_key: str = ""
    claude_model: str = "claude-sonnet-4-5"
    request_timeout: float = 120.0

    database_url: str = "sqlite:///./quizmaster.db"

    max_image_dimension: int = 1600
    jpeg_quality: int = 90
    max_upload_mb: int = 20

    workers: int = 2
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            provider=os.getenv("QUIZMASTER_PROVIDER", "gemini").lower().strip(),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_model=os.getenv("GEMINI_MODEL", cls.gemini_model),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            claude_model=os.getenv("CLAUDE_MODEL", cls.claude_model),
            request_timeout=float(os.getenv("QUIZMASTER_REQUEST_TIMEOUT", "120")),
            database_url=os.getenv("QUIZMASTER_DB_URL", cls.database_url),
            max_image_dimension=int(os.getenv("QUIZMASTER_MAX_IMAGE_DIMENSION", "1600")),
            jpeg_quality=int(os.getenv("QUIZMASTER_JPEG_QUALITY", "90")),
            max_upload_mb=int(os.getenv("MAX_FILE_SIZE_MB", "20")),
            workers=int(os.getenv("QUIZMASTER_WORKERS", "2")),
            host=os.getenv("QUIZMASTER_HOST", "127.0.0.1"),
            port=int(os.getenv("QUIZMASTER_PORT", "8000")),
            log_level=os.getenv("QUIZMASTER_LOG_LEVEL", "INFO").upper(),
        )


def has_credential(key: str) -> bool:
    return bool(key) and key not in _PLACEHOLDER_KEYS
