"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    DATABASE_URL: str
    LOG_LEVEL: str
    SESSION_STORAGE_DIR: Path
    AUTOSAVE_DEBOUNCE_SECONDS: float
    SYNC_MAX_ATTEMPTS: int
    SYNC_BACKOFF_SECONDS: float
    REMOTE_BASE_URL: str
    REMOTE_TIMEOUT_SECONDS: float
    TICK_INTERVAL_SECONDS: float
    FULL_TEST_QUESTION_COUNT: int
    PRACTICE_QUESTION_COUNT: int
    RECENT_QUESTION_DAYS: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.SESSION_STORAGE_DIR = Path(os.getenv("SESSION_STORAGE_DIR", str(BASE / "data" / "local"))).expanduser()
        self.AUTOSAVE_DEBOUNCE_SECONDS = float(os.getenv("AUTOSAVE_DEBOUNCE_SECONDS", "1.0"))
        self.SYNC_MAX_ATTEMPTS = int(os.getenv("SYNC_MAX_ATTEMPTS", "3"))
        self.SYNC_BACKOFF_SECONDS = float(os.getenv("SYNC_BACKOFF_SECONDS", "0.5"))
        self.REMOTE_BASE_URL = os.getenv("REMOTE_BASE_URL", "http://localhost:8000")
        self.REMOTE_TIMEOUT_SECONDS = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "10"))
        self.TICK_INTERVAL_SECONDS = float(os.getenv("TICK_INTERVAL_SECONDS", "1.0"))
        self.FULL_TEST_QUESTION_COUNT = int(os.getenv("FULL_TEST_QUESTION_COUNT", "89"))
        self.PRACTICE_QUESTION_COUNT = int(os.getenv("PRACTICE_QUESTION_COUNT", "20"))
        self.RECENT_QUESTION_DAYS = int(os.getenv("RECENT_QUESTION_DAYS", "7"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.SYNC_MAX_ATTEMPTS < 1:
            raise RuntimeError("SYNC_MAX_ATTEMPTS must be >= 1")


settings = Settings()
