import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./chesscoach.db")

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:5173"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "1440"))

DEFAULT_COACH_USERNAME = os.getenv("DEFAULT_COACH_USERNAME", "coach")
DEFAULT_COACH_PASSWORD = os.getenv("DEFAULT_COACH_PASSWORD", "coach123")
DEFAULT_COACH_NAME = os.getenv("DEFAULT_COACH_NAME", "Head Coach")
DEFAULT_STUDENT_PASSWORD = os.getenv("DEFAULT_STUDENT_PASSWORD", "student123")

PUZZLES_PAGE_SIZE = int(os.getenv("PUZZLES_PAGE_SIZE", "20"))
CLASS_EARLY_START_MINUTES = int(os.getenv("CLASS_EARLY_START_MINUTES", "10"))

AUTO_END_ENABLED = _get_bool(os.getenv("AUTO_END_ENABLED"), default=True)
AUTO_END_INTERVAL_SECONDS = int(os.getenv("AUTO_END_INTERVAL_SECONDS", "60"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if APP_ENV.lower() == "production" and DEFAULT_COACH_PASSWORD == "coach123":
        raise RuntimeError("DEFAULT_COACH_PASSWORD must be set in production.")
