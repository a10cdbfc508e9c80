import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_ISSUER = os.getenv("JWT_ISSUER", "clinic-appointments")
JWT_EXPIRES_MINUTES = _get_int(os.getenv("JWT_EXPIRES_MINUTES"), 60)

# Used when a booking request omits end_time.
DEFAULT_APPOINTMENT_MINUTES = _get_int(os.getenv("DEFAULT_APPOINTMENT_MINUTES"), 30)

# Bounded wait for the per doctor/day confirmation lock.
CONFIRMATION_LOCK_TIMEOUT_SECONDS = _get_float(os.getenv("CONFIRMATION_LOCK_TIMEOUT_SECONDS"), 5.0)
BUSY_RETRY_AFTER_SECONDS = _get_int(os.getenv("BUSY_RETRY_AFTER_SECONDS"), 1)

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if DEFAULT_APPOINTMENT_MINUTES <= 0:
        raise RuntimeError("DEFAULT_APPOINTMENT_MINUTES must be positive.")
    if CONFIRMATION_LOCK_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("CONFIRMATION_LOCK_TIMEOUT_SECONDS must be positive.")
