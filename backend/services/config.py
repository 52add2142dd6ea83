"""Environment-driven settings. Values are read on each call so tests can patch os.environ."""

import os

DEFAULT_JOB_TTL_SECONDS = 30 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60
DEFAULT_HEARTBEAT_SECONDS = 15
DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_IMAGE_MODEL = "imagen-4.0-generate-001"
DEFAULT_REFERENCE_IMAGE_MODEL = "gemini-2.5-flash-image"


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return max(float(raw), minimum)
    except ValueError:
        return default


def is_mock_mode() -> bool:
    return os.environ.get("STORYBOARD_MOCK_MODE", "").strip() == "1"


def get_gemini_api_key() -> str:
    return os.environ.get("GEMINI_API_KEY", "").strip()


def get_text_model() -> str:
    return os.environ.get("GEMINI_TEXT_MODEL", "").strip() or DEFAULT_TEXT_MODEL


def get_image_model() -> str:
    return os.environ.get("GEMINI_IMAGE_MODEL", "").strip() or DEFAULT_IMAGE_MODEL


def get_reference_image_model() -> str:
    return os.environ.get("GEMINI_REFERENCE_IMAGE_MODEL", "").strip() or DEFAULT_REFERENCE_IMAGE_MODEL


def get_jwt_secret() -> str:
    return os.environ.get("JWT_SECRET", "").strip()


def get_job_ttl_seconds() -> float:
    return _env_float("JOB_TTL_SECONDS", DEFAULT_JOB_TTL_SECONDS)


def get_sweep_interval_seconds() -> float:
    return _env_float("JOB_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS, minimum=1.0)


def get_heartbeat_seconds() -> float:
    return _env_float("SSE_HEARTBEAT_SECONDS", DEFAULT_HEARTBEAT_SECONDS, minimum=0.5)


def get_cors_origins() -> list[str]:
    raw = os.environ.get("CORS_ORIGINS", "").strip()
    if not raw:
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
