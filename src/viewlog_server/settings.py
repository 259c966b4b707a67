from __future__ import annotations

import os
from typing import Dict, List, Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logging_config import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "VIEWLOG_"
FALLBACK_PORT = 3000

DEFAULT_PERMISSIONS_POLICY = (
    "accelerometer=*, camera=*, geolocation=*, gyroscope=*, "
    "magnetometer=*, microphone=*, payment=*, usb=*"
)


class ConfigError(Exception):
    """Raised when the environment does not describe a valid configuration."""

    def __init__(self, field_errors: Dict[str, List[str]]):
        self.field_errors = field_errors
        details = "; ".join(f"{k}: {', '.join(v)}" for k, v in field_errors.items())
        super().__init__(f"Invalid environment variables: {details}")

    @classmethod
    def from_validation_error(cls, exc: ValidationError) -> "ConfigError":
        field_errors: Dict[str, List[str]] = {}
        for err in exc.errors():
            loc = ".".join(str(part) for part in err["loc"]) or "__root__"
            field_errors.setdefault(f"{ENV_PREFIX}{loc.upper()}", []).append(err["msg"])
        return cls(field_errors)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    env: Literal["development", "test", "production"] = Field(
        default="development", description="Deployment environment."
    )
    host: str = Field(default="127.0.0.1", description="Listen address.")
    port: int = Field(..., description="Required. Listen port.")
    log_level: Literal["info", "timer", "debug", "warn", "error"] = Field(
        default="info", description="Log verbosity."
    )
    service_name: str = Field(default="views", description="Service name attached to emitted events.")

    trust_proxy: bool = Field(
        default=False,
        description="Take the client address from X-Forwarded-For instead of the socket peer.",
    )

    geo_url_template: str = Field(
        default="http://ip-api.com/json/{ip}",
        description="Geolocation lookup URL; {ip} is replaced by the client address.",
    )
    geo_timeout_s: Optional[float] = Field(
        default=None, description="Geolocation request timeout. Unset uses the HTTP client default."
    )

    parse_user_agents: bool = Field(default=True, description="Replace the raw user-agent with a parsed breakdown.")
    capture_body: bool = Field(default=True, description="Capture and parse request bodies into view events.")
    max_body_bytes: int = Field(default=256 * 1024, description="Max request body bytes to parse.")

    permissions_policy: str = Field(
        default=DEFAULT_PERMISSIONS_POLICY, description="Permissions-Policy header sent on every response."
    )
    login_path: str = Field(default="/login", description="Form action of the admin login page.")

    skip_env_validation: bool = Field(default=False, description="Warn instead of failing on invalid settings.")


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() not in ("", "0", "false", "no", "off")


def _validation_bypassed() -> bool:
    if _truthy(os.environ.get(f"{ENV_PREFIX}SKIP_ENV_VALIDATION")):
        return True
    return os.environ.get(f"{ENV_PREFIX}ENV", "").strip().lower() == "test"


def load_settings(**overrides) -> Settings:
    """Read and validate settings from the environment.

    Called once at process entry. Raises ConfigError on invalid or missing
    values unless validation is bypassed (skip flag or test environment), in
    which case the error is logged and defaults are used instead.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        error = ConfigError.from_validation_error(exc)
        if not (overrides.get("skip_env_validation") or _validation_bypassed()):
            raise error from exc
        logger.warning("Ignoring invalid environment variables: %s", error.field_errors)

        # Replace only the offending fields; valid values are kept.
        repaired = dict(overrides)
        for name in {err["loc"][0] for err in exc.errors() if err["loc"]}:
            field = Settings.model_fields.get(name)
            if field is None:
                continue
            repaired[name] = FALLBACK_PORT if field.is_required() else field.get_default(call_default_factory=True)
        repaired["skip_env_validation"] = True
        return Settings(**repaired)
