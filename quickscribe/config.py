"""Service configuration loaded from environment variables.

Settings.from_env() is called once at startup; missing required values
raise ConfigError immediately instead of failing on first use.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from quickscribe.asr.groq import DEFAULT_ACCURATE_MODEL, DEFAULT_FAST_MODEL
from quickscribe.asr.interaction import DEFAULT_INTERACTION_MODEL
from quickscribe.asr.titles import DEFAULT_TITLE_MODEL
from quickscribe.utils.errors import ConfigError

REQUIRED_VARIABLES = (
    "GROQ_API_KEY",
    "BLOB_ENDPOINT",
    "BLOB_BUCKET",
    "JOB_STORE_URL",
    "JOB_STORE_SECRET",
)


@dataclass
class Settings:
    """Runtime configuration for the worker."""

    groq_api_key: str
    blob_endpoint: str
    blob_bucket: str
    job_store_url: str
    job_store_secret: str
    assemblyai_api_key: str = ""
    groq_fast_model: str = DEFAULT_FAST_MODEL
    groq_accurate_model: str = DEFAULT_ACCURATE_MODEL
    title_model: str = DEFAULT_TITLE_MODEL
    interaction_model: str = DEFAULT_INTERACTION_MODEL
    blob_public_base_url: str = ""
    blob_access_key_id: str = ""
    blob_secret_access_key: str = ""
    extraction_timeout_seconds: int = 300
    download_timeout_seconds: int = 300
    queue_api_url: str = ""
    queue_id: str = ""
    queue_api_token: str = ""
    port: int = 8080

    @property
    def diarization_enabled(self) -> bool:
        return bool(self.assemblyai_api_key)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build Settings from the environment.

        Args:
            environ: Mapping to read instead of os.environ (for tests).

        Raises:
            ConfigError: If a required variable is missing or a number
                cannot be parsed.
        """
        env = os.environ if environ is None else environ

        missing = [name for name in REQUIRED_VARIABLES if not env.get(name)]
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}",
                setting=missing[0],
            )

        return cls(
            groq_api_key=env["GROQ_API_KEY"],
            blob_endpoint=env["BLOB_ENDPOINT"],
            blob_bucket=env["BLOB_BUCKET"],
            job_store_url=env["JOB_STORE_URL"],
            job_store_secret=env["JOB_STORE_SECRET"],
            assemblyai_api_key=env.get("ASSEMBLYAI_API_KEY", ""),
            groq_fast_model=env.get("GROQ_FAST_MODEL", DEFAULT_FAST_MODEL),
            groq_accurate_model=env.get(
                "GROQ_ACCURATE_MODEL", DEFAULT_ACCURATE_MODEL
            ),
            title_model=env.get("TITLE_MODEL", DEFAULT_TITLE_MODEL),
            interaction_model=env.get(
                "INTERACTION_MODEL", DEFAULT_INTERACTION_MODEL
            ),
            blob_public_base_url=env.get("BLOB_PUBLIC_BASE_URL", ""),
            blob_access_key_id=env.get("BLOB_ACCESS_KEY_ID", ""),
            blob_secret_access_key=env.get("BLOB_SECRET_ACCESS_KEY", ""),
            extraction_timeout_seconds=_get_int(
                env, "EXTRACTION_TIMEOUT_SECONDS", 300
            ),
            download_timeout_seconds=_get_int(env, "DOWNLOAD_TIMEOUT_SECONDS", 300),
            queue_api_url=env.get("CF_QUEUE_API_URL", ""),
            queue_id=env.get("CF_QUEUE_ID", ""),
            queue_api_token=env.get("CF_API_TOKEN", ""),
            port=_get_int(env, "PORT", 8080),
        )


def _get_int(env: dict[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ConfigError(
            f"{name} must be an integer, got '{value}'", setting=name
        ) from exc
    if parsed <= 0:
        raise ConfigError(f"{name} must be positive, got {parsed}", setting=name)
    return parsed
