"""
Application configuration via Pydantic Settings.
All values can be overridden by environment variables or a .env file.
"""
from __future__ import annotations

from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from storage.filesystem import default_state_dir

_DIRECTORY_PRESETS = {
    "letsencrypt":         "https://acme-v02.api.letsencrypt.org/directory",
    "letsencrypt_staging": "https://acme-staging-v02.api.letsencrypt.org/directory",
}


class _CommaFallbackMixin:
    """Return the raw string when JSON parsing fails.

    pydantic-settings ≥2.7 calls json.loads() on complex-typed fields
    (e.g. List[str]) before field_validators run.  A plain comma-separated
    value like ``example.com,example.org`` is not valid JSON, so hand the raw
    string on to the field_validator, which splits it.
    """

    def prepare_field_value(self, field_name, field, value, value_is_complex):  # type: ignore[override]
        try:
            return super().prepare_field_value(field_name, field, value, value_is_complex)  # type: ignore[misc]
        except ValueError:
            return value


class _CSVEnvSource(_CommaFallbackMixin, EnvSettingsSource):
    pass


class _CSVDotEnvSource(_CommaFallbackMixin, DotEnvSettingsSource):
    pass


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Certificate authority ──────────────────────────────────────────────
    CA_PROVIDER: Literal["letsencrypt", "letsencrypt_staging", "custom"] = "letsencrypt"
    # Only consulted when CA_PROVIDER="custom"
    ACME_DIRECTORY_URL: str = ""
    CONTACT_EMAIL: str = ""

    # ── Azure ──────────────────────────────────────────────────────────────
    KEY_VAULT_NAME: str = ""
    AZURE_SUBSCRIPTION_ID: str = ""
    RESOURCE_GROUP: str = ""
    DNS_ZONES: List[str] = []          # empty = every zone in RESOURCE_GROUP

    # ── Service-principal login (unattended runs) ──────────────────────────
    RUN_AS_SERVICE: bool = False
    AZURE_TENANT_ID: str = ""
    AZURE_CLIENT_ID: str = ""
    AZURE_CLIENT_SECRET: str = ""
    LOGIN_MAX_ATTEMPTS: int = 10
    LOGIN_RETRY_DELAY_SECONDS: float = 6.0

    # ── Local state ────────────────────────────────────────────────────────
    STATE_DIR: str = default_state_dir()

    # ── DNS-01 / polling ───────────────────────────────────────────────────
    TXT_RECORD_TTL: int = 60
    VALIDATION_POLL_INTERVAL: float = 5
    CERTIFICATE_POLL_INTERVAL: float = 15
    POLL_TIMEOUT_SECONDS: float = 900

    # ── ACME TLS (for testing against Pebble / self-signed CAs) ───────────
    ACME_CA_BUNDLE: str = ""       # Path to CA cert bundle; empty = system default
    ACME_INSECURE: bool = False    # Skip TLS verification (never use in production)

    # ── Scheduling / logging ───────────────────────────────────────────────
    SCHEDULE_TIME: str = "06:00"
    LOG_LEVEL: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            _CSVEnvSource(settings_cls),
            _CSVDotEnvSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("DNS_ZONES", mode="before")
    @classmethod
    def parse_zones(cls, v: object) -> List[str]:
        """Accept comma-separated string or list."""
        if isinstance(v, str):
            return [z.strip() for z in v.split(",") if z.strip()]
        return v  # type: ignore[return-value]

    @model_validator(mode="after")
    def resolve_acme_directory(self) -> "Settings":
        if self.CA_PROVIDER in _DIRECTORY_PRESETS:
            self.ACME_DIRECTORY_URL = _DIRECTORY_PRESETS[self.CA_PROVIDER]
        elif not self.ACME_DIRECTORY_URL:
            raise ValueError("ACME_DIRECTORY_URL must be set when CA_PROVIDER='custom'")
        return self

    @model_validator(mode="after")
    def validate_service_principal(self) -> "Settings":
        if self.RUN_AS_SERVICE:
            missing = [
                k for k in ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET")
                if not getattr(self, k)
            ]
            if missing:
                raise ValueError(f"RUN_AS_SERVICE requires {', '.join(missing)}")
        return self

    def missing_required(self) -> List[str]:
        """Names of required settings that are still empty."""
        required = ("CONTACT_EMAIL", "KEY_VAULT_NAME", "AZURE_SUBSCRIPTION_ID", "RESOURCE_GROUP")
        return [k for k in required if not getattr(self, k)]


# Module-level singleton, imported everywhere.
settings = Settings()
