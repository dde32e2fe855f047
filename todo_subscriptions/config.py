"""Configuration management - loads billing.yaml and environment variables.

Settings are built once at startup into an immutable ``Settings`` object and
handed to each component. Nothing re-reads the environment per call.
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from todo_subscriptions.models import BillingFileConfig, PlanDefinition, ProcessorConfig, SweeperConfig
from todo_subscriptions.utils.billing_period import billing_period_to_timedelta

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "billing.yaml"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or a required setting is missing."""

    pass


class Settings(BaseModel):
    """Immutable process-wide settings.

    Secrets are optional at load time; operations that need one call the
    matching ``require_*`` accessor, which raises ConfigurationError.
    """

    paystack_secret_key: Optional[str] = Field(None, description="Processor secret API key")
    paystack_public_key: Optional[str] = Field(None, description="Processor public key (checkout clients)")
    paystack_plan_code: Optional[str] = Field(None, description="Processor plan code for the paid plan")
    webhook_secret: Optional[str] = Field(None, description="Webhook signing secret")
    jwt_secret: Optional[str] = Field(None, description="Bearer token signing secret")
    database_url: Optional[str] = Field(None, description="SQLAlchemy URL; in-memory store when unset")

    plan: PlanDefinition = Field(default_factory=PlanDefinition)
    processor: ProcessorConfig = Field(default_factory=ProcessorConfig)
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)

    class Config:
        frozen = True

    @property
    def subscription_period(self) -> timedelta:
        """Access period granted by one successful payment."""
        return billing_period_to_timedelta(self.plan.period)

    def require_secret_key(self) -> str:
        if not self.paystack_secret_key:
            raise ConfigurationError("Paystack secret key is not configured")
        return self.paystack_secret_key

    def require_plan_code(self) -> str:
        if not self.paystack_plan_code:
            raise ConfigurationError("Paystack subscription plan code is not configured")
        return self.paystack_plan_code

    def require_webhook_secret(self) -> str:
        if not self.webhook_secret:
            raise ConfigurationError("Webhook signing secret is not configured")
        return self.webhook_secret

    def require_jwt_secret(self) -> str:
        if not self.jwt_secret:
            raise ConfigurationError("JWT secret is not configured")
        return self.jwt_secret


def _resolve_config_path(config_path: Optional[str], environ: Mapping[str, str]) -> Path:
    """Resolve configuration file path from argument, env var, or default."""
    if config_path:
        return Path(config_path)

    env_path = environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)

    return DEFAULT_CONFIG_PATH


def _load_file_config(path: Path) -> BillingFileConfig:
    """Load and validate billing.yaml."""
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}\n"
            f"Please create config/billing.yaml or set CONFIG_PATH environment variable"
        )

    try:
        with open(path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML configuration: {e}")

    if not raw_config:
        raise ConfigurationError(f"Configuration file is empty: {path}")

    try:
        return BillingFileConfig(**raw_config)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed:\n{e}")


def _env(environ: Mapping[str, str], key: str) -> Optional[str]:
    value = environ.get(key, "").strip()
    return value or None


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build settings from billing.yaml and the environment.

    Args:
        config_path: Path to billing.yaml. Falls back to CONFIG_PATH, then
                     ./config/billing.yaml next to the package
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Frozen Settings instance

    Raises:
        ConfigurationError: If the file is missing, empty or invalid
    """
    environ = os.environ if environ is None else environ
    file_config = _load_file_config(_resolve_config_path(config_path, environ))

    secret_key = _env(environ, "PAYSTACK_SECRET_KEY")
    return Settings(
        paystack_secret_key=secret_key,
        paystack_public_key=_env(environ, "PAYSTACK_PUBLIC_KEY"),
        paystack_plan_code=_env(environ, "PAYSTACK_SUBSCRIPTION_PLAN_CODE"),
        # The processor signs webhooks with the account secret key
        webhook_secret=_env(environ, "PAYSTACK_WEBHOOK_SECRET") or secret_key,
        jwt_secret=_env(environ, "JWT_SECRET"),
        database_url=_env(environ, "DATABASE_URL"),
        plan=file_config.plan,
        processor=file_config.processor,
        sweeper=file_config.sweeper,
    )


# Global settings instance
_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance (singleton, loaded on first use)."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = load_settings()
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() reloads them."""
    global _settings_instance
    _settings_instance = None
