"""
qbreport configuration management.

Supports loading from YAML files, a ``.env`` file, environment variables
and keyword overrides. The result is loaded once at startup and passed
explicitly to every component.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

from qbreport.errors import ConfigurationError

# QuickBooks OAuth2 and API endpoints
QBO_AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
QBO_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
QBO_BASE_URL = "https://quickbooks.api.intuit.com"
QBO_SANDBOX_URL = "https://sandbox-quickbooks.api.intuit.com"

# env var -> (section, field)
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "QUICKBOOKS_CLIENT_ID": ("quickbooks", "client_id"),
    "QUICKBOOKS_CLIENT_SECRET": ("quickbooks", "client_secret"),
    "QUICKBOOKS_CALLBACK_BASE_URL": ("quickbooks", "callback_base_url"),
    "QUICKBOOKS_REFRESH_TOKEN": ("quickbooks", "refresh_token"),
    "QUICKBOOKS_REALM_ID": ("quickbooks", "realm_id"),
    "QUICKBOOKS_SANDBOX": ("quickbooks", "sandbox"),
    "QBREPORT_TOKEN_FILE": ("server", "token_file"),
    "QBREPORT_HOST": ("server", "host"),
    "QBREPORT_PORT": ("server", "port"),
    "QBREPORT_TOKEN_PASSPHRASE": ("security", "token_passphrase"),
}

_REQUIRED: dict[str, str] = {
    "client_id": "QUICKBOOKS_CLIENT_ID",
    "client_secret": "QUICKBOOKS_CLIENT_SECRET",
    "callback_base_url": "QUICKBOOKS_CALLBACK_BASE_URL",
    "refresh_token": "QUICKBOOKS_REFRESH_TOKEN",
    "realm_id": "QUICKBOOKS_REALM_ID",
}


class QuickBooksConfig(BaseModel):
    """OAuth2 client credentials and company (realm) settings."""

    client_id: str = ""
    client_secret: str = ""
    callback_base_url: str = Field(default="", description="Public base URL; /callback is appended")
    refresh_token: str = Field(default="", description="Bootstrap refresh token, used when the store is empty")
    realm_id: str = ""
    scopes: list[str] = Field(default_factory=lambda: ["com.intuit.quickbooks.accounting"])
    sandbox: bool = False
    auth_url: str = QBO_AUTH_URL
    token_url: str = QBO_TOKEN_URL

    @property
    def redirect_url(self) -> str:
        return f"{self.callback_base_url.rstrip('/')}/callback"

    @property
    def api_base_url(self) -> str:
        return QBO_SANDBOX_URL if self.sandbox else QBO_BASE_URL


class ReportConfig(BaseModel):
    """Shape of the consolidated report queries."""

    period: Literal["trailing", "month"] = Field(
        default="trailing",
        description="'trailing': last window_days days; 'month': the current calendar month",
    )
    window_days: int = Field(default=28, ge=1, description="Trailing window for purchases and deposits")
    max_results: int = Field(default=1000, ge=1, le=1000, description="QBO query result cap")
    excluded_account: str = Field(default="Change Machine", description="Bank account left out of the report")


class ServerConfig(BaseModel):
    """HTTP server and token persistence settings."""

    host: str = "0.0.0.0"
    port: int = 8080
    token_file: str = ".token"
    http_timeout: float = Field(default=30.0, gt=0, description="Outbound request timeout in seconds")
    login_state: str = "state"


class SecurityConfig(BaseModel):
    """Token-at-rest settings."""

    encrypt_token_file: bool = Field(default=False, description="Store the refresh token Fernet-encrypted")
    token_passphrase: str | None = Field(default=None, description="Passphrase for the token encryption key")


class QBReportConfig(BaseModel):
    """Root configuration for qbreport."""

    quickbooks: QuickBooksConfig = Field(default_factory=QuickBooksConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    @classmethod
    def load(cls, config_path: str | None = None, *, dotenv: bool = True, **overrides: Any) -> QBReportConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

        # 2. Override from environment variables (.env never overrides the real environment)
        if dotenv:
            env_file = find_dotenv(usecwd=True)
            if env_file:
                load_dotenv(env_file, override=False)

        for env_name, (section, field_name) in _ENV_FIELDS.items():
            value = os.environ.get(env_name)
            if value is None or value == "":
                continue
            if env_name == "QUICKBOOKS_SANDBOX":
                value = value.lower() in ("1", "true", "yes")
            block = data.get(section) or {}
            block[field_name] = value
            data[section] = block

        # 3. Apply keyword overrides
        data.update(overrides)

        return cls.model_validate(data)

    def require(self) -> QBReportConfig:
        """Check that every required QuickBooks setting is present.

        Raises:
            ConfigurationError: Listing every missing environment variable.
        """
        missing = [
            env_name
            for field_name, env_name in _REQUIRED.items()
            if not str(getattr(self.quickbooks, field_name) or "").strip()
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                missing=missing,
            )
        if self.security.encrypt_token_file and not self.security.token_passphrase:
            raise ConfigurationError(
                "Token encryption is enabled but QBREPORT_TOKEN_PASSPHRASE is not set",
                missing=["QBREPORT_TOKEN_PASSPHRASE"],
            )
        return self
