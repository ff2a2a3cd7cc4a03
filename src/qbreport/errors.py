"""
Exception hierarchy for qbreport.

Every failure raised by the library derives from :class:`QBReportError`
so the HTTP layer and the CLI can map it to a status code or exit code.
"""

from __future__ import annotations


class QBReportError(Exception):
    """Base class for all qbreport errors."""


class ConfigurationError(QBReportError):
    """A required configuration value is missing or invalid."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class TokenStoreError(QBReportError):
    """The refresh token could not be read from or written to the store."""


class TokenNotFoundError(TokenStoreError):
    """The store holds no refresh token (file absent or empty)."""


class AuthExchangeError(QBReportError):
    """The OAuth2 provider rejected a token exchange, or could not be reached.

    ``status_code`` is ``None`` when the request never got a response.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamQueryError(QBReportError):
    """A QuickBooks query failed."""

    def __init__(self, entity: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{entity} query failed: {message}")
        self.entity = entity
        self.status_code = status_code


class CallbackValidationError(QBReportError):
    """The OAuth2 callback is missing one or more required parameters."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing callback parameters: {', '.join(missing)}")
        self.missing = missing
