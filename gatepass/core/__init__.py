"""Core configuration and utilities package."""

from gatepass.core.config import Settings, get_settings
from gatepass.core.logging import get_logger, set_correlation_id, setup_logging
from gatepass.core.security import (
    CredentialClaims,
    CredentialCodec,
    check_rate_limit,
    get_credential_codec,
    verify_api_key,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Logging
    "get_logger",
    "set_correlation_id",
    "setup_logging",
    # Security
    "CredentialClaims",
    "CredentialCodec",
    "check_rate_limit",
    "get_credential_codec",
    "verify_api_key",
]
