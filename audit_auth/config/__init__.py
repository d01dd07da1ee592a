"""
Configuration module for the audit platform authentication core.

This module provides configuration settings for the authentication core.
"""

from audit_auth.config.settings import Settings, settings, get_settings
from audit_auth.config.jwt_config import (
    get_jwt_settings,
    get_token_expiry,
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH
)

__all__ = [
    "get_jwt_settings",
    "get_token_expiry",
    "TOKEN_TYPE_ACCESS",
    "TOKEN_TYPE_REFRESH",
    "Settings",
    "settings",
    "get_settings"
]
