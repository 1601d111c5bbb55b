"""Configuration module for the ArqCashflow series engine."""

from arq_cashflow.config.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    stringify_values,
)
from arq_cashflow.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
    "stringify_values",
    "bind_request_context",
    "clear_request_context",
]
