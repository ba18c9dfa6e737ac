"""Core package for the investdesk investment tracking service."""

from __future__ import annotations

from typing import Any

from .config import ConfigurationError, Settings, load_settings
from .database import Database


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "ConfigurationError",
    "Database",
    "Settings",
    "create_app",
    "load_settings",
]
