"""Configuration module for QueryLift shared settings."""

from .settings import DEFAULT_SYSTEM_PROMPT, Settings, get_settings

__all__ = ["DEFAULT_SYSTEM_PROMPT", "Settings", "get_settings"]
