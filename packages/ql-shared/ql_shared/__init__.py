"""QueryLift Shared Infrastructure.

This package provides shared components for the QueryLift engine:
- config: Shared settings management
- errors: Error taxonomy
- llm: Token cache and chat-completion clients (cloud and local targets)
- database: SQLAlchemy models and connection management
"""

__version__ = "0.1.0"

from .config.settings import Settings, get_settings
from .database.models import Base

__all__ = [
    "Settings",
    "get_settings",
    "Base",
]
