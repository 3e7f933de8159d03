"""Real-time market data hub.

Public API:
    create_app      - FastAPI application factory
    Settings        - Environment-driven configuration
"""

from .config import Settings
from .main import create_app

__all__ = ["Settings", "create_app"]
