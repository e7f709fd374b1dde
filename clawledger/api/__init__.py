"""
REST, webhook and live-feed API for ClawLedger.
"""

from .routes import router, create_api_app

__all__ = ["router", "create_api_app"]
