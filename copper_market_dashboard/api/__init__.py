"""HTTP endpoints."""

from copper_market_dashboard.api.app import app, create_app

__all__ = ["app", "create_app"]
