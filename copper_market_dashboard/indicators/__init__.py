"""Indicator bundle building and inventory aggregation."""

from copper_market_dashboard.indicators.bundle import EconomyBundleBuilder, RebuildResult
from copper_market_dashboard.indicators.warrant import WarrantDashboardAggregator

__all__ = ["EconomyBundleBuilder", "RebuildResult", "WarrantDashboardAggregator"]
