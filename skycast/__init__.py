"""Skycast: dynamic cash-out valuation for weather wagers."""
