"""Pytest configuration and fixtures."""

import logging

import pytest


@pytest.fixture(autouse=True)
def _market_debug_logging(caplog):
    """Capture pricepulse logs at DEBUG so a failing test shows the full trail."""
    caplog.set_level(logging.DEBUG, logger="pricepulse")
