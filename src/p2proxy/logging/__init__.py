"""Logging configuration for the p2 proxy."""

from .setup import LOGGER_NAME, configure_logging

__all__ = ["LOGGER_NAME", "configure_logging"]
