"""Utility functions package."""

from chat_client_kit.utils.logger import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
