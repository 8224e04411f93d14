"""Unified chat-completion client for remote, local and on-device backends."""

__version__ = "0.1.0"
