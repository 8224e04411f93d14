"""Backend routing."""

from chat_client_kit.providers.registry import BackendEntry, BackendRegistry

__all__ = ["BackendEntry", "BackendRegistry"]
