"""Routing of model identifiers to chat service backends."""

from dataclasses import dataclass, field
from typing import Any

from chat_client_kit.backends.base import ChatService
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)


@dataclass
class BackendEntry:
    """A registered backend."""

    id: str
    service: ChatService
    models: list[str] = field(default_factory=list)
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "backend": self.service.name,
            "models": self.models,
            "enabled": self.enabled,
        }


class BackendRegistry:
    """Registry for chat service backends."""

    def __init__(self) -> None:
        """Initialize registry with no backends."""
        self._backends: dict[str, BackendEntry] = {}
        self._default_backend: str | None = None

    def __len__(self) -> int:
        return len(self._backends)

    def add_backend(
        self,
        backend_id: str,
        service: ChatService,
        models: list[str] | None = None,
        set_default: bool = False,
    ) -> BackendEntry:
        """Add or replace a backend.

        Args:
            backend_id: Backend ID, also usable as a model prefix
            service: Chat service answering requests
            models: Model names routed to this backend
            set_default: Whether to set as default backend

        Returns:
            The registered entry
        """
        entry = BackendEntry(id=backend_id, service=service, models=list(models or []))
        self._backends[backend_id] = entry
        logger.info("backend.added", backend_id=backend_id, backend=service.name)

        if set_default or self._default_backend is None:
            self._default_backend = backend_id
            logger.info("backend.set_default", backend_id=backend_id)
        return entry

    def remove_backend(self, backend_id: str) -> bool:
        """Remove a backend.

        Args:
            backend_id: Backend ID

        Returns:
            True if removed, False if not found
        """
        if backend_id not in self._backends:
            return False

        del self._backends[backend_id]
        logger.info("backend.removed", backend_id=backend_id)

        if self._default_backend == backend_id:
            self._default_backend = next(iter(self._backends.keys()), None)
        return True

    def get_backend(self, backend_id: str | None = None) -> BackendEntry | None:
        """Get backend by ID or the default one."""
        if backend_id is None:
            backend_id = self._default_backend
        if backend_id is None:
            return None
        return self._backends.get(backend_id)

    def resolve(self, model: str | None) -> tuple[BackendEntry | None, str | None]:
        """Find the backend for a model identifier.

        ``"<backend id>:<model>"`` selects a backend explicitly and strips
        the prefix. Otherwise the first enabled backend listing the model
        wins, then the default backend.

        Args:
            model: Model identifier from the request

        Returns:
            Tuple of (entry or None, model name to send)
        """
        model = model or ""
        if ":" in model:
            prefix, actual_model = model.split(":", 1)
            entry = self._backends.get(prefix)
            if entry is not None and entry.enabled:
                return entry, actual_model or None

        for entry in self._backends.values():
            if entry.enabled and model in entry.models:
                return entry, model

        entry = self.get_backend()
        if entry is not None and not entry.enabled:
            entry = None
        return entry, model or None

    def set_default(self, backend_id: str) -> bool:
        """Set default backend.

        Returns:
            True if successful, False if backend not found
        """
        if backend_id not in self._backends:
            return False
        self._default_backend = backend_id
        logger.info("backend.set_default", backend_id=backend_id)
        return True

    def list_backends(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self._backends.values()]
