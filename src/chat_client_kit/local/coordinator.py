"""Single-flight cache of the loaded local model."""

import asyncio
from dataclasses import dataclass
from typing import Protocol

from chat_client_kit.local.engine import (
    MLXLanguageModel,
    MLXVisionLanguageModel,
    ModelConfiguration,
    ModelContainer,
    ModelKind,
)
from chat_client_kit.metrics import MetricsExporter
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModelKey:
    """Cache key of a loaded model."""

    identifier: str
    kind: ModelKind


class ModelLoader(Protocol):
    """Loads model containers."""

    async def load_llm(self, configuration: ModelConfiguration) -> ModelContainer:
        ...

    async def load_vlm(self, configuration: ModelConfiguration) -> ModelContainer:
        ...


class MLXModelLoader:
    """Loads MLX models on a worker thread."""

    async def load_llm(self, configuration: ModelConfiguration) -> ModelContainer:
        return await asyncio.to_thread(MLXLanguageModel.load, configuration.path)

    async def load_vlm(self, configuration: ModelConfiguration) -> ModelContainer:
        return await asyncio.to_thread(MLXVisionLanguageModel.load, configuration.path)


class ModelCoordinator:
    """Keeps at most one model loaded and shares in-flight loads.

    Concurrent requests for the same key await one load task. Requesting a
    different key evicts the cached model and cancels a load still running
    for the old key. State only changes while holding the lock.
    """

    def __init__(self, loader: ModelLoader | None = None) -> None:
        self.loader = loader or MLXModelLoader()
        self._lock = asyncio.Lock()
        self._cached_key: ModelKey | None = None
        self._cached: ModelContainer | None = None
        self._pending_key: ModelKey | None = None
        self._pending: asyncio.Task | None = None

    @property
    def cached_key(self) -> ModelKey | None:
        return self._cached_key

    @property
    def loading(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def container(
        self, configuration: ModelConfiguration, kind: ModelKind
    ) -> ModelContainer:
        """Get the container for a model, loading it if needed.

        Args:
            configuration: Model location
            kind: Model kind to load as

        Returns:
            Loaded container

        Raises:
            Exception: Whatever the loader raised
        """
        key = ModelKey(configuration.identifier, kind)
        async with self._lock:
            if self._cached_key == key and self._cached is not None:
                return self._cached

            if self._cached_key is not None:
                logger.info("local.model.evicted", model=self._cached_key.identifier)
                self._cached_key = None
                self._cached = None

            if self._pending is not None and self._pending_key != key:
                logger.info("local.model.load_superseded", model=self._pending_key.identifier)
                self._pending.cancel()
                self._pending = None
                self._pending_key = None

            if self._pending is None:
                logger.info("local.model.loading", model=key.identifier, kind=kind.value)
                self._pending = asyncio.get_running_loop().create_task(
                    self._load(configuration, key), name=f"load-{kind.value}"
                )
                self._pending_key = key
            task = self._pending

        return await asyncio.shield(task)

    async def reset(self) -> None:
        """Drop the cached model and cancel any in-flight load."""
        async with self._lock:
            if self._pending is not None:
                self._pending.cancel()
            self._pending = None
            self._pending_key = None
            self._cached = None
            self._cached_key = None
        logger.info("local.model.reset")

    async def _load(self, configuration: ModelConfiguration, key: ModelKey) -> ModelContainer:
        task = asyncio.current_task()
        try:
            if key.kind is ModelKind.VLM:
                container = await self.loader.load_vlm(configuration)
            else:
                container = await self.loader.load_llm(configuration)
        except asyncio.CancelledError:
            MetricsExporter.record_model_load(key.kind.value, "cancelled")
            raise
        except Exception as e:
            logger.error("local.model.load_failed", model=key.identifier, error=str(e))
            MetricsExporter.record_model_load(key.kind.value, "error")
            async with self._lock:
                if self._pending is task:
                    self._pending = None
                    self._pending_key = None
                    self._cached = None
                    self._cached_key = None
            raise

        async with self._lock:
            if self._pending is task:
                self._cached_key = key
                self._cached = container
                self._pending = None
                self._pending_key = None
        MetricsExporter.record_model_load(key.kind.value, "ok")
        logger.info("local.model.loaded", model=key.identifier, kind=key.kind.value)
        return container


_coordinator: ModelCoordinator | None = None


def get_model_coordinator() -> ModelCoordinator:
    """Get the process-wide model coordinator."""
    global _coordinator
    if _coordinator is None:
        _coordinator = ModelCoordinator()
    return _coordinator
