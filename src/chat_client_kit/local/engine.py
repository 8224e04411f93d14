"""MLX model containers and the worker-thread bridge used to drive them."""

import asyncio
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from chat_client_kit.core.errors import InvalidConfigurationError
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)


class ModelKind(str, Enum):
    """Kind of local model."""

    LLM = "llm"
    VLM = "vlm"


@dataclass(frozen=True)
class ModelConfiguration:
    """Location and identity of a local model."""

    identifier: str
    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @classmethod
    def from_directory(cls, directory: str | Path) -> "ModelConfiguration":
        """Build a configuration for a model directory.

        Raises:
            InvalidConfigurationError: If the directory does not exist
        """
        path = Path(directory).expanduser().resolve()
        if not path.is_dir():
            raise InvalidConfigurationError(f"Model directory not found: {path}")
        return cls(identifier=str(path), path=path)


class ModelContainer(Protocol):
    """A loaded model able to generate text for chat turns.

    ``generate`` is blocking and yields text segments; it runs on a worker
    thread.
    """

    kind: ModelKind

    def generate(
        self,
        messages: list[dict[str, str]],
        images: list[Any],
        *,
        max_tokens: int,
        temperature: float | None,
    ) -> Iterator[str]:
        ...


class MLXLanguageModel:
    """Text-only model driven through ``mlx_lm``."""

    kind = ModelKind.LLM

    def __init__(self, model: Any, tokenizer: Any) -> None:
        self.model = model
        self.tokenizer = tokenizer

    @classmethod
    def load(cls, path: Path) -> "MLXLanguageModel":
        from mlx_lm import load

        model, tokenizer = load(str(path))
        return cls(model, tokenizer)

    def generate(
        self,
        messages: list[dict[str, str]],
        images: list[Any],
        *,
        max_tokens: int,
        temperature: float | None,
    ) -> Iterator[str]:
        from mlx_lm import stream_generate
        from mlx_lm.sample_utils import make_sampler

        prompt = self.tokenizer.apply_chat_template(
            messages, add_generation_prompt=True, tokenize=False
        )
        sampler = make_sampler(temp=temperature if temperature is not None else 0.0)
        for response in stream_generate(
            self.model, self.tokenizer, prompt, max_tokens=max_tokens, sampler=sampler
        ):
            yield response.text


class MLXVisionLanguageModel:
    """Vision-language model driven through ``mlx_vlm``."""

    kind = ModelKind.VLM

    def __init__(self, model: Any, processor: Any, config: Any) -> None:
        self.model = model
        self.processor = processor
        self.config = config

    @classmethod
    def load(cls, path: Path) -> "MLXVisionLanguageModel":
        from mlx_vlm import load
        from mlx_vlm.utils import load_config

        model, processor = load(str(path))
        return cls(model, processor, load_config(str(path)))

    def generate(
        self,
        messages: list[dict[str, str]],
        images: list[Any],
        *,
        max_tokens: int,
        temperature: float | None,
    ) -> Iterator[str]:
        from mlx_vlm import stream_generate
        from mlx_vlm.prompt_utils import apply_chat_template

        prompt = apply_chat_template(
            self.processor, self.config, messages, num_images=len(images)
        )
        for response in stream_generate(
            self.model,
            self.processor,
            prompt,
            image=images or None,
            max_tokens=max_tokens,
            temperature=temperature if temperature is not None else 0.0,
        ):
            yield response.text


async def iterate_in_thread(
    produce: Callable[[], Iterator[str]],
    name: str = "local-generation",
) -> AsyncIterator[str]:
    """Drive a blocking generator on a worker thread.

    Segments are forwarded to the running loop. Closing the async iterator
    sets a stop flag that the worker checks between segments, then waits
    for the worker to exit so the engine is idle before returning.

    Args:
        produce: Callable returning the blocking generator
        name: Worker thread name

    Yields:
        Text segments in generation order
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
    stop = threading.Event()
    finished = threading.Event()

    def worker() -> None:
        try:
            iterator = produce()
            try:
                for segment in iterator:
                    if stop.is_set():
                        break
                    loop.call_soon_threadsafe(queue.put_nowait, ("segment", segment))
            finally:
                close = getattr(iterator, "close", None)
                if close is not None:
                    close()
        except Exception as e:
            loop.call_soon_threadsafe(queue.put_nowait, ("error", e))
        else:
            loop.call_soon_threadsafe(queue.put_nowait, ("done", None))
        finally:
            finished.set()

    thread = threading.Thread(target=worker, name=name, daemon=True)
    thread.start()
    try:
        while True:
            kind, payload = await queue.get()
            if kind == "segment":
                yield payload
            elif kind == "error":
                raise payload
            else:
                break
    finally:
        stop.set()
        if not finished.is_set():
            logger.debug("local.generation.stopping", thread=name)
            await asyncio.to_thread(finished.wait)
