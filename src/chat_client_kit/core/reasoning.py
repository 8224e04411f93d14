"""Separation of reasoning markup from visible content."""

from chat_client_kit.models import ChoiceMessage, Delta
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)

REASONING_START_TOKEN = "<think>"
REASONING_END_TOKEN = "</think>"


def partial_marker_length(text: str, marker: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``marker``."""
    for size in range(min(len(text), len(marker) - 1), 0, -1):
        if text.endswith(marker[:size]):
            return size
    return 0


class ReasoningContentParser:
    """Splits a reasoning span out of complete message content."""

    def __init__(
        self,
        start_token: str = REASONING_START_TOKEN,
        end_token: str = REASONING_END_TOKEN,
    ) -> None:
        self.start_token = start_token
        self.end_token = end_token

    def extract(self, message: ChoiceMessage) -> ChoiceMessage:
        """Move the first ``start...end`` span of the content into reasoning_content.

        Messages that already carry native reasoning are returned unchanged.
        """
        if message.reasoning or message.reasoning_content or not message.content:
            return message

        content = message.content
        start = content.find(self.start_token)
        if start == -1:
            return message
        reasoning_start = start + len(self.start_token)
        end = content.find(self.end_token, reasoning_start)
        if end == -1:
            return message

        reasoning = content[reasoning_start:end].strip()
        remaining = (content[:start] + content[end + len(self.end_token):]).strip()
        return message.model_copy(
            update={"content": remaining or None, "reasoning_content": reasoning}
        )

    def stream_splitter(self) -> "ReasoningStreamSplitter":
        return ReasoningStreamSplitter(self.start_token, self.end_token)


class ReasoningStreamSplitter:
    """Stateful splitter for streamed text.

    Fragments may cut a marker anywhere. The splitter holds back only the
    shortest suffix that could still grow into the marker it is waiting for,
    so a partial marker is never emitted as visible content. Whitespace
    on either side of a marker is dropped, so trailing whitespace is held
    back until the next fragment shows whether a marker follows.
    """

    def __init__(
        self,
        start_token: str = REASONING_START_TOKEN,
        end_token: str = REASONING_END_TOKEN,
    ) -> None:
        self.start_token = start_token
        self.end_token = end_token
        self._inside = False
        self._buffer = ""
        self._strip_leading = False

    @property
    def inside_reasoning(self) -> bool:
        return self._inside

    @property
    def pending(self) -> str:
        """Text held back while marker ambiguity is unresolved."""
        return self._buffer

    def feed(self, fragment: str) -> list[Delta]:
        """Consume a fragment and return the deltas that are now unambiguous."""
        deltas: list[Delta] = []
        self._buffer += fragment

        while True:
            marker = self._awaited_marker()
            position = self._buffer.find(marker)
            if position == -1:
                break
            self._emit(self._buffer[:position].rstrip(), deltas)
            self._buffer = self._buffer[position + len(marker):]
            self._inside = not self._inside
            self._strip_leading = True
            logger.debug("reasoning.marker", inside=self._inside)

        held = partial_marker_length(self._buffer, self._awaited_marker())
        ready = self._buffer[: len(self._buffer) - held].rstrip()
        self._buffer = self._buffer[len(ready):]
        self._emit(ready, deltas)
        return deltas

    def flush(self) -> list[Delta]:
        """Emit whatever is held back once the stream has ended.

        An unterminated reasoning span stays reasoning. A held-back suffix
        outside reasoning can no longer become a marker and is emitted as
        content.
        """
        deltas: list[Delta] = []
        remaining, self._buffer = self._buffer, ""
        self._emit(remaining, deltas)
        return deltas

    def _awaited_marker(self) -> str:
        return self.end_token if self._inside else self.start_token

    def _emit(self, text: str, deltas: list[Delta]) -> None:
        if self._strip_leading:
            text = text.lstrip()
            if not text:
                return
            self._strip_leading = False
        if not text:
            return

        if deltas:
            last = deltas[-1]
            if self._inside and last.reasoning_content is not None:
                last.reasoning_content += text
                return
            if not self._inside and last.content is not None:
                last.content += text
                return

        if self._inside:
            deltas.append(Delta(reasoning_content=text))
        else:
            deltas.append(Delta(content=text))
