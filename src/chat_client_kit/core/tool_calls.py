"""Assembly of fragmented streamed tool calls."""

from dataclasses import dataclass, field

from chat_client_kit.models import DeltaToolCall, ToolCallRequest
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)


@dataclass
class PendingToolCall:
    """Tool call under assembly."""

    id: str | None = None
    name: str = ""
    fragments: list[str] = field(default_factory=list)

    @property
    def arguments(self) -> str:
        return "".join(self.fragments)


class ToolCallCollector:
    """Accumulates tool call fragments keyed by their response index.

    Ids may be missing on continuation fragments, so the index is the key.
    Fragments for different indices may interleave freely; fragments of the
    same index are concatenated in arrival order.
    """

    def __init__(self) -> None:
        self._calls: dict[int, PendingToolCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def submit(self, delta: DeltaToolCall) -> None:
        """Apply one fragment.

        Args:
            delta: Partial tool call from a stream chunk
        """
        if delta.function is None and delta.id is None:
            return

        call = self._calls.setdefault(delta.index, PendingToolCall())
        if delta.id and call.id is None:
            call.id = delta.id

        function = delta.function
        if function is None:
            return
        if function.name and not call.name:
            call.name = function.name
        if function.arguments:
            call.fragments.append(function.arguments)

    def finalize(self) -> list[ToolCallRequest]:
        """Completed calls ordered by index."""
        requests: list[ToolCallRequest] = []
        for index, call in sorted(self._calls.items()):
            if not call.name and not call.fragments:
                continue
            fields = {"name": call.name, "args": call.arguments}
            if call.id:
                fields["id"] = call.id
            request = ToolCallRequest(**fields)
            logger.debug(
                "tool_call.finalized",
                index=index,
                name=request.name,
                args_length=len(request.args),
            )
            requests.append(request)
        return requests

    def reset(self) -> None:
        self._calls.clear()
