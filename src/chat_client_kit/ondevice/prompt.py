"""Instructions and prompt text for foundation model sessions."""

from collections.abc import Sequence

from chat_client_kit.models import (
    AssistantMessage,
    DeveloperMessage,
    SystemMessage,
    TextPart,
    ToolMessage,
    UserMessage,
)

CONVERSATION_HEADER = "Conversation so far:"


def _text(content: str | list | None) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content.strip()
    texts = []
    for part in content:
        if isinstance(part, str):
            texts.append(part)
        elif isinstance(part, TextPart):
            texts.append(part.text)
    return "\n".join(text.strip() for text in texts if text.strip())


def _speaker(role: str, name: str | None) -> str:
    return f"{role} ({name})" if name else role


def _transcribe(message) -> str | None:
    if isinstance(message, UserMessage):
        text = _text(message.content)
        return f"{_speaker('User', message.name)}: {text}" if text else None
    if isinstance(message, AssistantMessage):
        text = _text(message.content)
        calls = [
            f"called {call.function.name}({call.function.arguments or ''})"
            for call in message.tool_calls or []
        ]
        body = "\n".join(filter(None, [text, *calls]))
        return f"{_speaker('Assistant', message.name)}: {body}" if body else None
    if isinstance(message, ToolMessage):
        text = _text(message.content)
        return f"Tool({message.tool_call_id}): {text}" if text else None
    return None


class FoundationPromptBuilder:
    """Folds a chat transcript into session instructions and one prompt.

    Foundation model sessions take a single instruction block and a single
    prompt per turn, so system and developer turns go into the instructions
    and the rest of the conversation is transcribed into the prompt.
    """

    @staticmethod
    def make_instructions(
        persona: str,
        messages: Sequence,
        additional_directives: Sequence[str] = (),
    ) -> str:
        """Persona, system and developer texts and directives, one paragraph each."""
        sections = [persona.strip()]
        for message in messages:
            if isinstance(message, (SystemMessage, DeveloperMessage)):
                sections.append(_text(message.content))
        sections.extend(directive.strip() for directive in additional_directives)
        return "\n\n".join(section for section in sections if section)

    @staticmethod
    def make_prompt(messages: Sequence) -> str:
        """Transcript of earlier turns followed by the latest user turn."""
        latest = None
        for index in range(len(messages) - 1, -1, -1):
            if isinstance(messages[index], UserMessage):
                latest = index
                break

        if latest is None:
            history, current, followups = list(messages), None, []
        else:
            history = list(messages[:latest])
            current = messages[latest]
            followups = list(messages[latest + 1:])

        lines = [line for line in map(_transcribe, history) if line]
        sections = []
        if lines:
            sections.append("\n".join([CONVERSATION_HEADER, *lines]))
        if current is not None:
            tail = [line for line in map(_transcribe, [current, *followups]) if line]
            if tail:
                sections.append("\n".join(tail))
        return "\n\n".join(sections)
