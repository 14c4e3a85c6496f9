"""
memory/history.py — Conversation History

In-process message list for one chat session. Append-only, except that the
token budget manager may replace the whole list with a compacted version.

No persistence; cleared when the process restarts.
"""

from __future__ import annotations

from kitty.brain.types import Message, Role


class ConversationHistory:
    """
    Ordered user/assistant/tool messages for the current session.

    The system prompt is not stored here: the agent prepends it to every
    request. Summaries produced by compaction are stored as system messages
    and travel with the history.
    """

    def __init__(self, messages: list[Message] | None = None):
        self._messages: list[Message] = list(messages or [])

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def add_user(self, content: str) -> None:
        self.append(Message.user(content))

    def add_assistant(self, content: str) -> None:
        self.append(Message.assistant(content))

    def replace(self, messages: list[Message]) -> None:
        """Swap in a compacted message list."""
        self._messages = list(messages)

    def clear(self) -> None:
        self._messages.clear()

    @property
    def messages(self) -> list[Message]:
        """A copy of the stored messages."""
        return list(self._messages)

    def texts(self) -> list[str]:
        """Plain "role: content" lines for prompts that only need the gist of the conversation."""
        return [
            f"{m.role.value}: {m.content}"
            for m in self._messages
            if m.content and m.role != Role.TOOL
        ]

    def __len__(self) -> int:
        return len(self._messages)

    def __repr__(self) -> str:
        return f"<ConversationHistory messages={len(self._messages)}>"
