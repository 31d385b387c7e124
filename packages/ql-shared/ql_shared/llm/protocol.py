"""Protocol definitions for LLM transport.

All chat-model clients and token sources should implement these protocols.
"""

from typing import Dict, List, Protocol


class TokenProvider(Protocol):
    """Source of bearer tokens for an authenticated model endpoint."""

    async def get_token(self) -> str:
        """Return a currently valid bearer token."""
        ...

    def invalidate(self) -> None:
        """Forget the current token so the next call fetches a new one."""
        ...


class ChatModel(Protocol):
    """Protocol for chat-completion clients.

    Attributes:
        model: Model name sent with every request
        last_usage: Token usage reported by the most recent call
    """

    model: str
    last_usage: Dict[str, int]

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        """Send chat messages and return the assistant reply text.

        Args:
            messages: ``[{"role": "system" | "user", "content": ...}, ...]``

        Returns:
            The content of the first choice
        """
        ...
