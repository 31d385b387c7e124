"""LLM transport for QueryLift.

Provides:
- AuthTokenCache: coalescing bearer-token cache for the cloud provider
- ChatCompletionClient: OpenAI-compatible chat-completions client
- create_chat_model: client factory keyed by model target (cloud | local)
"""

from .protocol import ChatModel, TokenProvider
from .auth import AuthToken, AuthTokenCache
from .chat import ChatCompletionClient
from .factory import create_chat_model, get_token_cache, reset_token_caches

__all__ = [
    # Protocols
    "ChatModel",
    "TokenProvider",
    # Auth
    "AuthToken",
    "AuthTokenCache",
    # Clients
    "ChatCompletionClient",
    # Factory
    "create_chat_model",
    "get_token_cache",
    "reset_token_caches",
]
