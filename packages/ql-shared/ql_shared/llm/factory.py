"""Factory functions for creating chat-model clients."""

from typing import Dict, Optional, Tuple

import httpx

from ..config import Settings, get_settings
from .auth import AuthTokenCache
from .chat import ChatCompletionClient

# One token cache per (token endpoint, client id, transport), shared by every
# client in the process
_token_caches: Dict[Tuple[str, str, Optional[httpx.AsyncBaseTransport]], AuthTokenCache] = {}


def get_token_cache(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AuthTokenCache:
    """Get or create the process-wide token cache for the configured credentials."""
    settings = settings or get_settings()
    key = (settings.llm_auth_url, settings.llm_client_id, transport)
    if key not in _token_caches:
        _token_caches[key] = AuthTokenCache.from_settings(settings, transport=transport)
    return _token_caches[key]


def reset_token_caches() -> None:
    """Forget all cached token caches (tests, credential rotation)."""
    _token_caches.clear()


def create_chat_model(
    target: str,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ChatCompletionClient:
    """Create a chat client for a model target.

    Args:
        target: ``"cloud"`` (authenticated provider) or ``"local"`` (model
            server on the local network, no auth)
        settings: Settings to read endpoints from (defaults to environment)
        transport: Optional httpx transport shared by the client and its
            token exchange

    Returns:
        A configured ChatCompletionClient.
    """
    settings = settings or get_settings()
    target = str(getattr(target, "value", target)).lower()

    if target == "cloud":
        return ChatCompletionClient(
            api_url=settings.llm_api_url,
            model=settings.llm_model,
            token_provider=get_token_cache(settings, transport=transport),
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout_seconds,
            verify=settings.tls_verify,
            transport=transport,
        )
    elif target == "local":
        return ChatCompletionClient(
            api_url=settings.local_llm_url,
            model=settings.local_llm_model,
            token_provider=None,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout_seconds,
            transport=transport,
        )
    else:
        raise ValueError(f"Unknown LLM target: {target}")
