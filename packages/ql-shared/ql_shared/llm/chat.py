"""HTTP client for OpenAI-compatible chat-completion endpoints.

Used for both the cloud reasoning model (bearer token from an
``AuthTokenCache``) and a local model server that needs no auth. The client
makes exactly one HTTP attempt per call and classifies failures; retrying is
the caller's decision.
"""

import logging
import time
from typing import Dict, List, Optional

import httpx

from ..errors import InvalidUpstreamRequest, TransientUpstreamError
from .protocol import TokenProvider

logger = logging.getLogger(__name__)


class ChatCompletionClient:
    """Async client for ``POST {api_url}/chat/completions``.

    Failure classification:
    - HTTP 5xx, connection errors, timeouts, and replies that carry no
      choices -> ``TransientUpstreamError``
    - HTTP 4xx -> ``InvalidUpstreamRequest`` (a 401 also invalidates the
      cached token so the next request re-authenticates)
    - token exchange failures propagate as ``AuthUnavailable``
    """

    def __init__(
        self,
        api_url: str,
        model: str,
        token_provider: Optional[TokenProvider] = None,
        temperature: float = 0.1,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        verify: bool | str = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize chat client.

        Args:
            api_url: Base URL of the API (``/chat/completions`` is appended)
            model: Model name
            token_provider: Bearer token source; None for unauthenticated endpoints
            temperature: Sampling temperature
            max_tokens: Upper bound on reply length
            timeout: Request timeout in seconds
            verify: TLS verification flag or CA bundle path
            transport: Optional httpx transport (tests, proxies)
        """
        self.api_url = api_url.rstrip("/")
        self.model = model
        self.token_provider = token_provider
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.verify = verify
        self._transport = transport
        self.last_usage: Dict[str, int] = {}
        logger.info("Initialized ChatCompletionClient with model=%s, api_url=%s", model, self.api_url)

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        """Send messages and return the first choice's content."""
        headers = {"Accept": "application/json"}
        if self.token_provider is not None:
            token = await self.token_provider.get_token()
            headers["Authorization"] = f"Bearer {token}"

        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        logger.debug(
            "Sending chat completion request (model=%s, prompt=%d chars)",
            self.model, sum(len(m.get("content", "")) for m in messages),
        )
        start_time = time.time()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                verify=self.verify,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    f"{self.api_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            raise TransientUpstreamError(f"Model request timed out ({self.timeout}s)") from e
        except httpx.TransportError as e:
            raise TransientUpstreamError(f"Model endpoint unreachable: {e}") from e

        duration = time.time() - start_time
        status = response.status_code

        if status >= 500:
            logger.warning("Model endpoint returned HTTP %d after %.2fs", status, duration)
            raise TransientUpstreamError(f"Model endpoint returned HTTP {status}", status_code=status)
        if status == 401 and self.token_provider is not None:
            self.token_provider.invalidate()
        if status != 200:
            logger.error("Model endpoint rejected request: HTTP %d: %s", status, response.text[:500])
            raise InvalidUpstreamRequest(
                f"Model endpoint rejected request with HTTP {status}", status_code=status,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise TransientUpstreamError("Model endpoint returned a reply without choices") from e

        usage = data.get("usage") or {}
        self.last_usage = {
            "prompt_tokens": usage.get("prompt_tokens", 0),
            "completion_tokens": usage.get("completion_tokens", 0),
            "total_tokens": usage.get("total_tokens", 0),
        }

        content = content or ""
        logger.info(
            "Chat completion response: model=%s, duration=%.2fs, response=%d chars, tokens=%d",
            self.model, duration, len(content), self.last_usage["total_tokens"],
        )
        return content
