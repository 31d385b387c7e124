"""Reasoning-model call with retry, backoff and reply parsing."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ql_shared.errors import OptimizationUnavailable, TransientUpstreamError
from ql_shared.llm import ChatModel

from .prompts import SYSTEM_PROMPT
from .response_parser import ResponseSectionParser
from .schemas import OptimizationFragment

logger = logging.getLogger(__name__)


class OptimizationClient:
    """Sends one prompt to a chat model and parses the reply.

    Retry policy: TransientUpstreamError (5xx, connection errors, timeouts)
    is retried with exponential backoff, ``backoff_initial`` seconds before
    the second attempt and doubling after that, up to ``max_attempts``
    attempts in total. InvalidUpstreamRequest (4xx) and AuthUnavailable are
    raised immediately. Exhausted retries raise OptimizationUnavailable.
    """

    def __init__(
        self,
        chat_model: ChatModel,
        system_prompt: str = SYSTEM_PROMPT,
        parser: Optional[ResponseSectionParser] = None,
        max_attempts: int = 3,
        backoff_initial: float = 1.0,
        backoff_max: float = 30.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.chat_model = chat_model
        self.system_prompt = system_prompt
        self.parser = parser or ResponseSectionParser()
        self.max_attempts = max_attempts
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.sleep = sleep
        self.last_attempts = 0
        self.last_reply: Optional[str] = None

    @classmethod
    def from_settings(cls, chat_model: ChatModel, settings) -> "OptimizationClient":
        return cls(
            chat_model,
            system_prompt=settings.llm_system_prompt,
            max_attempts=settings.llm_max_attempts,
            backoff_initial=settings.llm_backoff_initial_seconds,
        )

    def build_messages(self, prompt: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]

    async def optimize(self, prompt: str) -> OptimizationFragment:
        """Get an optimization for ``prompt``.

        Raises:
            OptimizationUnavailable: Every attempt failed transiently
            InvalidUpstreamRequest: The endpoint rejected the request (4xx)
            AuthUnavailable: No token could be obtained
        """
        messages = self.build_messages(prompt)
        retry_kwargs = {"sleep": self.sleep} if self.sleep is not None else {}
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientUpstreamError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_initial, max=self.backoff_max),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
            **retry_kwargs,
        )

        self.last_attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    self.last_attempts = attempt.retry_state.attempt_number
                    reply = await self.chat_model.complete(messages)
        except TransientUpstreamError as e:
            logger.error(
                "Model %s unavailable after %d attempt(s): %s",
                self.chat_model.model, self.last_attempts, e,
            )
            raise OptimizationUnavailable(
                f"Model unavailable after {self.last_attempts} attempt(s): {e}"
            ) from e

        self.last_reply = reply
        logger.info("Model reply received after %d attempt(s) (%d chars)", self.last_attempts, len(reply))
        return self.parser.parse(reply)
