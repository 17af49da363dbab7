# calendar_mcp/services/openai_service.py
"""
OpenAI Service for intent classification.
Model tier of the intent pipeline: asks the model to pick one label from the
closed set of supported intents when no pattern matched.
"""

import asyncio

import openai
from openai import AsyncOpenAI

from calendar_mcp.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_RETRIES = 2


class ModelServiceError(Exception):
    """Raised when the model tier cannot produce a classification."""

    def __init__(self, message: str, api_error: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.api_error = api_error
        self.recoverable = recoverable


class OpenAIService:
    """
    Intent classification through the chat completions API.

    The client is created on first use so the service can be constructed
    without network access or a key (it then fails at call time).
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o",
        timeout_seconds: float = 15.0,
        max_retries: int = MAX_RETRIES,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if self.client is None:
            if not self.api_key:
                raise ModelServiceError("OPENAI_API_KEY not configured", recoverable=False)
            self.client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout_seconds)
            logger.info("OpenAI client initialized", model=self.model, timeout=self.timeout_seconds)
        return self.client

    @staticmethod
    def _system_message(allowed_intents: list[str]) -> str:
        return (
            "You classify requests sent to a calendar and document assistant.\n"
            "Reply with exactly one of these labels and nothing else:\n"
            + "\n".join(allowed_intents)
            + "\nIf none applies, reply UNKNOWN."
        )

    async def classify_intent(self, text: str, allowed_intents: list[str]) -> str | None:
        """
        Pick the intent label for a request.

        Args:
            text: Normalized user input
            allowed_intents: Closed set of labels the model may answer with

        Returns:
            str | None: The raw label (validated by the caller), None on empty reply

        Raises:
            ModelServiceError: If every attempt failed
        """
        client = self._get_client()
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                response = await client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": self._system_message(allowed_intents)},
                        {"role": "user", "content": text},
                    ],
                    max_tokens=10,
                    temperature=0,
                )

                if not response.choices or not response.choices[0].message.content:
                    return None

                label = response.choices[0].message.content.strip()
                logger.debug("Model classified intent", label=label, attempt=attempt + 1)
                return label

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 5)
                logger.warning(
                    "OpenAI rate limit hit, retrying",
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(e),
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning("OpenAI API timeout, retrying", attempt=attempt + 1, error=str(e))

            except openai.APIError as e:
                last_error = e
                # Don't retry on client errors (4xx)
                status_code = getattr(e, "status_code", None)
                if status_code and 400 <= status_code < 500:
                    logger.error("OpenAI client error (not retrying)", error=str(e))
                    break
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

        raise ModelServiceError(
            f"Intent classification failed: {last_error}",
            api_error=str(last_error),
        )
