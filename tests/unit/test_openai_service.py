from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from calendar_mcp.services.openai_service import ModelServiceError, OpenAIService

ALLOWED = ["CREATE_EVENT", "QUERY_EVENTS"]


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def service_with(create: AsyncMock) -> OpenAIService:
    service = OpenAIService(api_key="sk-test", max_retries=2)
    service.client = MagicMock()
    service.client.chat.completions.create = create
    return service


@pytest.mark.asyncio
async def test_returns_stripped_label_and_lists_allowed_intents():
    create = AsyncMock(return_value=completion("  QUERY_EVENTS \n"))

    label = await service_with(create).classify_intent("what's on tomorrow", ALLOWED)

    assert label == "QUERY_EVENTS"
    system_prompt = create.await_args.kwargs["messages"][0]["content"]
    assert "CREATE_EVENT" in system_prompt
    assert create.await_args.kwargs["temperature"] == 0


@pytest.mark.asyncio
async def test_empty_reply_is_none():
    create = AsyncMock(return_value=completion(""))

    assert await service_with(create).classify_intent("hmm", ALLOWED) is None


@pytest.mark.asyncio
async def test_timeouts_are_retried_then_raised():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    create = AsyncMock(side_effect=openai.APITimeoutError(request=request))

    with pytest.raises(ModelServiceError):
        await service_with(create).classify_intent("hmm", ALLOWED)

    assert create.await_count == 2


@pytest.mark.asyncio
async def test_missing_key_is_not_recoverable():
    with pytest.raises(ModelServiceError) as exc_info:
        await OpenAIService(api_key=None).classify_intent("hmm", ALLOWED)

    assert exc_info.value.recoverable is False
