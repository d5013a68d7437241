"""Tests for ChatService and the rate-limited POST /api/v1/chat endpoint."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import httpx
import openai
import pytest

from citypulse.config import settings
from citypulse.exceptions import UpstreamTimeout, UpstreamUnavailable, ValidationError
from citypulse.main import app
from citypulse.middleware.rate_limiter import CHAT_SCOPE, UPLOAD_SCOPE, FixedWindowRateLimiter
from citypulse.services.chat import (
    ChatFailedError,
    ChatService,
    build_messages,
    select_history,
    validate_message,
)


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _mock_client(**create_kwargs) -> Mock:
    client = Mock()
    client.chat.completions.create = AsyncMock(**create_kwargs)
    return client


def _openai_request() -> httpx.Request:
    return httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class TestInputValidation:
    def test_message_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_message("")
        assert exc_info.value.message == "Message is required and must be a string"

    def test_message_must_be_string(self):
        with pytest.raises(ValidationError):
            validate_message(42)

    def test_message_length_limit(self):
        assert validate_message("x" * 1000) == "x" * 1000
        with pytest.raises(ValidationError) as exc_info:
            validate_message("x" * 1001)
        assert "1000 characters" in exc_info.value.message

    def test_history_must_be_list(self):
        with pytest.raises(ValidationError) as exc_info:
            select_history({"sender": "user", "content": "hi"})
        assert exc_info.value.message == "Invalid conversation history format"

    def test_history_keeps_last_ten_valid_turns(self):
        history = [{"sender": "user", "content": f"m{i}"} for i in range(12)]
        history.insert(5, {"sender": "user"})  # missing content
        history.insert(7, "not a turn")

        turns = select_history(history)

        assert len(turns) == 10
        assert turns[0]["content"] == "m2"
        assert turns[-1]["content"] == "m11"

    def test_history_roles(self):
        turns = select_history(
            [{"sender": "user", "content": "hi"}, {"sender": "assistant", "content": "hello"}]
        )
        assert [turn["role"] for turn in turns] == ["user", "assistant"]

    def test_system_prompt_carries_support_contact(self):
        messages = build_messages("How do I earn credits?", [])
        assert messages[0]["role"] == "system"
        assert settings.support_email in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "How do I earn credits?"}


class TestChatService:
    @pytest.mark.asyncio
    async def test_returns_model_answer(self):
        client = _mock_client(return_value=_completion("Report issues from the map."))
        service = ChatService(client=client)

        answer = await service.reply("How do I report?", [{"sender": "user", "content": "hi"}])

        assert answer == "Report issues from the map."
        sent = client.chat.completions.create.await_args.kwargs
        assert sent["model"] == settings.chat_model
        assert sent["messages"][-1]["content"] == "How do I report?"
        assert len(sent["messages"]) == 3

    @pytest.mark.asyncio
    async def test_missing_api_key_is_unavailable(self, monkeypatch):
        monkeypatch.setattr(settings, "openai_api_key", "")
        service = ChatService()
        with pytest.raises(UpstreamUnavailable):
            await service.reply("hello")

    @pytest.mark.asyncio
    async def test_timeout_maps_to_upstream_timeout(self):
        service = ChatService(client=_mock_client(side_effect=asyncio.TimeoutError()))
        with pytest.raises(UpstreamTimeout) as exc_info:
            await service.reply("hello")
        assert exc_info.value.status_code == 408

    @pytest.mark.asyncio
    async def test_quota_maps_to_unavailable(self):
        error = openai.RateLimitError(
            "quota exceeded",
            response=httpx.Response(429, request=_openai_request()),
            body=None,
        )
        service = ChatService(client=_mock_client(side_effect=error))
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await service.reply("hello")
        assert "capacity" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_unavailable(self):
        error = openai.APIConnectionError(request=_openai_request())
        service = ChatService(client=_mock_client(side_effect=error))
        with pytest.raises(UpstreamUnavailable):
            await service.reply("hello")

    @pytest.mark.asyncio
    async def test_empty_answer_is_generic_failure(self):
        service = ChatService(client=_mock_client(return_value=_completion("")))
        with pytest.raises(ChatFailedError) as exc_info:
            await service.reply("hello")
        assert exc_info.value.status_code == 500
        assert settings.support_email in exc_info.value.message
        assert settings.support_phone in exc_info.value.message


class TestChatEndpoint:
    @pytest.mark.asyncio
    async def test_chat_success(self, client):
        app.state.chat_service = ChatService(client=_mock_client(return_value=_completion("Hi!")))

        response = await client.post(
            "/api/v1/chat",
            json={"message": "hello", "conversationHistory": [{"sender": "user", "content": "hey"}]},
        )

        assert response.status_code == 200
        assert response.json() == {"message": "Hi!"}

    @pytest.mark.asyncio
    async def test_chat_bad_input_is_400(self, client):
        app.state.chat_service = ChatService(client=_mock_client(return_value=_completion("Hi!")))

        missing = await client.post("/api/v1/chat", json={})
        too_long = await client.post("/api/v1/chat", json={"message": "x" * 1001})
        bad_history = await client.post(
            "/api/v1/chat", json={"message": "hi", "conversationHistory": "nope"}
        )

        assert missing.status_code == 400
        assert missing.json()["error"] == "Message is required and must be a string"
        assert too_long.status_code == 400
        assert bad_history.status_code == 400

    @pytest.mark.asyncio
    async def test_chat_unconfigured_is_503(self, client, monkeypatch):
        monkeypatch.setattr(settings, "openai_api_key", "")
        response = await client.post("/api/v1/chat", json={"message": "hello"})
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_chat_timeout_is_408(self, client):
        app.state.chat_service = ChatService(client=_mock_client(side_effect=asyncio.TimeoutError()))
        response = await client.post("/api/v1/chat", json={"message": "hello"})
        assert response.status_code == 408

    @pytest.mark.asyncio
    async def test_chat_rate_limited_with_retry_after(self, client):
        app.state.chat_service = ChatService(client=_mock_client(return_value=_completion("Hi!")))
        app.state.rate_limiters = {
            CHAT_SCOPE: FixedWindowRateLimiter(2, 60),
            UPLOAD_SCOPE: FixedWindowRateLimiter(20, 3600),
        }

        statuses = []
        for _ in range(3):
            response = await client.post("/api/v1/chat", json={"message": "hello"})
            statuses.append(response.status_code)

        assert statuses == [200, 200, 429]
        assert response.json()["error"] == "Too many requests. Please wait a moment before trying again."
        assert 1 <= int(response.headers["Retry-After"]) <= 60
