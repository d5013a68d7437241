"""Support-assistant chat proxy over an OpenAI-compatible chat model.

Each call has a hard timeout (chat_timeout_seconds, 30s by default). Timeouts
are reported as UpstreamTimeout (408) so the client can retry with a shorter
message; quota and connection problems become UpstreamUnavailable (503).
"""
import asyncio
import time
from typing import Any, Optional

import openai
import structlog
from openai import AsyncOpenAI

from citypulse.config import settings
from citypulse.exceptions import (
    CityPulseError,
    UpstreamTimeout,
    UpstreamUnavailable,
    ValidationError,
)
from citypulse.metrics import chat_duration, chat_requests
from citypulse.services.retry import retry_with_backoff

log = structlog.get_logger(__name__)

SYSTEM_PROMPT = """You are a helpful support assistant for CityPulse, a civic engagement app where citizens report infrastructure issues and earn credits for community participation.

Key features of CityPulse:
- Users can report issues like potholes, broken streetlights, graffiti, etc.
- Users earn credits: +10 for reporting, +2 per photo, +2 for their first vote
- Credits can be redeemed for rewards like gift cards and city merchandise
- Reports go through stages: Pending -> In Progress -> Resolved/Rejected
- Users can upload up to 5 photos per report
- Users can vote on reports to show support

Guidelines:
- Be helpful, friendly, and concise
- Focus on CityPulse features and functionality
- If asked about technical issues, suggest contacting support
- Keep responses under 200 words when possible
- Use bullet points for lists and instructions

Contact info for escalation:
- Email: {support_email}
- Phone: {support_phone}"""


def support_message() -> str:
    return (
        "I'm experiencing technical difficulties. For immediate help, please contact "
        f"our support team at {settings.support_email} or call {settings.support_phone}."
    )


class ChatFailedError(CityPulseError):
    """The model answered with nothing usable, or failed in an unexpected way."""

    status_code = 500


def validate_message(message: Any) -> str:
    if not message or not isinstance(message, str):
        raise ValidationError("Message is required and must be a string")
    if len(message) > settings.chat_max_message_length:
        raise ValidationError(
            f"Message too long. Please keep messages under "
            f"{settings.chat_max_message_length} characters."
        )
    return message


def select_history(history: Any) -> list[dict]:
    """Keep the last chat_history_turns well-formed turns as chat messages.

    A turn is well-formed when it is a mapping with string `sender` and
    `content`. Malformed turns are dropped silently; a non-list history is
    rejected.
    """
    if history is None:
        return []
    if not isinstance(history, list):
        raise ValidationError("Invalid conversation history format")

    valid = [
        turn
        for turn in history
        if isinstance(turn, dict)
        and isinstance(turn.get("content"), str)
        and isinstance(turn.get("sender"), str)
    ]
    recent = valid[-settings.chat_history_turns:] if settings.chat_history_turns > 0 else []
    return [
        {
            "role": "user" if turn["sender"] == "user" else "assistant",
            "content": turn["content"],
        }
        for turn in recent
    ]


def build_messages(message: str, history: list[dict]) -> list[dict]:
    system = SYSTEM_PROMPT.format(
        support_email=settings.support_email,
        support_phone=settings.support_phone,
    )
    return [{"role": "system", "content": system}, *history, {"role": "user", "content": message}]


class ChatService:
    """Sends one user message plus recent history to the chat model.

    When OPENAI_API_KEY is not set, reply() raises UpstreamUnavailable instead
    of calling out, so the endpoint answers 503.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None) -> None:
        self._client = client
        self._skip = client is None and not settings.openai_api_key
        if self._skip:
            log.warning(
                "openai_api_key_missing",
                message="OPENAI_API_KEY not set; chat endpoint will answer 503.",
            )

    def _get_client(self) -> AsyncOpenAI:
        """Lazy-initialize AsyncOpenAI client on first use."""
        if self._client is None:
            # The SDK's own retries are disabled; retry_with_backoff owns policy
            self._client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                max_retries=0,
                timeout=settings.chat_timeout_seconds,
            )
        return self._client

    async def _complete(self, messages: list[dict]) -> str:
        client = self._get_client()
        response = await asyncio.wait_for(
            client.chat.completions.create(model=settings.chat_model, messages=messages),
            timeout=settings.chat_timeout_seconds,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def reply(self, message: Any, history: Any = None) -> str:
        """Return the assistant's answer.

        Raises:
            UpstreamUnavailable: no key configured (checked before input),
                quota reached, or the
                model cannot be reached.
            ValidationError: bad message or history shape.
            UpstreamTimeout: no answer within chat_timeout_seconds.
            ChatFailedError: empty answer or unexpected upstream failure.
        """
        if self._skip:
            chat_requests.labels(outcome="unavailable").inc()
            raise UpstreamUnavailable(
                "AI service temporarily unavailable. Please contact support."
            )

        text = validate_message(message)
        turns = select_history(history)
        messages = build_messages(text, turns)
        start = time.monotonic()
        try:
            answer = await retry_with_backoff(
                lambda: self._complete(messages),
                retry_on=(asyncio.TimeoutError, openai.APITimeoutError),
                max_retries=settings.chat_max_retries,
                base_delay=settings.chat_backoff_base_seconds,
                operation_name="chat_completion",
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
            chat_requests.labels(outcome="timeout").inc()
            log.warning("chat_upstream_timeout", timeout_seconds=settings.chat_timeout_seconds)
            raise UpstreamTimeout("Request timed out. Please try a shorter message.") from exc
        except (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError) as exc:
            chat_requests.labels(outcome="unavailable").inc()
            log.warning("chat_upstream_unavailable", error=type(exc).__name__)
            raise UpstreamUnavailable(
                "AI service is currently at capacity. Please try again in a few minutes."
            ) from exc
        except openai.OpenAIError as exc:
            chat_requests.labels(outcome="error").inc()
            log.error("chat_upstream_error", error=str(exc))
            raise ChatFailedError(support_message()) from exc
        finally:
            chat_duration.observe(time.monotonic() - start)

        if not answer.strip():
            chat_requests.labels(outcome="error").inc()
            log.error("chat_empty_response", model=settings.chat_model)
            raise ChatFailedError(support_message())

        chat_requests.labels(outcome="success").inc()
        log.info("chat_replied", history_turns=len(turns), answer_length=len(answer))
        return answer
