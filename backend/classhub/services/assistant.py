"""Assistant completion service and context building."""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic, RateLimitError

from classhub.config import get_settings
from classhub.errors import AssistantUnavailable
from classhub.schemas.academic import Snapshot

logger = logging.getLogger(__name__)
settings = get_settings()

_DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def _load_persona() -> str:
    """Load the ASSISTANT.md persona file for the system prompt."""
    persona_path = Path(__file__).parent.parent.parent / "ASSISTANT.md"
    try:
        return persona_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning("ASSISTANT.md not found at %s, using fallback persona", persona_path)
        return (
            "You are @Zay, a helpful and friendly classroom assistant. Answer in the "
            "language of the question, use only the provided context, and be concise."
        )


# Load once at module import
_PERSONA_PROMPT = _load_persona()

# Transient error types that warrant retrying
_RETRYABLE_ERRORS = (APIConnectionError, RateLimitError)


def build_context(snapshot: Snapshot, requesting_user: str | None, now: datetime | None = None) -> str:
    """
    Build the system prompt from the cached academic state.

    Args:
        snapshot: Cached state (subjects, items, timetable)
        requesting_user: Display name of the member asking
        now: Current local time (defaults to now)

    Returns:
        Persona plus a JSON context block
    """
    now = now or datetime.now()
    subjects = [{"id": s.id, "name": s.name} for s in snapshot.subjects]
    items = [i.model_dump(mode="json", by_alias=True) for i in snapshot.items]
    timetable = [e.model_dump(mode="json", by_alias=True) for e in snapshot.timetable]

    return f"""{_PERSONA_PROMPT}

---

## Class

{settings.class_name}

## Now

Today is {_DAY_NAMES[now.weekday()]}, {now.strftime("%Y-%m-%d")}, time is {now.strftime("%H:%M")}.

## JSON Context

- Subjects: {json.dumps(subjects, ensure_ascii=False)}
- Academic Items (Exams/Homework): {json.dumps(items, ensure_ascii=False)}
- Weekly Timetable (day 0 = Monday): {json.dumps(timetable, ensure_ascii=False)}

## User Info

- User asking: {requesting_user or "Student"}"""


class AssistantService:
    """Single blocking completion call against the Anthropic Messages API."""

    def __init__(self, api_key: str | None = None):
        """Initialize Anthropic client when a key is configured."""
        api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.client = (
            AsyncAnthropic(api_key=api_key, timeout=settings.llm_request_timeout_seconds)
            if api_key
            else None
        )

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def complete(self, query: str, context: str) -> str:
        """
        Get the full completion text for a query.

        Retries transient connection and rate-limit errors with exponential
        backoff.

        Raises:
            AssistantUnavailable: On missing credentials, exhausted retries,
                API errors or an empty completion
        """
        if self.client is None:
            raise AssistantUnavailable("Assistant API key is not configured")

        max_attempts = 3
        for attempt in range(max_attempts):
            try:
                message = await self.client.messages.create(
                    model=settings.llm_model,
                    max_tokens=settings.llm_max_tokens,
                    system=context,
                    messages=[{"role": "user", "content": query}],
                )
                break
            except _RETRYABLE_ERRORS as e:
                if attempt < max_attempts - 1:
                    delay = 1.0 * (2 ** attempt)
                    logger.warning(
                        "Anthropic API transient error (attempt %d/%d), retrying in %.1fs: %s",
                        attempt + 1, max_attempts, delay, str(e),
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error("Assistant completion failed after %d attempts", max_attempts)
                    raise AssistantUnavailable(str(e)) from e
            except APIStatusError as e:
                raise AssistantUnavailable(f"Assistant API error {e.status_code}") from e

        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            raise AssistantUnavailable("Assistant returned an empty completion")
        return text


# Singleton instance
assistant_service = AssistantService()
