from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.session import AsyncSessionLocal
from app.models import UsageRecord
from app.services.pricing import calculate_cost
from app.utils.serialization import to_jsonable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


def _field(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def extract_token_usage(response: Any) -> TokenUsage:
    """Read token counts from an OpenAI response, SDK object or plain dict.

    Chat/completions responses carry `usage`; some assistants API payloads
    carry `usage_statistics` instead. Missing usage counts as zero tokens.
    """
    usage = _field(response, "usage")
    if usage is not None:
        return TokenUsage(
            prompt_tokens=int(_field(usage, "prompt_tokens") or 0),
            completion_tokens=int(_field(usage, "completion_tokens") or 0),
            total_tokens=int(_field(usage, "total_tokens") or 0),
        )

    statistics = _field(response, "usage_statistics")
    prompt_tokens = _field(statistics, "prompt_tokens")
    completion_tokens = _field(statistics, "completion_tokens")
    if prompt_tokens and completion_tokens:
        return TokenUsage(
            prompt_tokens=int(prompt_tokens),
            completion_tokens=int(completion_tokens),
            total_tokens=int(prompt_tokens) + int(completion_tokens),
        )

    return TokenUsage()


def build_usage_record(
    *,
    user_id: UUID,
    request_type: str,
    model_id: str,
    prompt_tokens: int,
    completion_tokens: int,
    assistant_id: str | None = None,
    thread_id: str | None = None,
    success: bool = True,
    error_message: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> UsageRecord:
    return UsageRecord(
        user_id=user_id,
        assistant_id=assistant_id,
        thread_id=thread_id,
        model_id=model_id,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        estimated_cost=calculate_cost(model_id, prompt_tokens, completion_tokens),
        request_type=request_type,
        success=success,
        error_message=None if success else error_message,
        usage_metadata=to_jsonable(metadata or {}),
    )


async def track_api_usage(
    user_id: UUID,
    request_type: str,
    model_id: str,
    prompt_tokens: int,
    completion_tokens: int,
    assistant_id: str | None = None,
    thread_id: str | None = None,
    success: bool = True,
    error_message: str | None = None,
    metadata: dict[str, Any] | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
) -> None:
    """Append one usage record in a session of its own.

    Failures are logged and swallowed so that tracking never breaks the call
    being measured.
    """
    try:
        record = build_usage_record(
            user_id=user_id,
            request_type=request_type,
            model_id=model_id,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            assistant_id=assistant_id,
            thread_id=thread_id,
            success=success,
            error_message=error_message,
            metadata=metadata,
        )
        async with session_factory() as session:
            session.add(record)
            await session.commit()
    except Exception:
        logger.exception(
            "Failed to track API usage",
            extra={"user_id": str(user_id)},
        )


async def track_response_usage(
    user_id: UUID,
    request_type: str,
    model_id: str,
    response: Any,
    assistant_id: str | None = None,
    thread_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
) -> TokenUsage:
    usage = extract_token_usage(response)
    await track_api_usage(
        user_id,
        request_type,
        model_id,
        usage.prompt_tokens,
        usage.completion_tokens,
        assistant_id=assistant_id,
        thread_id=thread_id,
        metadata=metadata,
        session_factory=session_factory,
    )
    return usage
