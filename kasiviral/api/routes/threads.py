"""
Thread generation: the paid feature behind the subscription gate.

Dependency order: bearer verification -> entitlement check -> rate limit ->
handler. Unentitled callers get 403 SUBSCRIPTION_REQUIRED and never reach
the completion API.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from kasiviral.api.dependencies.auth import require_active_subscription
from kasiviral.middleware.rate_limit import RateLimitResult, rate_limit_dependency
from kasiviral.platform.errors import ServiceUnavailableError
from kasiviral.platform.identity import VerifiedPrincipal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/threads", tags=["threads"])


class GenerateThreadRequest(BaseModel):
    topic: str = Field(..., min_length=1, max_length=500)
    length: Literal["short", "medium", "long"] = "medium"
    language: Literal["english", "malay"] = "english"


class GenerateThreadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thread: str
    word_count: int = Field(..., alias="wordCount")
    tweet_count: int = Field(..., alias="tweetCount")
    cost_usd: Optional[float] = Field(None, alias="costUsd")


@router.post("/generate", response_model=GenerateThreadResponse)
async def generate_thread(
    request: Request,
    body: GenerateThreadRequest,
    principal: VerifiedPrincipal = Depends(require_active_subscription),
    _rate_limit: RateLimitResult = Depends(rate_limit_dependency("thread_generate")),
) -> GenerateThreadResponse:
    generator = getattr(request.app.state, "thread_generator", None)
    if generator is None:
        raise ServiceUnavailableError("Thread generation is not configured")

    result = await generator.generate(body.topic, body.length, body.language)

    logger.info(
        "Thread generation served",
        extra={"subject_id": principal.subject_id, "length": body.length, "language": body.language},
    )
    return GenerateThreadResponse(
        thread=result.thread,
        word_count=result.word_count,
        tweet_count=result.tweet_count,
        cost_usd=result.usage.total_cost_usd if result.usage else None,
    )
