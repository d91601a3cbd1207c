"""
Viral thread generation via the OpenAI Chat Completions API.

Handles:
- Length tiers (short/medium/long) with target words, tweet ranges and token caps
- English and Malaysian Malay prompts
- A randomly chosen persona and structure per request for variety
- Primary model with a single fallback model
- Word/tweet counting and a per-model cost estimate from the reported usage

The completion must be a JSON object with a string "thread" field.
"""

import json
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from kasiviral.config.settings import Settings
from kasiviral.platform.errors import UpstreamError

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


@dataclass(frozen=True)
class LengthSpec:
    word_range: str
    tweet_range: str
    description: str
    target_words: int
    max_tokens: int


LENGTH_SPECS: Dict[str, LengthSpec] = {
    "short": LengthSpec("150-300", "3-5", "quick and engaging", 200, 800),
    "medium": LengthSpec("350-500", "6-8", "balanced and informative", 400, 1200),
    "long": LengthSpec("550-750", "9-12", "comprehensive yet digestible", 600, 1800),
}

LANGUAGES = ("english", "malay")

# USD per 1K tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
    "gpt-4o": {"input": 0.0025, "output": 0.01},
}
DEFAULT_PRICING_MODEL = "gpt-4o-mini"

PERSONAS: Dict[str, Dict[str, str]] = {
    "Educator": {
        "english": "You are a knowledgeable teacher who breaks complex topics into digestible lessons.",
        "malay": "Awak adalah seorang pendidik yang pandai memecahkan topik kompleks kepada pembelajaran mudah.",
    },
    "Entrepreneur": {
        "english": "You are a successful entrepreneur sharing battle-tested business insights.",
        "malay": "Awak adalah usahawan berjaya yang berkongsi insight business yang telah terbukti.",
    },
    "Practical": {
        "english": "You are a no-nonsense expert who cuts straight to actionable solutions.",
        "malay": "Awak adalah pakar yang terus terang dan fokus pada penyelesaian yang boleh dilaksanakan.",
    },
    "Creative": {
        "english": "You are a creative storyteller who explains ideas through metaphors and narratives.",
        "malay": "Awak adalah pencerita kreatif yang menggunakan metafora dan naratif untuk menerangkan konsep.",
    },
}

STRUCTURES: Dict[str, Dict[str, str]] = {
    "Story Arc": {
        "english": "Problem -> Journey -> Solution -> Lesson Learned",
        "malay": "Masalah -> Perjalanan -> Penyelesaian -> Pengajaran",
    },
    "Data-Driven": {
        "english": "Surprising Statistic -> Analysis -> Implications -> Action Steps",
        "malay": "Statistik Mengejutkan -> Analisis -> Implikasi -> Langkah Tindakan",
    },
    "Contrarian Take": {
        "english": "Common Belief -> Why It's Wrong -> The Real Truth -> What To Do Instead",
        "malay": "Kepercayaan Biasa -> Kenapa Salah -> Kebenaran Sebenar -> Apa Yang Patut Buat",
    },
}

STYLES = ("conversational", "professional", "motivational", "analytical", "humorous")

MALAY_RULES = (
    "LANGUAGE: Pure BAHASA MELAYU (Malaysian Malay) ONLY\n"
    "- Use Malaysian vocabulary: boleh, sangat, tak/tidak, awak/anda, jom, sebab, tahu\n"
    "- Never use Indonesian words: bisa, banget, nggak, kamu, aja, karena, kayak"
)

_TWEET_MARKER = re.compile(r"(?:^|\n)\d+/")


class ThreadGenerationError(UpstreamError):
    """The completion API failed or returned something other than a thread (502)."""

    def __init__(self, message: str):
        super().__init__(code="THREAD_GENERATION_FAILED", message=message)


@dataclass
class UsageData:
    model: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    total_cost_usd: float


@dataclass
class ThreadResult:
    thread: str
    word_count: int
    tweet_count: int
    usage: Optional[UsageData] = None


def count_words(text: str) -> int:
    return len(text.split())


def count_tweets(text: str) -> int:
    """Numbered "N/" markers at the start of the text or of a line; at least 1."""
    return len(_TWEET_MARKER.findall(text)) or 1


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        logger.warning("Unknown model pricing, using default rates", extra={"model": model})
        pricing = MODEL_PRICING[DEFAULT_PRICING_MODEL]
    return (prompt_tokens / 1000) * pricing["input"] + (completion_tokens / 1000) * pricing["output"]


def build_usage(model: str, usage: Optional[Dict[str, Any]]) -> Optional[UsageData]:
    if not usage:
        return None
    prompt_tokens = int(usage.get("prompt_tokens") or 0)
    completion_tokens = int(usage.get("completion_tokens") or 0)
    return UsageData(
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        total_cost_usd=estimate_cost(model, prompt_tokens, completion_tokens),
    )


def build_prompts(topic: str, length: str, language: str, rng: random.Random) -> Dict[str, str]:
    """Compose system and user prompts for one request."""
    spec = LENGTH_SPECS[length]
    persona_name = rng.choice(sorted(PERSONAS))
    structure_name = rng.choice(sorted(STRUCTURES))
    style = rng.choice(STYLES)

    language_rule = "LANGUAGE: English only" if language == "english" else MALAY_RULES

    system = (
        f"{PERSONAS[persona_name][language]}\n\n"
        f"TEMPLATE STRUCTURE:\n{STRUCTURES[structure_name][language]}\n\n"
        f"THREAD SPECIFICATIONS FOR {length.upper()}:\n"
        f"- Target: {spec.target_words} words ({spec.word_range} range)\n"
        f"- Format: {spec.tweet_range} tweets, numbered 1/, 2/, ...\n"
        f"- Style: {spec.description}, {style}\n\n"
        f"{language_rule}\n\n"
        "Respond with JSON in this exact format:\n"
        '{"thread": "THREAD: [Topic]\\n\\n1/ [first tweet]\\n\\n2/ [next tweet]"}'
    )
    user = (
        f'Create a viral Twitter thread about: "{topic}"\n'
        f"Use the {persona_name} personality and the {structure_name} structure. "
        f"Target {spec.target_words} words."
    )
    if language == "malay":
        user += "\nIMPORTANT: Write in pure Malaysian Malay. Do NOT use Indonesian words."
    return {"system": system, "user": user}


class OpenAIThreadGenerator:
    """
    Client for thread generation against the OpenAI Chat Completions API.

    The primary model is tried first; any failure falls back to the fallback
    model exactly once.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        fallback_model: Optional[str] = "gpt-3.5-turbo",
        timeout_seconds: float = 60.0,
        base_url: str = OPENAI_CHAT_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.fallback_model = fallback_model
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url
        self._transport = transport
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["OpenAIThreadGenerator"]:
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY not configured; thread generation disabled")
            return None
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            fallback_model=settings.openai_fallback_model,
            timeout_seconds=settings.openai_timeout_seconds,
        )

    async def _complete(self, model: str, prompts: Dict[str, str], max_tokens: int) -> Dict[str, Any]:
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": prompts["system"]},
                {"role": "user", "content": prompts["user"]},
            ],
            "response_format": {"type": "json_object"},
            "max_tokens": max_tokens,
        }
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.post(
                self.base_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        response.raise_for_status()
        return response.json()

    async def generate(
        self,
        topic: str,
        length: str,
        language: str,
        max_tokens: Optional[int] = None,
    ) -> ThreadResult:
        """
        Generate a thread.

        Raises:
            ValueError: Unknown length or language
            ThreadGenerationError: Both models failed or the output was unusable
        """
        if length not in LENGTH_SPECS:
            raise ValueError(f"Unknown length: {length}")
        if language not in LANGUAGES:
            raise ValueError(f"Unknown language: {language}")

        prompts = build_prompts(topic, length, language, self._rng)
        token_cap = max_tokens or LENGTH_SPECS[length].max_tokens

        model_used = self.model
        try:
            body = await self._complete(self.model, prompts, token_cap)
        except (httpx.HTTPError, ValueError) as primary_error:
            if not self.fallback_model:
                raise ThreadGenerationError(f"Failed to generate thread: {primary_error}") from primary_error
            logger.warning(
                "Primary model unavailable, falling back",
                extra={"model": self.model, "fallback_model": self.fallback_model, "error": str(primary_error)},
            )
            model_used = self.fallback_model
            try:
                body = await self._complete(self.fallback_model, prompts, token_cap)
            except (httpx.HTTPError, ValueError) as e:
                logger.error("Thread generation failed", extra={"model": model_used, "error": str(e)})
                raise ThreadGenerationError(f"Failed to generate thread: {e}") from e

        thread = _extract_thread(body)
        result = ThreadResult(
            thread=thread,
            word_count=count_words(thread),
            tweet_count=count_tweets(thread),
            usage=build_usage(model_used, body.get("usage")),
        )

        logger.info(
            "Thread generated",
            extra={
                "model": model_used,
                "length": length,
                "language": language,
                "word_count": result.word_count,
                "tweet_count": result.tweet_count,
                "cost_usd": result.usage.total_cost_usd if result.usage else None,
            },
        )
        return result


def _extract_thread(body: Dict[str, Any]) -> str:
    try:
        content = body["choices"][0]["message"]["content"] or "{}"
        parsed = json.loads(content)
    except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
        raise ThreadGenerationError("Invalid thread content from completion API") from e

    thread = parsed.get("thread") if isinstance(parsed, dict) else None
    if not thread or not isinstance(thread, str):
        raise ThreadGenerationError("Invalid thread content from completion API")
    return thread
