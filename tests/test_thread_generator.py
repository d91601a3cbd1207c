"""
Tests for thread generation: counting helpers, cost estimate, model fallback
and the gated /threads/generate route.
"""

import json
import random
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import auth_header
from kasiviral.entitlements.store import EntitlementStore
from kasiviral.main import create_app
from kasiviral.models.entitlement import EntitlementPlan
from kasiviral.services.thread_generator import (
    LENGTH_SPECS,
    OpenAIThreadGenerator,
    ThreadGenerationError,
    ThreadResult,
    build_prompts,
    count_tweets,
    count_words,
    estimate_cost,
)

THREAD = "THREAD: Saving money\n\n1/ Start small.\n\n2/ Track every ringgit.\n\n3/ Automate it."


def _completion(thread=THREAD, usage=None):
    body = {"choices": [{"message": {"content": json.dumps({"thread": thread})}}]}
    if usage is not None:
        body["usage"] = usage
    return body


def _generator(handler, fallback_model="gpt-3.5-turbo"):
    return OpenAIThreadGenerator(
        api_key="sk-test",
        fallback_model=fallback_model,
        transport=httpx.MockTransport(handler),
        rng=random.Random(7),
    )


class TestCounting:

    def test_count_words_splits_on_whitespace(self):
        assert count_words("  one two\n\nthree\tfour  ") == 4

    def test_count_words_empty(self):
        assert count_words("   ") == 0

    def test_count_tweets_numbered_markers(self):
        assert count_tweets(THREAD) == 3

    def test_count_tweets_marker_at_start(self):
        assert count_tweets("1/ first\n2/ second") == 2

    def test_count_tweets_ignores_inline_fractions(self):
        assert count_tweets("Half the time 1/2 of people agree") == 1

    def test_count_tweets_minimum_one(self):
        assert count_tweets("no numbering at all") == 1


class TestCost:

    def test_known_model(self):
        assert estimate_cost("gpt-4o-mini", 1000, 1000) == pytest.approx(0.00075)

    def test_unknown_model_uses_default_rates(self):
        assert estimate_cost("mystery-model", 1000, 0) == pytest.approx(0.00015)


class TestPrompts:

    @pytest.mark.parametrize("length", sorted(LENGTH_SPECS))
    def test_length_spec_in_prompt(self, length):
        prompts = build_prompts("topic", length, "english", random.Random(1))
        spec = LENGTH_SPECS[length]
        assert f"{spec.target_words} words" in prompts["system"]
        assert spec.tweet_range in prompts["system"]

    def test_malay_prompt_bans_indonesian(self):
        prompts = build_prompts("topik", "short", "malay", random.Random(1))
        assert "BAHASA MELAYU" in prompts["system"]
        assert "Indonesian" in prompts["user"]


class TestOpenAIThreadGenerator:

    @pytest.mark.asyncio
    async def test_generates_with_primary_model(self):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(
                200, json=_completion(usage={"prompt_tokens": 500, "completion_tokens": 300})
            )

        result = await _generator(handler).generate("Saving money", "short", "english")

        assert result.thread == THREAD
        assert result.tweet_count == 3
        assert result.word_count == count_words(THREAD)
        assert result.usage.model == "gpt-4o-mini"
        assert result.usage.total_tokens == 800
        assert len(requests) == 1
        assert requests[0]["max_tokens"] == 800
        assert requests[0]["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_falls_back_once_on_primary_failure(self):
        models = []

        def handler(request):
            model = json.loads(request.content)["model"]
            models.append(model)
            if model == "gpt-4o-mini":
                return httpx.Response(503, json={"error": "overloaded"})
            return httpx.Response(200, json=_completion())

        result = await _generator(handler).generate("Saving money", "long", "malay")

        assert models == ["gpt-4o-mini", "gpt-3.5-turbo"]
        assert result.thread == THREAD
        assert result.usage is None

    @pytest.mark.asyncio
    async def test_both_models_failing_raises(self):
        with pytest.raises(ThreadGenerationError) as exc_info:
            await _generator(lambda r: httpx.Response(500)).generate("x", "medium", "english")
        assert exc_info.value.status_code == 502
        assert exc_info.value.code == "THREAD_GENERATION_FAILED"

    @pytest.mark.asyncio
    async def test_no_fallback_configured(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(500)

        with pytest.raises(ThreadGenerationError):
            await _generator(handler, fallback_model=None).generate("x", "short", "english")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_thread_field_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": '{"text": "hi"}'}}]})

        with pytest.raises(ThreadGenerationError):
            await _generator(handler).generate("x", "short", "english")

    @pytest.mark.asyncio
    async def test_non_json_content_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": "plain text"}}]})

        with pytest.raises(ThreadGenerationError):
            await _generator(handler).generate("x", "short", "english")

    @pytest.mark.asyncio
    async def test_unknown_length_rejected(self):
        with pytest.raises(ValueError):
            await _generator(lambda r: httpx.Response(200)).generate("x", "epic", "english")

    def test_from_settings_without_key(self, test_settings):
        assert OpenAIThreadGenerator.from_settings(test_settings) is None


class TestGenerateThreadRoute:

    @pytest.fixture
    def generator(self):
        generator = Mock()
        generator.generate = AsyncMock(
            return_value=ThreadResult(thread=THREAD, word_count=14, tweet_count=3)
        )
        return generator

    @pytest.fixture
    def thread_client(self, test_settings, session_factory, identity_provider, clock, generator):
        app = create_app(
            settings=test_settings,
            session_factory=session_factory,
            identity_provider=identity_provider,
            thread_generator=generator,
            clock=clock,
        )
        return TestClient(app)

    def _entitle(self, session_factory, clock, subject_id="u1"):
        session = session_factory()
        try:
            EntitlementStore(session, clock=clock).upsert_active(
                subject_id, EntitlementPlan.MONTHLY, clock() + timedelta(days=30)
            )
        finally:
            session.close()

    def test_unauthenticated(self, thread_client, generator):
        response = thread_client.post("/threads/generate", json={"topic": "x"})

        assert response.status_code == 401
        generator.generate.assert_not_called()

    def test_subscription_required(self, thread_client, generator):
        response = thread_client.post(
            "/threads/generate", json={"topic": "x"}, headers=auth_header("token-u1")
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "SUBSCRIPTION_REQUIRED"
        generator.generate.assert_not_called()

    def test_entitled_caller_gets_thread(self, thread_client, generator, session_factory, clock):
        self._entitle(session_factory, clock)

        response = thread_client.post(
            "/threads/generate",
            json={"topic": "Saving money", "length": "short", "language": "malay"},
            headers=auth_header("token-u1"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["thread"] == THREAD
        assert body["wordCount"] == 14
        assert body["tweetCount"] == 3
        generator.generate.assert_awaited_once_with("Saving money", "short", "malay")

    def test_generation_failure_is_502(self, thread_client, generator, session_factory, clock):
        self._entitle(session_factory, clock)
        generator.generate.side_effect = ThreadGenerationError("upstream broke")

        response = thread_client.post(
            "/threads/generate", json={"topic": "x"}, headers=auth_header("token-u1")
        )

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "THREAD_GENERATION_FAILED"

    def test_unconfigured_generator_is_503(self, test_settings, session_factory, identity_provider, clock):
        self._entitle(session_factory, clock)
        app = create_app(
            settings=test_settings,
            session_factory=session_factory,
            identity_provider=identity_provider,
            clock=clock,
        )

        response = TestClient(app).post(
            "/threads/generate", json={"topic": "x"}, headers=auth_header("token-u1")
        )

        assert response.status_code == 503
