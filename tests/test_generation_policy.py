"""Fallback chain, retry bound and timeout behaviour of synthesize_with_fallback (no DB)."""

import asyncio

import pytest

from app.services.generation import (
    FLUX_SCHNELL,
    OPENJOURNEY,
    SD_1_5,
    SD_2_1,
    GenerationFailedError,
    GenerationPolicy,
    next_model,
    resolve_model,
    synthesize_with_fallback,
)
from app.services.providers import ImageProvider, ProviderError


class FailingProvider(ImageProvider):
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def generate(self, model_id, prompt, negative_prompt=None):
        self.calls.append(model_id)
        raise ProviderError(f"{model_id} is overloaded")


class FlakyProvider(ImageProvider):
    """Fails the first `failures` calls, then returns an image."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls: list[tuple[str, str, str | None]] = []

    async def generate(self, model_id, prompt, negative_prompt=None):
        self.calls.append((model_id, prompt, negative_prompt))
        if len(self.calls) <= self.failures:
            raise ProviderError("503 Service Unavailable")
        return b"\x89PNG fake"


class HangingProvider(ImageProvider):
    def __init__(self) -> None:
        self.cancelled = 0

    async def generate(self, model_id, prompt, negative_prompt=None):
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return b""


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def test_model_choice_lookup():
    assert resolve_model("dalle-3") == FLUX_SCHNELL
    assert resolve_model("midjourney") == OPENJOURNEY
    assert resolve_model("stability-sd-3") == SD_2_1
    assert resolve_model("stabilityai/stable-diffusion-xl-base-1.0") == FLUX_SCHNELL
    assert resolve_model(None) == FLUX_SCHNELL


def test_fallback_chain():
    assert next_model(FLUX_SCHNELL) == SD_2_1
    assert next_model(SD_2_1) == SD_1_5
    assert next_model(SD_1_5) == SD_1_5
    assert next_model(OPENJOURNEY) == OPENJOURNEY


@pytest.mark.asyncio
async def test_first_attempt_success_uses_mapped_model():
    provider = FlakyProvider(failures=0)
    sleep = RecordingSleep()
    outcome = await synthesize_with_fallback(provider, "midjourney", "a cat", "blurry", sleep=sleep)
    assert outcome.model == OPENJOURNEY
    assert outcome.attempts == 1
    assert outcome.image == b"\x89PNG fake"
    assert provider.calls == [(OPENJOURNEY, "a cat", "blurry")]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_failure_advances_to_next_model_after_backoff():
    provider = FlakyProvider(failures=1)
    sleep = RecordingSleep()
    outcome = await synthesize_with_fallback(provider, "dalle-3", "a cat", sleep=sleep)
    assert [c[0] for c in provider.calls] == [FLUX_SCHNELL, SD_2_1]
    assert outcome.model == SD_2_1
    assert outcome.attempts == 2
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_always_failing_provider_stops_after_three_attempts():
    provider = FailingProvider()
    sleep = RecordingSleep()
    with pytest.raises(GenerationFailedError) as exc_info:
        await synthesize_with_fallback(provider, None, "a cat", sleep=sleep)
    assert provider.calls == [FLUX_SCHNELL, SD_2_1, SD_1_5]
    assert sleep.delays == [2.0, 2.0]
    err = exc_info.value
    assert err.attempts == 3
    assert err.models == [FLUX_SCHNELL, SD_2_1, SD_1_5]
    assert str(err) == f"{SD_1_5} is overloaded"


@pytest.mark.asyncio
async def test_attempt_budget_is_configurable():
    provider = FailingProvider()
    policy = GenerationPolicy(max_attempts=5, timeout_seconds=1, backoff_seconds=0.5)
    sleep = RecordingSleep()
    with pytest.raises(GenerationFailedError):
        await synthesize_with_fallback(provider, "dalle-3", "x", policy=policy, sleep=sleep)
    assert len(provider.calls) == 5
    assert sleep.delays == [0.5] * 4


@pytest.mark.asyncio
async def test_timeout_cancels_in_flight_call():
    provider = HangingProvider()
    policy = GenerationPolicy(max_attempts=3, timeout_seconds=0.01, backoff_seconds=0)
    with pytest.raises(GenerationFailedError) as exc_info:
        await synthesize_with_fallback(provider, None, "x", policy=policy, sleep=RecordingSleep())
    assert provider.cancelled == 3
    assert str(exc_info.value) == "Request timeout after 0.01s"
