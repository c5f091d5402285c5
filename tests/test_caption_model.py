from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace

import pytest
import torch

from core.errors import GenerationFailure, ModelLoadFailure, ModelNotLoaded, ModelUnavailable
from core.types import MemePersonality, ModelLoadState, SamplingParameters
from fakes import FakeBackend
from models.caption_model import CaptionModel, build_prompt
from models.text_generation import RecentRepetitionPenalty, UnavailableBackend


async def _prepare_many(model, n, **kw):
    return await asyncio.gather(*(model.prepare_if_needed() for _ in range(n)), **kw)


def test_concurrent_prepare_loads_once():
    backend = FakeBackend(load_delay=0.05)
    model = CaptionModel(backend)

    handles = asyncio.run(_prepare_many(model, 10))

    assert backend.load_calls == 1
    assert handles == ["handle"] * 10
    assert model.state is ModelLoadState.READY


def test_concurrent_prepare_share_failure():
    backend = FakeBackend(load_delay=0.05, load_error=RuntimeError("out of memory"))
    model = CaptionModel(backend, max_load_attempts=1)

    results = asyncio.run(_prepare_many(model, 8, return_exceptions=True))

    assert backend.load_calls == 1
    assert all(isinstance(r, ModelLoadFailure) for r in results)
    assert model.state is ModelLoadState.FAILED
    assert "out of memory" in model.last_error.message


def test_ready_is_noop():
    backend = FakeBackend()
    model = CaptionModel(backend)

    async def run():
        await model.prepare_if_needed()
        await model.prepare_if_needed()

    asyncio.run(run())
    assert backend.load_calls == 1


def test_failed_load_is_retried_until_limit():
    backend = FakeBackend(load_error=RuntimeError("network down"))
    model = CaptionModel(backend, max_load_attempts=2)

    async def attempt():
        with pytest.raises(ModelLoadFailure):
            await model.prepare_if_needed()

    asyncio.run(attempt())
    asyncio.run(attempt())
    assert backend.load_calls == 2

    # sticky from here on
    asyncio.run(attempt())
    assert backend.load_calls == 2
    assert model.load_attempts == 2


def test_retry_can_recover():
    backend = FakeBackend(fail_first_loads=1)
    model = CaptionModel(backend, max_load_attempts=3)

    async def run():
        with pytest.raises(ModelLoadFailure):
            await model.prepare_if_needed()
        return await model.prepare_if_needed()

    assert asyncio.run(run()) == "handle"
    assert model.state is ModelLoadState.READY
    assert model.last_error is None


def test_unavailable_backend_is_never_retried():
    model = CaptionModel(UnavailableBackend("not installed"), max_load_attempts=5)

    async def run():
        for _ in range(3):
            with pytest.raises(ModelUnavailable):
                await model.prepare_if_needed()

    asyncio.run(run())
    assert model.state is ModelLoadState.FAILED
    assert model.load_attempts == 5
    assert model.status()["last_error"]["error"] == "MODEL_UNAVAILABLE"


def test_load_without_handle_is_not_loaded():
    backend = FakeBackend(handle=None)
    model = CaptionModel(backend, max_load_attempts=1)

    async def run():
        with pytest.raises(ModelNotLoaded):
            await model.generate_captions(["cat"])

    asyncio.run(run())
    assert model.state is ModelLoadState.FAILED
    assert backend.requests == []


def test_ready_load_logs_parameter_count(caplog):
    model = CaptionModel(FakeBackend(handle=SimpleNamespace(num_parameters=1_500_000)))
    with caplog.at_level(logging.INFO, logger="models.caption_model"):
        asyncio.run(model.prepare_if_needed())
    assert "params: 1.5M" in caplog.text


def test_cancelled_waiter_does_not_cancel_load():
    backend = FakeBackend(load_delay=0.2)
    model = CaptionModel(backend)

    async def run():
        first = asyncio.ensure_future(model.prepare_if_needed())
        await asyncio.sleep(0.02)
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert model.state is ModelLoadState.LOADING
        return await model.prepare_if_needed()

    assert asyncio.run(run()) == "handle"
    assert backend.load_calls == 1


def test_progress_is_forwarded():
    seen = []
    backend = FakeBackend()
    model = CaptionModel(backend, progress=seen.append)
    asyncio.run(model.prepare_if_needed())
    assert seen == [1.0]


def test_generate_captions_uses_prompt_and_parameters():
    backend = FakeBackend(text="  1) A\n2) B\n3) C \n\n")
    model = CaptionModel(backend)

    text = asyncio.run(model.generate_captions(["cat", "laptop"]))

    assert text == "1) A\n2) B\n3) C"
    request = backend.requests[0]
    assert "cat, laptop" in request.prompt_text
    assert request.parameters == SamplingParameters(
        temperature=0.8,
        top_p=0.95,
        repetition_penalty=1.1,
        repetition_context_size=40,
        max_tokens=128,
    )


def test_generation_error_is_wrapped():
    model = CaptionModel(FakeBackend(generate_error=ValueError("bad logits")))

    async def run():
        with pytest.raises(GenerationFailure, match="bad logits"):
            await model.generate_captions(["cat"])

    asyncio.run(run())
    # a generation error leaves the model loaded
    assert model.state is ModelLoadState.READY


def test_prompt_is_deterministic():
    prompt = build_prompt(["dog", "skateboard"])
    assert prompt == build_prompt(["dog", "skateboard"])
    assert prompt.startswith("You are a meme caption generator.")
    assert "dog, skateboard" in prompt
    assert "EXACTLY 3" in prompt
    assert "under 80 characters" in prompt
    assert "Do NOT explain" in prompt
    assert prompt.endswith("1) first caption\n2) second caption\n3) third caption")


def test_prompt_personality_adds_style_line():
    plain = build_prompt(["cat"])
    styled = build_prompt(["cat"], MemePersonality.SARCASTIC)
    assert MemePersonality.SARCASTIC.style_prompt not in plain
    assert f"- {MemePersonality.SARCASTIC.style_prompt}" in styled


def test_repetition_penalty_only_within_window():
    processor = RecentRepetitionPenalty(penalty=2.0, context_size=2)
    input_ids = torch.tensor([[1, 2, 0, 3]])
    scores = torch.tensor([[1.0, -1.0, 4.0, 0.5]])

    out = processor(input_ids, scores)

    # window is tokens 0 and 3
    assert out.tolist() == [[0.5, -1.0, 4.0, 0.25]]


def test_repetition_penalty_rejects_bad_config():
    with pytest.raises(ValueError):
        RecentRepetitionPenalty(penalty=0, context_size=4)
    with pytest.raises(ValueError):
        RecentRepetitionPenalty(penalty=1.1, context_size=0)
