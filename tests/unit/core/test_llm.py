"""
Unit tests for core/llm.py - model resolution and streaming

LiteLLM is never called over the network: `litellm.acompletion` is
monkeypatched with an async generator of chunk objects.
"""
import asyncio
from types import SimpleNamespace

import litellm
import pytest

from core.errors import ProviderUnavailableError, ValidationError
from core.llm import (
    DEFAULT_GLM_BASE_URL,
    LanguageModel,
    Provider,
    StreamResult,
    get_llm,
    provider_for_model,
    resolve_model,
    set_llm,
)
from core.schemas import ChatMessage


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GLM_API_KEY",
        "ZHIPU_API_KEY", "GLM_BASE_URL", "ZHIPU_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def _chunk(content=None, total_tokens=None):
    choices = [SimpleNamespace(delta=SimpleNamespace(content=content))] if content is not None else []
    usage = SimpleNamespace(total_tokens=total_tokens) if total_tokens is not None else None
    return SimpleNamespace(choices=choices, usage=usage)


async def _agen(items):
    for item in items:
        yield item


# =============================================================================
# MODEL RESOLUTION TESTS
# =============================================================================

@pytest.mark.parametrize("model_id,provider", [
    ("gpt-4o-mini", Provider.OPENAI),
    ("o1-preview", Provider.OPENAI),
    ("o3-mini", Provider.OPENAI),
    ("claude-3-5-sonnet", Provider.ANTHROPIC),
    ("glm-4", Provider.GLM),
    ("zhipu-glm-4", Provider.GLM),
])
def test_provider_for_model(model_id, provider):
    assert provider_for_model(model_id) == provider


def test_unknown_model_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        provider_for_model("llama-3")
    assert "llama-3" in str(exc_info.value)


def test_missing_credential_raises_provider_unavailable(clean_env):
    with pytest.raises(ProviderUnavailableError) as exc_info:
        resolve_model("claude-3-5-sonnet")
    assert "Anthropic" in str(exc_info.value)


def test_resolve_openai(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "sk-test")

    handle = resolve_model("gpt-4o-mini")

    assert handle.litellm_model == "gpt-4o-mini"
    assert handle.completion_kwargs() == {"model": "gpt-4o-mini", "api_key": "sk-test"}


def test_resolve_anthropic_prefixes_model(clean_env):
    clean_env.setenv("ANTHROPIC_API_KEY", "ak")

    assert resolve_model("claude-3-haiku").litellm_model == "anthropic/claude-3-haiku"


def test_resolve_glm_uses_compatible_endpoint(clean_env):
    clean_env.setenv("ZHIPU_API_KEY", "zk")

    handle = resolve_model("glm-4")

    assert handle.litellm_model == "openai/glm-4"
    assert handle.api_key == "zk"
    assert handle.api_base == DEFAULT_GLM_BASE_URL


def test_resolve_glm_base_url_override(clean_env):
    clean_env.setenv("GLM_API_KEY", "gk")
    clean_env.setenv("GLM_BASE_URL", "https://glm.internal/v4")

    assert resolve_model("glm-4").api_base == "https://glm.internal/v4"


# =============================================================================
# STREAM RESULT TESTS
# =============================================================================

@pytest.mark.asyncio
async def test_stream_result_yields_text_and_usage():
    result = StreamResult(_agen([
        _chunk("He"),
        _chunk(""),
        _chunk("llo"),
        _chunk(total_tokens=7),
    ]))

    parts = [delta async for delta in result.text_stream]

    assert parts == ["He", "llo"]
    assert result.usage.total_tokens == 7


@pytest.mark.asyncio
async def test_stream_result_is_single_use():
    result = StreamResult(_agen([]))
    _ = result.text_stream
    with pytest.raises(RuntimeError):
        _ = result.text_stream


@pytest.mark.asyncio
async def test_stream_result_stops_on_cancel():
    cancel = asyncio.Event()
    result = StreamResult(_agen([_chunk("a"), _chunk("b"), _chunk("c")]), cancel_event=cancel)

    parts = []
    async for delta in result.text_stream:
        parts.append(delta)
        cancel.set()

    assert parts == ["a"]


# =============================================================================
# LANGUAGE MODEL TESTS
# =============================================================================

@pytest.mark.asyncio
async def test_stream_text_builds_litellm_request(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "sk-test")
    captured = {}

    async def fake_acompletion(**kwargs):
        captured.update(kwargs)
        return _agen([_chunk("ok"), _chunk(total_tokens=3)])

    clean_env.setattr(litellm, "acompletion", fake_acompletion)
    llm = LanguageModel()
    handle = llm.get_model("gpt-4o-mini")

    result = await llm.stream_text(
        handle, [ChatMessage(role="user", content="Hi")], system="Be brief", max_output_tokens=100
    )
    text = "".join([d async for d in result.text_stream])

    assert text == "ok"
    assert captured["messages"] == [
        {"role": "system", "content": "Be brief"},
        {"role": "user", "content": "Hi"},
    ]
    assert captured["stream"] is True
    assert captured["max_tokens"] == 100
    assert captured["model"] == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_generate_title_strips_output(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "sk-test")

    async def fake_acompletion(**kwargs):
        return _agen([_chunk("  Lisbon Trip Plan \n")])

    clean_env.setattr(litellm, "acompletion", fake_acompletion)

    title = await LanguageModel().generate_title("Plan a trip", "Here is a plan", "gpt-4o-mini")

    assert title == "Lisbon Trip Plan"


def test_get_llm_singleton():
    first = get_llm()
    assert get_llm() is first

    replacement = LanguageModel(default_model="claude-3-haiku")
    set_llm(replacement)
    assert get_llm() is replacement
