"""
FORKY INTELLIGENCE - Streaming Language-Model Collaborator

Provides the streaming chat interface the generation orchestrator drives.
Agnostic to the underlying provider (OpenAI, Anthropic, GLM) via LiteLLM.

Architecture:
    GenerationOrchestrator
        |
        v
    LanguageModel.get_model(model_id)      -> ModelHandle (fails fast)
        |
        v
    LanguageModel.stream_text(handle, messages, ...)
        |
        v
    [tenacity retry while opening the stream is rate-limited]
        |
        v
    litellm.acompletion(stream=True)
        |
        v
    StreamResult.text_stream  (async iterator of text deltas)
    StreamResult.usage        (total tokens, once the stream is drained)

Model Routing:
    The provider is chosen from the model id prefix:
    - gpt-*, o1*, o3*   -> OpenAI     (OPENAI_API_KEY)
    - claude-*          -> Anthropic  (ANTHROPIC_API_KEY)
    - glm-*, zhipu-*    -> GLM        (GLM_API_KEY or ZHIPU_API_KEY),
                           OpenAI-compatible endpoint at GLM_BASE_URL
    Unknown prefixes raise ValidationError; a provider without credentials
    raises ProviderUnavailableError. Nothing is silently substituted.
"""
import asyncio
import logging
import os
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import litellm
import msgspec
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.errors import ProviderUnavailableError, ValidationError
from core.schemas import ChatMessage
from infrastructure.config import get_config

logger = logging.getLogger(__name__)

DEFAULT_GLM_BASE_URL = "https://api.z.ai/api/paas/v4"

TITLE_SYSTEM_PROMPT = (
    "You are an expert at writing short, catchy titles.\n\n"
    "IMPORTANT RULES:\n"
    "1. Produce ONE short, descriptive title in English (5-10 words maximum).\n"
    "2. The title must capture the essence of the content.\n"
    "3. Avoid generic words such as 'Project', 'Analysis', 'Study'.\n"
    "4. Use precise, professional vocabulary.\n"
    "5. Start with a capital letter and do not end with a period."
)


# =============================================================================
# PROVIDERS
# =============================================================================

class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GLM = "glm"


PROVIDER_LABELS: Dict[Provider, str] = {
    Provider.OPENAI: "OpenAI",
    Provider.ANTHROPIC: "Anthropic",
    Provider.GLM: "GLM",
}

_PREFIXES = (
    ("gpt-", Provider.OPENAI),
    ("o1", Provider.OPENAI),
    ("o3", Provider.OPENAI),
    ("claude-", Provider.ANTHROPIC),
    ("glm-", Provider.GLM),
    ("zhipu-", Provider.GLM),
)


def provider_for_model(model_id: str) -> Provider:
    """
    Map a model id to its provider by prefix.

    Raises:
        ValidationError: If no known prefix matches
    """
    normalized = (model_id or "").strip().lower()
    for prefix, provider in _PREFIXES:
        if normalized.startswith(prefix):
            return provider
    raise ValidationError(f"Unknown model: {model_id}")


class ModelHandle(msgspec.Struct, kw_only=True, frozen=True):
    """A resolved, credentialed model ready for LiteLLM."""
    model_id: str
    provider: Provider
    litellm_model: str
    api_key: str
    api_base: Optional[str] = None

    def completion_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"model": self.litellm_model, "api_key": self.api_key}
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs


def _credential(provider: Provider) -> Optional[str]:
    if provider == Provider.OPENAI:
        return os.getenv("OPENAI_API_KEY") or None
    if provider == Provider.ANTHROPIC:
        return os.getenv("ANTHROPIC_API_KEY") or None
    return os.getenv("GLM_API_KEY") or os.getenv("ZHIPU_API_KEY") or None


def resolve_model(model_id: str) -> ModelHandle:
    """
    Resolve a model id to a ModelHandle.

    Raises:
        ValidationError: Unknown model prefix
        ProviderUnavailableError: Provider credential not configured
    """
    provider = provider_for_model(model_id)
    api_key = _credential(provider)
    if not api_key:
        raise ProviderUnavailableError(PROVIDER_LABELS[provider])

    model_id = model_id.strip()
    if provider == Provider.GLM:
        base_url = (
            os.getenv("GLM_BASE_URL")
            or os.getenv("ZHIPU_BASE_URL")
            or DEFAULT_GLM_BASE_URL
        )
        # OpenAI-compatible endpoint
        return ModelHandle(
            model_id=model_id,
            provider=provider,
            litellm_model=f"openai/{model_id}",
            api_key=api_key,
            api_base=base_url,
        )
    if provider == Provider.ANTHROPIC:
        return ModelHandle(
            model_id=model_id,
            provider=provider,
            litellm_model=f"anthropic/{model_id}",
            api_key=api_key,
        )
    return ModelHandle(model_id=model_id, provider=provider, litellm_model=model_id, api_key=api_key)


# =============================================================================
# STREAM RESULT
# =============================================================================

class Usage(msgspec.Struct, kw_only=True):
    total_tokens: Optional[int] = None


class StreamResult:
    """
    A finite, non-restartable stream of text deltas.

    `usage` is filled in from the final chunk, so it is only meaningful
    after `text_stream` has been exhausted.
    """

    def __init__(self, response: Any, cancel_event: Optional[asyncio.Event] = None):
        self._response = response
        self._cancel_event = cancel_event
        self._consumed = False
        self.usage = Usage()

    @property
    def text_stream(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("Stream already consumed")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        async for chunk in self._response:
            if self._cancel_event is not None and self._cancel_event.is_set():
                logger.debug("Stream cancelled; dropping remaining chunks")
                break

            usage = getattr(chunk, "usage", None)
            total = getattr(usage, "total_tokens", None) if usage is not None else None
            if total is not None:
                self.usage = Usage(total_tokens=int(total))

            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            content = getattr(delta, "content", None) if delta is not None else None
            if content:
                yield content


# =============================================================================
# LANGUAGE MODEL
# =============================================================================

def _to_litellm_messages(
    messages: Sequence[ChatMessage],
    system: Optional[str],
) -> List[Dict[str, str]]:
    payload = [{"role": "system", "content": system}] if system else []
    payload.extend(m.as_dict() for m in messages)
    return payload


class LanguageModel:
    """
    LiteLLM-backed streaming collaborator.

    Usage:
        llm = LanguageModel()
        handle = llm.get_model("gpt-4o-mini")
        result = await llm.stream_text(handle, [ChatMessage(role="user", content="Hi")])
        async for delta in result.text_stream:
            print(delta, end="")
        print(result.usage.total_tokens)
    """

    def __init__(self, default_model: str = "gpt-4o-mini"):
        self.default_model = default_model
        litellm.drop_params = True

    def get_model(self, model_id: str) -> ModelHandle:
        return resolve_model(model_id)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(litellm.RateLimitError),
        reraise=True,
    )
    async def _open_stream(self, **kwargs: Any) -> Any:
        return await litellm.acompletion(**kwargs)

    async def stream_text(
        self,
        model: ModelHandle,
        messages: Sequence[ChatMessage],
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 2000,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StreamResult:
        """Open a streaming completion. Rate-limited opens are retried."""
        logger.debug(f"Opening stream on {model.model_id} with {len(messages)} messages")
        response = await self._open_stream(
            messages=_to_litellm_messages(messages, system),
            temperature=temperature,
            max_tokens=max_output_tokens,
            stream=True,
            stream_options={"include_usage": True},
            **model.completion_kwargs(),
        )
        return StreamResult(response, cancel_event=cancel_event)

    async def complete_text(
        self,
        model: ModelHandle,
        messages: Sequence[ChatMessage],
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 2000,
    ) -> str:
        """Drain a stream into one string."""
        result = await self.stream_text(
            model,
            messages,
            system=system,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        parts = []
        async for delta in result.text_stream:
            parts.append(delta)
        return "".join(parts)

    async def generate_title(
        self,
        prompt: str,
        response: str,
        model_id: Optional[str] = None,
    ) -> str:
        """
        Short project title for a prompt/response pair.

        Raises:
            ValidationError / ProviderUnavailableError: as get_model
        """
        handle = self.get_model(model_id or self.default_model)
        user_prompt = (
            "Write a short, descriptive title (5-10 words maximum) in English "
            f"for this content:\n\nPrompt: {prompt}\n\nResponse: {response}"
        )
        title = await self.complete_text(
            handle,
            [ChatMessage(role="user", content=user_prompt)],
            system=TITLE_SYSTEM_PROMPT,
            temperature=0.3,
            max_output_tokens=50,
        )
        return title.strip()


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_llm_instance: Optional[LanguageModel] = None


def get_llm() -> LanguageModel:
    """Get the global LanguageModel, creating it from config on first use."""
    global _llm_instance
    if _llm_instance is None:
        _llm_instance = LanguageModel(default_model=get_config().default_model)
    return _llm_instance


def set_llm(llm: Optional[LanguageModel]) -> None:
    """Set the global LanguageModel (tests inject fakes here)."""
    global _llm_instance
    _llm_instance = llm


def reset_llm() -> None:
    """Reset the global LanguageModel (forces re-initialization on next get_llm())."""
    global _llm_instance
    _llm_instance = None
