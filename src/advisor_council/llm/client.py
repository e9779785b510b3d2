"""
Provider SDK backend -- the secondary TextGenerator backend.

Wraps the Anthropic or OpenAI async SDK behind the TextBackend interface:
    backend = ProviderBackend(provider="anthropic")
    text = await backend.generate(CacheablePrompt(system="...", user_message="..."))

Prompts are split into a stable prefix (system, context) and the dynamic
user message. Anthropic gets cache_control on the stable blocks; OpenAI
caches identical prefixes automatically.

This backend does not retry. Deadlines belong to the TextGenerator facade and
retries to the RetryExecutor at each call site.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any

from ..errors import ServiceError
from ..security.prompt_guard import sanitize_for_prompt

logger = logging.getLogger(__name__)

DEFAULT_MAX_PROMPT_LENGTH = 200_000
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7


# =============================================================================
# DATA MODELS
# =============================================================================


@dataclass
class CacheablePrompt:
    """
    A prompt split into cacheable (stable) and dynamic parts.

      - system: role instructions (stable for an expert or the orchestrator)
      - context: project description and discovered facts (stable per session)
      - user_message: the transcript slice and the ask (changes every call)
    """

    system: str = ""
    context: str = ""
    user_message: str = ""

    def body(self) -> str:
        """Context plus the dynamic message, for backends with no system channel split."""
        return "\n\n".join(p for p in (self.context, self.user_message) if p)

    def to_flat_prompt(self) -> str:
        return "\n\n".join(p for p in (self.system, self.context, self.user_message) if p)

    @property
    def total_length(self) -> int:
        return len(self.system) + len(self.context) + len(self.user_message)


# =============================================================================
# PROVIDER BACKEND
# =============================================================================


@dataclass(frozen=True)
class ProviderSpec:
    key_env: str
    default_model: str


PROVIDERS: dict[str, ProviderSpec] = {
    "anthropic": ProviderSpec("ANTHROPIC_API_KEY", "claude-sonnet-4-20250514"),
    "openai": ProviderSpec("OPENAI_API_KEY", "gpt-4o"),
}


class ProviderBackend:
    """Hosted-model backend over the provider's async SDK."""

    def __init__(
        self,
        provider: str = "anthropic",
        model: str | None = None,
        api_key: str | None = None,
        max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        provider = provider.lower()
        if provider not in PROVIDERS:
            raise ValueError(
                f"Unknown provider '{provider}' (expected one of {sorted(PROVIDERS)})"
            )
        spec = PROVIDERS[provider]
        self.name = f"sdk:{provider}"
        self._provider = provider
        self._model = model or spec.default_model
        self._max_prompt_length = max_prompt_length
        self._temperature = temperature
        self._max_tokens = max_tokens

        key = api_key if api_key is not None else os.environ.get(spec.key_env, "")
        self._client: Any = self._build_client(key) if key else None
        if self._client is None:
            logger.warning(f"[ProviderBackend] {spec.key_env} not set -- {self.name} unavailable")
        else:
            logger.info(f"[ProviderBackend] {self.name} ready (model={self._model})")

    @property
    def available(self) -> bool:
        return self._client is not None

    def _build_client(self, key: str) -> Any:
        if self._provider == "anthropic":
            import anthropic

            return anthropic.AsyncAnthropic(api_key=key)
        import openai

        return openai.AsyncOpenAI(api_key=key)

    async def generate(self, prompt: CacheablePrompt) -> str:
        if self._client is None:
            raise ServiceError("backend not configured", backend=self.name)

        prompt = self._sanitize_prompt(prompt)
        try:
            if self._provider == "anthropic":
                return await self._call_anthropic(prompt)
            return await self._call_openai(prompt)
        except ServiceError:
            raise
        except Exception as e:
            raise ServiceError(f"{type(e).__name__}: {e}", backend=self.name) from e

    def _sanitize_prompt(self, prompt: CacheablePrompt) -> CacheablePrompt:
        """Enforce size limits and strip null bytes."""
        limit = self._max_prompt_length // 3
        return CacheablePrompt(
            system=sanitize_for_prompt(prompt.system, max_length=limit),
            context=sanitize_for_prompt(prompt.context, max_length=limit),
            user_message=sanitize_for_prompt(prompt.user_message, max_length=limit),
        )

    async def _call_anthropic(self, prompt: CacheablePrompt) -> str:
        """Anthropic Claude with explicit prompt caching (cache_control)."""
        system_blocks = []
        if prompt.system:
            system_blocks.append({
                "type": "text",
                "text": prompt.system,
                "cache_control": {"type": "ephemeral"},
            })
        if prompt.context:
            system_blocks.append({
                "type": "text",
                "text": prompt.context,
                "cache_control": {"type": "ephemeral"},
            })

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "messages": [{"role": "user", "content": prompt.user_message}],
        }
        if system_blocks:
            kwargs["system"] = system_blocks

        response = await self._client.messages.create(**kwargs)
        text = "".join(
            getattr(block, "text", "") for block in response.content
        )
        logger.debug(
            f"[ProviderBackend] anthropic: "
            f"{getattr(response.usage, 'input_tokens', 0)}in "
            f"({getattr(response.usage, 'cache_read_input_tokens', 0) or 0} cached) + "
            f"{getattr(response.usage, 'output_tokens', 0)}out"
        )
        return text

    async def _call_openai(self, prompt: CacheablePrompt) -> str:
        """OpenAI with automatic prefix caching."""
        messages = []
        if prompt.system:
            messages.append({"role": "system", "content": prompt.system})
        if prompt.context:
            messages.append({"role": "system", "content": prompt.context})
        messages.append({"role": "user", "content": prompt.user_message})

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        return response.choices[0].message.content or ""
