"""
ChatPlan — Text-completion provider abstraction.

`complete()` routes a prompt to the configured provider, selected on first
use from the LLM_PROVIDER setting (gemini, anthropic, openai, cohere).
`LLMCompletionService` wraps it as the CompletionPort used by the planner:
label-constrained replies and provider errors as ExternalServiceError.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Sequence

from chatplan.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

# (api_key, model, system, user_message, max_tokens) -> reply text
_ProviderFn = Callable[[str, str, str, str, int], Awaitable[str]]

# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_gemini(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    response = await gm.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    return response.text


async def _complete_anthropic(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return response.content[0].text


async def _complete_openai(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content


async def _complete_cohere(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "cohere":    (_complete_cohere,   "command-a-03-2025"),
}


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read env vars and return (provider_fn, model, api_key)."""
    from chatplan.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    api_key = settings.LLM_API_KEY

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, api_key


# Populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(system: str, user_message: str, max_tokens: int = 256) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Provider errors propagate unchanged; LLMCompletionService wraps them.
    """
    global _provider_fn, _model, _api_key

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    return await _provider_fn(_api_key, _model, system, user_message, max_tokens)


def clean_llm_response(raw_text: str) -> str:
    """Remove markdown code fences from a model reply."""
    cleaned_text = raw_text.strip()
    if cleaned_text.startswith("```"):
        cleaned_text = cleaned_text.removeprefix("```")
        for lang in ("json", "markdown", "text"):
            if cleaned_text.startswith(lang):
                cleaned_text = cleaned_text.removeprefix(lang)
                break
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text.removesuffix("```")
    return cleaned_text.strip()


# ---------------------------------------------------------------------------
# CompletionPort adapter
# ---------------------------------------------------------------------------

_LABEL_INSTRUCTION = """\

Respond with exactly one of these labels and nothing else:
{labels}
If none of them fits, respond with: unknown
"""


def normalize_label(raw: str, labels: Sequence[str]) -> str:
    """Map a model reply onto one of the labels, or return "unknown"."""
    cleaned = clean_llm_response(raw).strip().strip("\"'`.").lower()
    cleaned = cleaned.replace("-", "_").replace(" ", "_")
    allowed = {label.lower(): label.lower() for label in labels}
    allowed.update({label.lower().replace("-", "_"): label.lower() for label in labels})
    return allowed.get(cleaned, "unknown")


class LLMCompletionService:
    """CompletionPort backed by the configured LLM provider."""

    def __init__(self, default_system: str = "You are a helpful planning assistant.") -> None:
        self._default_system = default_system

    async def complete(
        self,
        prompt: str,
        system: str = "",
        labels: Sequence[str] | None = None,
        max_tokens: int = 1024,
    ) -> str:
        system = system or self._default_system
        if labels:
            system += _LABEL_INSTRUCTION.format(labels="\n".join(labels))
            max_tokens = min(max_tokens, 16)

        try:
            raw = await complete(system=system, user_message=prompt, max_tokens=max_tokens)
        except Exception as exc:
            logger.error("Completion request failed: %s", exc)
            raise ExternalServiceError("completion", exc) from exc

        if raw is None:
            raise ExternalServiceError("completion", "empty response")

        if labels:
            label = normalize_label(raw, labels)
            logger.debug("Label reply '%s' → %s", raw.strip(), label)
            return label
        return raw.strip()
