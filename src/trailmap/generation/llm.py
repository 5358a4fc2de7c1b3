"""Text-generation collaborator via LiteLLM Router.

Two model groups are configured:
- "reasoning": Claude Sonnet 4, GPT-4o fallback (long-form documents)
- "fast": Claude Haiku, GPT-4o-mini fallback (short summaries, JSON)

Retries and provider fallback are the Router's job. Nothing here retries;
a failed call raises and becomes a stage failure.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog
from litellm import Router

from src.trailmap.config import Settings, get_settings
from src.trailmap.core.monitoring import track_llm_call
from src.trailmap.errors import UpstreamError

logger = structlog.get_logger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_response(content: str) -> dict[str, Any]:
    """Parse a JSON object from model output, tolerating markdown fences.

    Raises:
        UpstreamError: The content is not a JSON object.
    """
    cleaned = _CODE_FENCE.sub("", content.strip()).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        # Fall back to the outermost {...} span when prose surrounds it
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise UpstreamError("llm", "response was not valid JSON") from None
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as exc:
            raise UpstreamError("llm", f"response was not valid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise UpstreamError("llm", "expected a JSON object")
    return parsed


class LLMService:
    """LLM provider abstraction with LiteLLM Router.

    Configures Claude as primary model with OpenAI models as fallback in
    each group.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()

        model_list = []

        if settings.ANTHROPIC_API_KEY:
            model_list.append({
                "model_name": "reasoning",
                "litellm_params": {
                    "model": "anthropic/claude-sonnet-4-20250514",
                    "api_key": settings.ANTHROPIC_API_KEY,
                },
            })
            model_list.append({
                "model_name": "fast",
                "litellm_params": {
                    "model": "anthropic/claude-3-5-haiku-20241022",
                    "api_key": settings.ANTHROPIC_API_KEY,
                },
            })

        if settings.OPENAI_API_KEY:
            model_list.append({
                "model_name": "reasoning",
                "litellm_params": {
                    "model": "openai/gpt-4o",
                    "api_key": settings.OPENAI_API_KEY,
                },
            })
            model_list.append({
                "model_name": "fast",
                "litellm_params": {
                    "model": "openai/gpt-4o-mini",
                    "api_key": settings.OPENAI_API_KEY,
                },
            })

        if not model_list:
            logger.warning("No LLM API keys configured -- LLM service will be unavailable")
            self.router = None
            return

        self.router = Router(
            model_list=model_list,
            num_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )

    async def generate(
        self,
        system: str,
        user: str,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        model: str = "fast",
    ) -> str:
        """Single chat completion returning the message text.

        Raises:
            RuntimeError: If no LLM API keys are configured.
        """
        if not self.router:
            raise RuntimeError("No LLM API keys configured")

        async with track_llm_call(model) as tracker:
            response = await self.router.acompletion(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            )
            usage = getattr(response, "usage", None)
            if usage:
                tracker["prompt_tokens"] = usage.prompt_tokens
                tracker["completion_tokens"] = usage.completion_tokens

        content = response.choices[0].message.content or ""
        logger.debug(
            "llm.completion",
            model=model,
            response_model=getattr(response, "model", None),
            chars=len(content),
        )
        return content

    async def generate_json(
        self,
        system: str,
        user: str,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        model: str = "fast",
    ) -> dict[str, Any]:
        """Completion whose output must be a single JSON object."""
        content = await self.generate(
            system,
            user,
            max_tokens=max_tokens,
            temperature=temperature,
            model=model,
        )
        return parse_json_response(content)
