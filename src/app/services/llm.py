"""LLM provider abstraction via LiteLLM Router.

Provides an LLM service with:
- Claude Sonnet 4 as the primary reasoning model
- GPT-4o as fallback when Claude is unavailable
- ask(prompt, system): the prompt + system-instruction contract the
  participant summary generator consumes
"""

from __future__ import annotations

import structlog
from litellm import Router

from src.app.config import get_settings

logger = structlog.get_logger(__name__)


class LLMService:
    """LLM provider abstraction with LiteLLM Router.

    Configures Claude Sonnet 4 as primary reasoning model with GPT-4o as
    fallback. Both live in the "reasoning" model group so the Router fails
    over between them transparently.
    """

    def __init__(self) -> None:
        settings = get_settings()

        model_list = []

        # Primary reasoning model: Claude Sonnet 4
        if settings.ANTHROPIC_API_KEY:
            model_list.append({
                "model_name": "reasoning",
                "litellm_params": {
                    "model": "anthropic/claude-sonnet-4-20250514",
                    "api_key": settings.ANTHROPIC_API_KEY,
                },
            })

        # Fallback reasoning model: GPT-4o
        if settings.OPENAI_API_KEY:
            model_list.append({
                "model_name": "reasoning",
                "litellm_params": {
                    "model": "openai/gpt-4o",
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

    async def completion(
        self,
        messages: list[dict],
        model: str = "reasoning",
        max_tokens: int = 4096,
        temperature: float = 0.7,
        metadata: dict | None = None,
    ) -> dict:
        """Execute a completion call through the LiteLLM Router.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            model: Model group name.
            max_tokens: Maximum tokens in the response.
            temperature: Sampling temperature (0-2).
            metadata: Additional metadata to include in the call.

        Returns:
            Dict with content, model and usage.

        Raises:
            RuntimeError: If no LLM API keys are configured.
        """
        if not self.router:
            raise RuntimeError("No LLM API keys configured")

        response = await self.router.acompletion(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            metadata=metadata or {},
        )

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return {
            "content": response.choices[0].message.content,
            "model": response.model,
            "usage": usage,
        }

    async def ask(self, prompt: str, system: str, metadata: dict | None = None) -> str:
        """Single-turn question with a system instruction. Returns the text."""
        result = await self.completion(
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            metadata=metadata,
        )
        return result["content"] or ""


# ── Singleton ─────────────────────────────────────────────────────────────────

_llm_service: LLMService | None = None


def get_llm_service() -> LLMService:
    """Get or create the LLM service singleton."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
