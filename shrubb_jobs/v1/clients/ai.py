"""
OpenAI client used by the billable handlers.
"""

from dataclasses import dataclass
from typing import Any

import openai
from openai import AsyncOpenAI

from shrubb_jobs.config.settings import Settings
from shrubb_jobs.v1.core.exceptions import ProviderError


@dataclass(frozen=True)
class Completion:
    """Text of a chat completion plus the token counts billed for it."""

    content: str
    tokens_in: int
    tokens_out: int
    model: str


class AIClient:
    """
    Thin async wrapper over the OpenAI SDK.

    Returns plain values so handlers never touch SDK response objects, and
    turns SDK errors into ``ProviderError`` so they flow through the job
    retry policy like any other handler failure.
    """

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None):
        self.settings = settings
        self._client = client or AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.provider_timeout_s,
        )

    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        """Run a chat completion and return its first choice."""
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            raise ProviderError(
                f"OpenAI completion failed: {e}", details={"model": model}
            ) from e

        usage = response.usage
        content = ""
        if response.choices and response.choices[0].message.content:
            content = response.choices[0].message.content

        return Completion(
            content=content,
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
            model=model,
        )

    async def generate_image(
        self,
        model: str,
        prompt: str,
        size: str = "1024x1024",
        quality: str = "standard",
    ) -> str | None:
        """Generate one image and return its URL, or None if none came back."""
        try:
            response = await self._client.images.generate(
                model=model,
                prompt=prompt,
                n=1,
                size=size,
                quality=quality,
            )
        except openai.OpenAIError as e:
            raise ProviderError(
                f"OpenAI image generation failed: {e}", details={"model": model}
            ) from e

        if not response.data:
            return None
        return response.data[0].url

    async def close(self) -> None:
        await self._client.close()
