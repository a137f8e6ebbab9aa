from __future__ import annotations

import os

from quizmaster.providers.base import LLMProvider


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions, or any compatible endpoint via *base_url* (e.g. OpenRouter)."""

    def __init__(self, model: str = "gpt-4o-mini", base_url: str | None = None):
        import openai
        self.client = openai.AsyncOpenAI(
            api_key=os.environ.get("OPENAI_API_KEY", ""),
            base_url=base_url,
        )
        self.model = model

    async def generate(
        self, prompt: str, temperature: float = 0.7, system: str | None = None
    ) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        resp = await self.client.chat.completions.create(
            model=self.model,
            temperature=temperature,
            messages=messages,
        )
        return resp.choices[0].message.content

    def name(self) -> str:
        return f"openai/{self.model}"
