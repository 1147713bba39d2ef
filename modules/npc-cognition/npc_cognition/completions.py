"""OpenAI chat completion wrapper used for reflection and metacognition."""

import os
from typing import Optional

from openai import AsyncOpenAI


class CompletionGenerator:
    """Single-prompt text completion.

    Used as a blocking RPC: no retries here, callers decide how to degrade.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        max_tokens: int = 800,
        temperature: float = 0.7,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

        final_api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not final_api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                "or pass api_key parameter."
            )

        self.client = AsyncOpenAI(api_key=final_api_key)

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Return the stripped completion text for prompt.

        Raises:
            ValueError: If the model returns an empty completion
            openai.OpenAIError: If API call fails
        """
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens or self.max_tokens,
            temperature=self.temperature,
        )
        text = (response.choices[0].message.content or "").strip()
        if not text:
            raise ValueError("Empty completion from model")
        return text
