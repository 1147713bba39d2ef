"""OpenAI embedding generation wrapper."""

import os
from typing import Optional

from openai import AsyncOpenAI

MAX_CONTENT_LENGTH = 100_000


class EmbeddingGenerator:
    """OpenAI embedding API wrapper for agent memories.

    Uses text-embedding-3-small by default (1536 dimensions). Every memory
    in a collection must share one dimension, so `zero_vector()` returns
    the fallback of that same size.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        dimensions: int = 1536,
    ):
        self.model = model
        self.dimensions = dimensions

        # Validate API key is provided
        final_api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not final_api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                "or pass api_key parameter."
            )

        self.client = AsyncOpenAI(api_key=final_api_key)

    async def generate(self, content: str) -> list[float]:
        """Generate embedding for single content.

        Args:
            content: Text to embed (max 100,000 chars)

        Returns:
            Vector of `dimensions` floats

        Raises:
            ValueError: If content exceeds size limit or the vector has
                the wrong dimension
            openai.OpenAIError: If API call fails
        """
        if len(content) > MAX_CONTENT_LENGTH:
            raise ValueError(
                f"Content too long: {len(content)} chars (max {MAX_CONTENT_LENGTH})"
            )

        response = await self.client.embeddings.create(
            model=self.model, input=content, encoding_format="float"
        )
        embedding = response.data[0].embedding
        if len(embedding) != self.dimensions:
            raise ValueError(
                f"Embedding dimension mismatch: got {len(embedding)}, expected {self.dimensions}"
            )
        return embedding

    def zero_vector(self) -> list[float]:
        return [0.0] * self.dimensions
