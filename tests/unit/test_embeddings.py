"""Unit tests for embedding and completion generation."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from npc_cognition.completions import CompletionGenerator
from npc_cognition.embeddings import EmbeddingGenerator


@pytest.fixture(autouse=True)
def api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


@pytest.mark.asyncio
class TestEmbeddingGenerator:
    """Unit tests for embedding generation."""

    async def test_generate_single_embedding(self):
        """Can generate embedding for single text."""
        mock_response = MagicMock()
        mock_response.data = [MagicMock(embedding=[0.1] * 1536)]

        with patch("npc_cognition.embeddings.AsyncOpenAI") as mock_client:
            mock_client.return_value.embeddings.create = AsyncMock(return_value=mock_response)

            embedder = EmbeddingGenerator()
            result = await embedder.generate("I saw the blacksmith at the forge")

            assert len(result) == 1536
            assert all(isinstance(x, float) for x in result)

    async def test_uses_correct_model(self):
        """Uses text-embedding-3-small by default."""
        mock_response = MagicMock()
        mock_response.data = [MagicMock(embedding=[0.1] * 1536)]

        with patch("npc_cognition.embeddings.AsyncOpenAI") as mock_client:
            mock_create = AsyncMock(return_value=mock_response)
            mock_client.return_value.embeddings.create = mock_create

            embedder = EmbeddingGenerator()
            await embedder.generate("test")

            mock_create.assert_called_once()
            call_kwargs = mock_create.call_args[1]
            assert call_kwargs["model"] == "text-embedding-3-small"

    async def test_dimension_mismatch_rejected(self):
        mock_response = MagicMock()
        mock_response.data = [MagicMock(embedding=[0.1] * 10)]

        with patch("npc_cognition.embeddings.AsyncOpenAI") as mock_client:
            mock_client.return_value.embeddings.create = AsyncMock(return_value=mock_response)

            embedder = EmbeddingGenerator(dimensions=1536)
            with pytest.raises(ValueError, match="dimension mismatch"):
                await embedder.generate("test")

    async def test_content_too_long(self):
        with patch("npc_cognition.embeddings.AsyncOpenAI"):
            embedder = EmbeddingGenerator()
            with pytest.raises(ValueError, match="Content too long"):
                await embedder.generate("x" * 100_001)


class TestEmbeddingConfiguration:
    def test_custom_model(self):
        """Can specify custom embedding model."""
        with patch("npc_cognition.embeddings.AsyncOpenAI"):
            embedder = EmbeddingGenerator(model="text-embedding-3-large")
            assert embedder.model == "text-embedding-3-large"

    def test_zero_vector_matches_dimensions(self):
        with patch("npc_cognition.embeddings.AsyncOpenAI"):
            embedder = EmbeddingGenerator(dimensions=256)
            assert embedder.zero_vector() == [0.0] * 256

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY")
        with pytest.raises(ValueError, match="API key required"):
            EmbeddingGenerator()


@pytest.mark.asyncio
class TestCompletionGenerator:
    async def test_complete_sends_system_and_user_messages(self):
        mock_response = MagicMock()
        mock_response.choices = [MagicMock(message=MagicMock(content="  I learned a lot today.  "))]

        with patch("npc_cognition.completions.AsyncOpenAI") as mock_client:
            mock_create = AsyncMock(return_value=mock_response)
            mock_client.return_value.chat.completions.create = mock_create

            generator = CompletionGenerator()
            text = await generator.complete("Reflect", system="You are Elara", max_tokens=100)

            assert text == "I learned a lot today."
            kwargs = mock_create.call_args[1]
            assert kwargs["model"] == "gpt-4o-mini"
            assert kwargs["max_tokens"] == 100
            assert kwargs["messages"][0] == {"role": "system", "content": "You are Elara"}
            assert kwargs["messages"][1] == {"role": "user", "content": "Reflect"}

    async def test_empty_completion_raises(self):
        mock_response = MagicMock()
        mock_response.choices = [MagicMock(message=MagicMock(content=""))]

        with patch("npc_cognition.completions.AsyncOpenAI") as mock_client:
            mock_client.return_value.chat.completions.create = AsyncMock(return_value=mock_response)

            generator = CompletionGenerator()
            with pytest.raises(ValueError, match="Empty completion"):
                await generator.complete("Reflect")
