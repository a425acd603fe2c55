# tests/test_embedder.py
import numpy as np
import pytest
from unittest.mock import Mock

from docvector.errors import EmbeddingFailed, InvalidArgument
from docvector.memory.embedder import (
    HashEmbedder,
    OpenAIEmbedder,
    build_embedder,
    text_hash,
)


def embedding_response(vectors):
    response = Mock()
    response.data = [Mock(embedding=list(vector)) for vector in vectors]
    return response


class TestTextHash:
    """31-multiplier rolling hash wrapped to signed 32 bits, absolute value."""

    def test_known_values(self):
        assert text_hash("") == 0
        assert text_hash("a") == 97
        assert text_hash("ab") == 97 * 31 + 98
        assert text_hash("hello") == 99162322

    def test_wraps_to_signed_32_bit(self):
        # hashes to exactly -2**31 before the absolute value is taken
        assert text_hash("polygenelubricants") == 2 ** 31

    def test_result_is_never_negative(self):
        for sample in ["negative?", "zzzzzzzzzzzz", "ünïcödé", "🙂 emoji"]:
            assert text_hash(sample) >= 0


class TestHashEmbedder:

    def test_same_text_same_vector(self, embedder):
        assert np.array_equal(embedder.embed_text("manual"), embedder.embed_text("manual"))

    def test_distinct_texts_distinct_vectors(self, embedder):
        samples = ["reset the filter", "replace the filter", "prime the pump", "", "a"]
        vectors = [embedder.embed_text(s) for s in samples]

        for i in range(len(vectors)):
            for j in range(i + 1, len(vectors)):
                assert not np.array_equal(vectors[i], vectors[j])

    def test_shape_and_amplitude(self, embedder):
        vector = embedder.embed_text("anything")

        assert vector.shape == (embedder.dimension,)
        assert vector.dtype == np.float64
        assert np.all(np.abs(vector) <= 0.1)

    def test_formula(self):
        vector = HashEmbedder(4).embed_text("ab")
        expected = np.sin(3105 + np.arange(4)) * 0.1

        assert np.allclose(vector, expected)

    def test_batch_embed(self, embedder):
        matrix = embedder.embed(["one", "two", "three"])

        assert matrix.shape == (3, embedder.dimension)
        assert np.array_equal(matrix[1], embedder.embed_text("two"))

    def test_empty_batch(self, embedder):
        assert embedder.embed([]).shape == (0, embedder.dimension)

    def test_non_text_input_fails(self, embedder):
        with pytest.raises(EmbeddingFailed):
            embedder.embed_text(None)

    @pytest.mark.parametrize("dimension", [0, -3])
    def test_invalid_dimension(self, dimension):
        with pytest.raises(InvalidArgument):
            HashEmbedder(dimension)


class TestOpenAIEmbedder:
    """Upstream calls are mocked; no network access."""

    def test_embed_text_returns_vector(self):
        client = Mock()
        client.embeddings.create.return_value = embedding_response([[0.1, 0.2, 0.3]])

        embedder = OpenAIEmbedder(dimension=3, model="test-model", client=client)
        vector = embedder.embed_text("hello")

        assert vector.tolist() == [0.1, 0.2, 0.3]
        client.embeddings.create.assert_called_once_with(
            model="test-model", input=["hello"], dimensions=3
        )

    def test_batches_requests(self):
        client = Mock()
        client.embeddings.create.side_effect = lambda model, input, dimensions: embedding_response(
            [[float(len(text)), 0.0] for text in input]
        )

        embedder = OpenAIEmbedder(dimension=2, client=client, batch_size=2)
        matrix = embedder.embed(["a", "bb", "ccc", "dddd", "eeeee"])

        assert matrix.shape == (5, 2)
        assert matrix[:, 0].tolist() == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert client.embeddings.create.call_count == 3

    def test_upstream_error_becomes_embedding_failed(self):
        client = Mock()
        client.embeddings.create.side_effect = RuntimeError("rate limited")

        embedder = OpenAIEmbedder(dimension=3, client=client)

        with pytest.raises(EmbeddingFailed, match="rate limited"):
            embedder.embed_text("hello")

    def test_wrong_dimension_is_rejected(self):
        client = Mock()
        client.embeddings.create.return_value = embedding_response([[0.1, 0.2]])

        embedder = OpenAIEmbedder(dimension=3, client=client)

        with pytest.raises(EmbeddingFailed):
            embedder.embed_text("hello")

    def test_health_check_reports_model(self):
        embedder = OpenAIEmbedder(dimension=3, model="test-model", client=Mock())
        status = embedder.health_check()

        assert status["provider"] == "openai"
        assert status["model"] == "test-model"


class TestBuildEmbedder:

    def test_hash_provider(self):
        embedder = build_embedder("hash", 16)

        assert isinstance(embedder, HashEmbedder)
        assert embedder.dimension == 16

    def test_unknown_provider(self):
        with pytest.raises(InvalidArgument):
            build_embedder("word2vec", 16)
