"""ChatBridge – Semantic FAQ Tests.

Tests: cosine similarity, FAQ parsing, cache refresh by content hash,
threshold and tie handling, question-vector caching.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from chatbridge.core.errors import StaleCacheError
from chatbridge.knowledge.faq import FaqIndex, parse_faq
from chatbridge.knowledge.similarity import cosine_similarity

from conftest import FakeEmbedder

FAQ = {
    "Fiyatlarınız nedir?": "Fiyatlarımız 100 TL'den başlar.",
    "Kargo ne kadar sürer?": "Kargo 2-3 iş günü sürer.",
}

VECTORS = {
    "Fiyatlarınız nedir?": [1.0, 0.0, 0.0],
    "Kargo ne kadar sürer?": [0.0, 1.0, 0.0],
}


def _index(tmp_path, embedder=None, faq=FAQ, **kwargs) -> FaqIndex:
    cache = tmp_path / "faq" / "questions.json"
    if faq is not None:
        cache.parent.mkdir(parents=True, exist_ok=True)
        cache.write_text(json.dumps(faq, ensure_ascii=False), encoding="utf-8")
    return FaqIndex(embedder or FakeEmbedder(VECTORS), cache_path=cache, **kwargs)


class TestCosineSimilarity:
    def test_identical_vectors(self) -> None:
        assert cosine_similarity([0.3, 0.4], [0.3, 0.4]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    def test_zero_magnitude_is_zero(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_length_mismatch_raises(self) -> None:
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


class TestParseFaq:
    def test_valid_object(self) -> None:
        assert parse_faq(json.dumps(FAQ).encode()) == FAQ

    def test_non_string_pairs_are_skipped(self) -> None:
        raw = json.dumps({"q1": "a1", "q2": 3, "": "empty question"}).encode()
        assert parse_faq(raw) == {"q1": "a1"}

    def test_non_object_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_faq(b'["not", "a", "table"]')


class TestRefresh:
    @pytest.mark.anyio
    async def test_local_cache_is_loaded_without_remote(self, tmp_path) -> None:
        index = _index(tmp_path)

        assert await index.refresh_if_stale() is False
        assert [e.question for e in index.entries] == list(FAQ)

    @pytest.mark.anyio
    async def test_changed_remote_replaces_local_copy(self, tmp_path) -> None:
        index = _index(tmp_path, source_url="https://faq.example/questions.json")
        remote = {"Açık mısınız?": "Evet, 09:00-18:00 arası açığız."}
        index._fetch_remote = AsyncMock(return_value=json.dumps(remote).encode())

        assert await index.refresh_if_stale() is True
        assert [e.question for e in index.entries] == ["Açık mısınız?"]
        cache = tmp_path / "faq" / "questions.json"
        assert json.loads(cache.read_text(encoding="utf-8")) == remote
        assert not (tmp_path / "faq" / "questions.json.tmp").exists()

    @pytest.mark.anyio
    async def test_unchanged_remote_is_not_rewritten(self, tmp_path) -> None:
        index = _index(tmp_path, source_url="https://faq.example/questions.json")
        cache = tmp_path / "faq" / "questions.json"
        index._fetch_remote = AsyncMock(return_value=cache.read_bytes())

        assert await index.refresh_if_stale() is False
        assert len(index.entries) == 2

    @pytest.mark.anyio
    async def test_concurrent_refreshes_download_once(self, tmp_path) -> None:
        index = _index(tmp_path, source_url="https://faq.example/questions.json")
        remote = json.dumps({"Açık mısınız?": "Evet."}).encode()

        async def fetch() -> bytes:
            await asyncio.sleep(0.01)
            return remote

        index._fetch_remote = AsyncMock(side_effect=fetch)

        results = await asyncio.gather(*(index.refresh_if_stale() for _ in range(5)))

        assert results.count(True) == 1
        assert (tmp_path / "faq" / "questions.json").read_bytes() == remote

    @pytest.mark.anyio
    async def test_concurrent_refreshes_never_overlap(self, tmp_path) -> None:
        index = _index(tmp_path, source_url="https://faq.example/questions.json")
        versions = [{f"Soru {i}?": f"Cevap {i}."} for i in range(4)]
        in_flight = []
        overlaps = []

        async def fetch() -> bytes:
            overlaps.append(len(in_flight))
            in_flight.append(1)
            await asyncio.sleep(0.01)
            in_flight.pop()
            return json.dumps(versions[len(overlaps) - 1]).encode()

        index._fetch_remote = AsyncMock(side_effect=fetch)

        await asyncio.gather(*(index.refresh_if_stale() for _ in versions))

        assert overlaps == [0, 0, 0, 0]
        cached = json.loads((tmp_path / "faq" / "questions.json").read_text(encoding="utf-8"))
        assert cached == versions[-1]
        assert [e.question for e in index.entries] == list(cached)

    @pytest.mark.anyio
    async def test_unreachable_remote_keeps_serving_local(self, tmp_path) -> None:
        index = _index(tmp_path, source_url="https://faq.example/questions.json")
        index._fetch_remote = AsyncMock(return_value=None)

        assert await index.refresh_if_stale() is False
        assert len(index.entries) == 2

    @pytest.mark.anyio
    async def test_invalid_remote_keeps_serving_local(self, tmp_path) -> None:
        index = _index(tmp_path, source_url="https://faq.example/questions.json")
        index._fetch_remote = AsyncMock(return_value=b"<html>maintenance</html>")

        assert await index.refresh_if_stale() is False
        assert len(index.entries) == 2

    @pytest.mark.anyio
    async def test_no_remote_and_no_cache_is_stale(self, tmp_path) -> None:
        index = _index(tmp_path, faq=None, source_url="https://faq.example/questions.json")
        index._fetch_remote = AsyncMock(return_value=None)

        with pytest.raises(StaleCacheError):
            await index.refresh_if_stale()

    @pytest.mark.anyio
    async def test_fetch_remote_handles_http_errors(self, tmp_path, http_client) -> None:
        http_client.get.side_effect = httpx.ConnectError("down")
        index = _index(tmp_path, source_url="https://faq.example/questions.json")

        assert await index._fetch_remote() is None


class TestBestMatch:
    @pytest.mark.anyio
    async def test_verbatim_question_scores_one(self, tmp_path) -> None:
        index = _index(tmp_path)
        await index.refresh_if_stale()

        match = await index.best_match("Fiyatlarınız nedir?")

        assert match is not None
        assert match.score == pytest.approx(1.0)
        assert match.entry.answer == "Fiyatlarımız 100 TL'den başlar."

    @pytest.mark.anyio
    async def test_below_threshold_is_a_miss(self, tmp_path) -> None:
        embedder = FakeEmbedder({**VECTORS, "Hava nasıl?": [0.6, 0.0, 0.8]})
        index = _index(tmp_path, embedder, threshold=0.8)
        await index.refresh_if_stale()

        assert await index.best_match("Hava nasıl?") is None

    @pytest.mark.anyio
    async def test_threshold_is_inclusive(self, tmp_path) -> None:
        embedder = FakeEmbedder({**VECTORS, "Fiyat?": [3.0, 0.0, 4.0]})
        index = _index(tmp_path, embedder, threshold=0.6)
        await index.refresh_if_stale()

        match = await index.best_match("Fiyat?")
        assert match is not None
        assert match.entry.question == "Fiyatlarınız nedir?"

    @pytest.mark.anyio
    async def test_tie_keeps_first_entry(self, tmp_path) -> None:
        faq = {"q-first": "first", "q-second": "second"}
        embedder = FakeEmbedder({"q-first": [1.0, 0.0], "q-second": [1.0, 0.0], "query": [1.0, 0.0]})
        index = _index(tmp_path, embedder, faq=faq)
        await index.refresh_if_stale()

        match = await index.best_match("query")
        assert match is not None
        assert match.entry.answer == "first"

    @pytest.mark.anyio
    async def test_question_vectors_are_cached(self, tmp_path) -> None:
        embedder = FakeEmbedder(VECTORS)
        index = _index(tmp_path, embedder)
        await index.refresh_if_stale()

        await index.best_match("Fiyatlarınız nedir?")
        await index.best_match("Kargo ne kadar sürer?")

        assert embedder.calls.count("Kargo ne kadar sürer?") == 2  # once as a question, once as a query
        assert embedder.calls.count("Fiyatlarınız nedir?") == 2
        assert index.cached_vectors == 2

    @pytest.mark.anyio
    async def test_failed_question_embedding_is_skipped(self, tmp_path) -> None:
        embedder = FakeEmbedder({"Kargo ne kadar sürer?": [0.0, 1.0, 0.0], "kargo": [0.0, 1.0, 0.0]})
        index = _index(tmp_path, embedder)
        await index.refresh_if_stale()

        match = await index.best_match("kargo")
        assert match is not None
        assert match.entry.question == "Kargo ne kadar sürer?"
        assert index.cached_vectors == 1

    @pytest.mark.anyio
    async def test_mismatched_dimensions_are_skipped(self, tmp_path) -> None:
        embedder = FakeEmbedder({**VECTORS, "query": [1.0, 0.0]})
        index = _index(tmp_path, embedder)
        await index.refresh_if_stale()

        assert await index.best_match("query") is None

    @pytest.mark.anyio
    async def test_query_embedding_failure_is_a_miss(self, tmp_path) -> None:
        index = _index(tmp_path)
        await index.refresh_if_stale()

        assert await index.best_match("unknown text") is None

    @pytest.mark.anyio
    async def test_empty_index_is_a_miss(self, tmp_path) -> None:
        index = _index(tmp_path, faq=None)
        assert await index.best_match("Fiyatlarınız nedir?") is None
