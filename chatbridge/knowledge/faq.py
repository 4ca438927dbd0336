"""ChatBridge – Semantic FAQ Index.

A flat question→answer table, authored in the pivot language, mirrored from a
remote JSON resource into a local cache file. The local copy is replaced
whenever its MD5 differs from the remote's. Lookups embed the query and compare
it to every question by cosine similarity; question vectors are cached by
question text so each question is embedded once per process.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path

import httpx
import numpy as np
import structlog

from chatbridge.ai.embeddings import EmbeddingClient
from chatbridge.core.errors import StaleCacheError
from chatbridge.knowledge.similarity import cosine_similarity

logger = structlog.get_logger()


@dataclass(frozen=True)
class FaqEntry:
    question: str
    answer: str


@dataclass(frozen=True)
class FaqMatch:
    entry: FaqEntry
    score: float


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def parse_faq(raw: bytes) -> dict[str, str]:
    """Decode a question→answer JSON object.

    Non-string pairs are skipped.

    Raises:
        ValueError: not JSON, or not a JSON object.
    """
    data = json.loads(raw.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("FAQ resource must be a JSON object")
    entries: dict[str, str] = {}
    for question, answer in data.items():
        if isinstance(question, str) and isinstance(answer, str) and question.strip():
            entries[question] = answer
        else:
            logger.warning("faq.entry_skipped", question=str(question)[:60])
    return entries


class FaqIndex:
    """Semantic FAQ lookup over a locally cached, remotely refreshed table."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        *,
        cache_path: str | Path,
        source_url: str = "",
        threshold: float = 0.8,
        timeout: float = 30.0,
    ) -> None:
        self._embedder = embedder
        self._cache_path = Path(cache_path)
        self._source_url = source_url
        self.threshold = threshold
        self._timeout = timeout
        self._lock = asyncio.Lock()
        self._entries: dict[str, str] = {}
        self._loaded_hash: str | None = None
        self._vectors: dict[str, np.ndarray] = {}

    @property
    def entries(self) -> list[FaqEntry]:
        return [FaqEntry(q, a) for q, a in self._entries.items()]

    @property
    def cached_vectors(self) -> int:
        return len(self._vectors)

    # ── Refresh ──────────────────────────────────────────────────────────

    async def refresh_if_stale(self) -> bool:
        """Sync the local cache with the remote resource.

        Returns True when a new copy was downloaded. When the remote cannot be
        fetched the existing local cache keeps serving.

        Raises:
            StaleCacheError: remote unreachable and no usable local cache.
        """
        async with self._lock:
            local = await asyncio.to_thread(self._read_local)
            local_hash = _md5(local) if local is not None else None

            remote = await self._fetch_remote() if self._source_url else None
            if remote is not None:
                try:
                    entries = parse_faq(remote)
                except (UnicodeDecodeError, ValueError) as e:
                    logger.warning("faq.refresh.remote_invalid", error=str(e))
                else:
                    remote_hash = _md5(remote)
                    if remote_hash != local_hash:
                        await asyncio.to_thread(self._write_local, remote)
                        self._install(entries, remote_hash)
                        logger.info(
                            "faq.refresh.downloaded",
                            entries=len(entries),
                            previous_hash=local_hash,
                            hash=remote_hash,
                        )
                        return True

            if local is None:
                raise StaleCacheError("FAQ remote unreachable and no local cache exists")
            if local_hash != self._loaded_hash:
                try:
                    self._install(parse_faq(local), local_hash)
                except (UnicodeDecodeError, ValueError) as e:
                    if not self._entries:
                        raise StaleCacheError(f"local FAQ cache is unreadable: {e}") from e
                    logger.warning("faq.refresh.local_invalid", error=str(e))
                    return False
                logger.info("faq.refresh.loaded_local", entries=len(self._entries))
            return False

    async def _fetch_remote(self) -> bytes | None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(self._source_url)
            resp.raise_for_status()
            return resp.content
        except httpx.HTTPError as e:
            logger.warning("faq.refresh.remote_unreachable", url=self._source_url, error=str(e))
            return None

    def _read_local(self) -> bytes | None:
        try:
            return self._cache_path.read_bytes()
        except FileNotFoundError:
            return None

    def _write_local(self, data: bytes) -> None:
        self._cache_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._cache_path.with_name(self._cache_path.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, self._cache_path)

    def _install(self, entries: dict[str, str], content_hash: str | None) -> None:
        self._entries = entries
        self._loaded_hash = content_hash
        # Vectors are keyed by question text; drop the ones for removed questions.
        for question in list(self._vectors):
            if question not in entries:
                del self._vectors[question]

    # ── Lookup ───────────────────────────────────────────────────────────

    async def best_match(self, query: str) -> FaqMatch | None:
        """Best entry whose similarity to ``query`` reaches the threshold.

        Ties keep the first entry in table order. Questions whose embedding
        fails are skipped for this lookup and retried on the next one.
        """
        entries = self._entries
        if not entries or not query or not query.strip():
            return None

        query_vector = await self._embedder.embed(query)
        if query_vector is None:
            return None

        await self._embed_missing(list(entries))

        best: FaqMatch | None = None
        for question, answer in entries.items():
            vector = self._vectors.get(question)
            if vector is None:
                continue
            try:
                score = cosine_similarity(query_vector, vector)
            except ValueError:
                logger.warning("faq.vector_mismatch", question_len=len(question))
                continue
            if best is None or score > best.score:
                best = FaqMatch(FaqEntry(question, answer), score)

        if best is None or best.score < self.threshold:
            logger.info("faq.miss", best_score=round(best.score, 4) if best else None)
            return None
        logger.info("faq.hit", score=round(best.score, 4))
        return best

    async def _embed_missing(self, questions: list[str]) -> None:
        missing = [q for q in questions if q not in self._vectors]
        if not missing:
            return
        vectors = await asyncio.gather(*(self._embedder.embed(q) for q in missing))
        embedded = 0
        for question, vector in zip(missing, vectors):
            if vector is not None:
                self._vectors[question] = vector
                embedded += 1
        logger.debug("faq.vectors_cached", embedded=embedded, failed=len(missing) - embedded)
