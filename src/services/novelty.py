"""
Maximal Marginal Relevance selection for context packing.

Each step picks the candidate maximizing

    alpha * relevance - (1 - alpha) * (1 - novelty)

where novelty is ``1 - max similarity`` to anything already selected. The
similarity is embedding cosine when an embedder is available; otherwise (or
when embedding fails or times out) word-set Jaccard.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

import numpy as np

from src.providers.embeddings import EmbeddingProvider
from src.query.results import FusedResult
from src.shared.config import NoveltyConfig
from src.shared.errors import StageTimeout
from src.shared.observability import get_logger
from src.shared.resilience import execute_with_timeout

logger = get_logger(__name__)

_WORD = re.compile(r"\w+")


def word_set(text: str) -> Set[str]:
    """Lowercased word tokens longer than two characters."""
    return {w for w in _WORD.findall((text or "").lower()) if len(w) > 2}


def jaccard_similarity(a: Set[str], b: Set[str]) -> float:
    if not a and not b:
        return 0.0
    union = a | b
    return len(a & b) / len(union)


def cosine_similarity_matrix(vectors: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarity; zero vectors are similar to nothing."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    safe = np.where(norms == 0, 1.0, norms)
    unit = vectors / safe
    sims = unit @ unit.T
    zero = (norms == 0).ravel()
    sims[zero, :] = 0.0
    sims[:, zero] = 0.0
    return sims


@dataclass
class NoveltySelection:
    selected: List[FusedResult]
    novelty_scores: Dict[str, float] = field(default_factory=dict)
    not_selected: List[str] = field(default_factory=list)
    similarity: str = "jaccard"


class NoveltySelector:
    """MMR selector over fused results."""

    def __init__(
        self,
        config: Optional[NoveltyConfig] = None,
        embedder: Optional[EmbeddingProvider] = None,
        embedding_timeout_ms: float = 5000,
    ):
        self.config = config or NoveltyConfig()
        self.embedder = embedder if self.config.use_embeddings else None
        self.embedding_timeout_ms = embedding_timeout_ms

    async def _embed_all(self, results: Sequence[FusedResult]) -> Optional[np.ndarray]:
        if self.embedder is None:
            return None

        async def _run() -> List[List[float]]:
            return await asyncio.gather(*(self.embedder.embed(r.content) for r in results))

        try:
            vectors = await execute_with_timeout(
                _run, self.embedding_timeout_ms, "novelty_embedding"
            )
            matrix = np.asarray(vectors, dtype=float)
        except StageTimeout:
            return None
        except Exception as exc:
            logger.warning("novelty_embedding_failed", error=str(exc))
            return None

        if matrix.ndim != 2 or matrix.shape[0] != len(results):
            logger.warning("novelty_embedding_shape_mismatch", shape=list(matrix.shape))
            return None
        return matrix

    async def similarity_matrix(self, results: Sequence[FusedResult]) -> tuple[np.ndarray, str]:
        vectors = await self._embed_all(results)
        if vectors is not None:
            return cosine_similarity_matrix(vectors), "cosine"

        words = [word_set(r.content) for r in results]
        n = len(results)
        sims = np.zeros((n, n))
        for i in range(n):
            for j in range(i + 1, n):
                sims[i, j] = sims[j, i] = jaccard_similarity(words[i], words[j])
        return sims, "jaccard"

    async def select(
        self,
        results: Sequence[FusedResult],
        target: Optional[int] = None,
    ) -> NoveltySelection:
        """
        Select up to ``target`` results (default ``max_results``).

        Always fills up to the target while candidates remain; a negative
        marginal score only affects which candidate goes next.
        """
        target = self.config.max_results if target is None else target
        candidates = list(results)
        if not self.config.enabled or not candidates or target <= 0:
            return NoveltySelection(
                selected=candidates[: max(target, 0)],
                not_selected=[r.id for r in candidates[max(target, 0):]],
            )

        sims, kind = await self.similarity_matrix(candidates)
        alpha = self.config.alpha

        remaining = list(range(len(candidates)))
        chosen: List[int] = []
        novelty: Dict[str, float] = {}

        while remaining and len(chosen) < target:
            best_idx = None
            best_score = float("-inf")
            best_novelty = 1.0
            for idx in remaining:
                if chosen:
                    item_novelty = 1.0 - float(max(sims[idx, j] for j in chosen))
                else:
                    item_novelty = 1.0
                relevance = candidates[idx].relevance
                marginal = alpha * relevance - (1 - alpha) * (1 - item_novelty)
                if marginal > best_score:
                    best_idx, best_score, best_novelty = idx, marginal, item_novelty

            chosen.append(best_idx)
            remaining.remove(best_idx)
            novelty[candidates[best_idx].id] = best_novelty

        selected = [candidates[i] for i in chosen]
        logger.debug(
            "novelty_selection_complete",
            candidates=len(candidates),
            selected=len(selected),
            similarity=kind,
        )
        return NoveltySelection(
            selected=selected,
            novelty_scores=novelty,
            not_selected=[candidates[i].id for i in remaining],
            similarity=kind,
        )
