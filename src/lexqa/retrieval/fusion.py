"""Reciprocal Rank Fusion of dense and sparse rankings."""
from __future__ import annotations

from typing import Dict, List, Sequence

from lexqa.vectorstore import RetrievalMatch

RRF_K = 60


def reciprocal_rank_fusion(
    dense: Sequence[RetrievalMatch],
    sparse: Sequence[RetrievalMatch],
    top_k: int,
    *,
    k: int = RRF_K,
) -> List[RetrievalMatch]:
    """Fuse two best-first rankings into one deduplicated list.

    The item at 0-based rank ``r`` contributes ``1 / (k + r + 1)``. Dense
    matches are scanned first, so on an id collision the dense occurrence's
    ``score`` is carried (sparse only fills a missing one) and dense metadata
    wins on duplicate keys. Ties keep first-seen order.
    """

    fused_scores: Dict[str, float] = {}
    merged: Dict[str, RetrievalMatch] = {}

    for ranking in (dense, sparse):
        for rank, match in enumerate(ranking):
            fused_scores[match.id] = fused_scores.get(match.id, 0.0) + 1.0 / (k + rank + 1)
            existing = merged.get(match.id)
            if existing is None:
                merged[match.id] = RetrievalMatch(id=match.id, score=match.score, metadata=dict(match.metadata))
                continue
            merged[match.id] = RetrievalMatch(
                id=match.id,
                score=existing.score if existing.score is not None else match.score,
                metadata={**match.metadata, **existing.metadata},
            )

    ordered = sorted(fused_scores.items(), key=lambda entry: entry[1], reverse=True)
    return [merged[match_id] for match_id, _ in ordered[: max(top_k, 0)]]


__all__ = ["RRF_K", "reciprocal_rank_fusion"]
