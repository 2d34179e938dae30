"""Query-time retrieval and rank fusion."""

from .fusion import RRF_K, reciprocal_rank_fusion
from .retriever import RETRIEVAL_MODES, HybridRetriever

__all__ = ["HybridRetriever", "RETRIEVAL_MODES", "RRF_K", "reciprocal_rank_fusion"]
