"""
Scoring strategies and their shared infrastructure.

- EmbeddingScorer: graph strategy over node embeddings
- HybridScorer: collaborative filtering + content-based blend
- ContentScorer: TF-IDF content similarity

Shared pieces:
- CandidateGraphBuilder: bounded graph / utility matrix construction
- EmbeddingArena: fixed-size node vector storage
- ModelStore: persisted state with a staleness timeout

Factory functions:
- build_scorers: one scorer per strategy
- normalize_strategy: parse a strategy name
"""
from .base import Scorer
from .builder import CandidateGraph, CandidateGraphBuilder, UtilityMatrix
from .arena import EmbeddingArena
from .persistence import ModelStore, PersistedState
from .embedding_scorer import EmbeddingScorer
from .hybrid_scorer import HybridScorer
from .content_scorer import ContentScorer
from .factory import build_scorers, create_model_store, normalize_strategy

__all__ = [
    # Scorers
    'Scorer', 'EmbeddingScorer', 'HybridScorer', 'ContentScorer',
    # Infrastructure
    'CandidateGraph', 'CandidateGraphBuilder', 'UtilityMatrix',
    'EmbeddingArena', 'ModelStore', 'PersistedState',
    # Factory functions
    'build_scorers',
    'create_model_store',
    'normalize_strategy',
]
