"""
Scorer Factory Module.

Creates the three strategy scorers over one entity store, one model
store and one memory monitor. Scorers are created once and reused across
requests; each keeps its own in-memory model.
"""

from typing import Dict, Optional, Type

from config.settings import Settings
from core.memory import MemoryMonitor
from engines.base import Scorer
from engines.content_scorer import ContentScorer
from engines.embedding_scorer import EmbeddingScorer
from engines.hybrid_scorer import HybridScorer
from engines.persistence import ModelStore
from recs.entity_store import EntityStore
from recs.models import Strategy


# Strategy registry
SCORER_CLASSES: Dict[Strategy, Type[Scorer]] = {
    Strategy.GRAPH: EmbeddingScorer,
    Strategy.HYBRID: HybridScorer,
    Strategy.CONTENT: ContentScorer,
}


def normalize_strategy(value) -> Strategy:
    """
    Parse a strategy name; "gnn" and "cf" are accepted aliases.

    Raises:
        ValueError: unknown strategy
    """
    if isinstance(value, Strategy):
        return value
    key = str(value).strip().lower()
    aliases = {"gnn": Strategy.GRAPH, "cf": Strategy.CONTENT, "tfidf": Strategy.CONTENT}
    if key in aliases:
        return aliases[key]
    return Strategy(key)


def create_model_store(settings: Settings) -> ModelStore:
    return ModelStore(settings.models_dir, settings.cache_timeout_seconds)


def build_scorers(
    store: EntityStore,
    settings: Settings,
    model_store: Optional[ModelStore] = None,
    monitor: Optional[MemoryMonitor] = None,
) -> Dict[Strategy, Scorer]:
    """
    Create one scorer per strategy.

    Args:
        store: Entity store shared by all scorers
        settings: Engine settings
        model_store: Persistence (default: ``settings.models_dir``)
        monitor: Shared memory reclamation hook
    """
    model_store = model_store or create_model_store(settings)
    monitor = monitor or MemoryMonitor(settings.memory_cleanup_interval)
    return {
        strategy: cls(store, settings, model_store, monitor)
        for strategy, cls in SCORER_CLASSES.items()
    }
