"""
Scorer interface shared by the three strategies.

A Scorer owns one strategy's in-memory model. The lifecycle is:

    ensure_ready()        fresh in memory? -> done
                          fresh on disk?   -> load
                          strict mode?     -> ModelUnavailableError
                          otherwise        -> full training
    train(force)          no-op while fresh unless forced
    train_incremental()   merge with prior persisted state

Personalization, cold start and outfit synthesis only ever see this
interface, never a concrete strategy.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from config.settings import Settings
from core.errors import ModelUnavailableError
from core.logging import get_logger, log_duration
from core.memory import MemoryMonitor
from engines.builder import CandidateGraphBuilder
from engines.persistence import ModelStore, PersistedState
from recs.entity_store import EntityStore
from recs.models import TrainingReport, User


logger = get_logger(__name__)


class Scorer(ABC):
    """Base class for scoring strategies."""

    name: str = ""
    model_label: str = ""
    requires_gender: bool = False

    def __init__(
        self,
        store: EntityStore,
        settings: Settings,
        model_store: ModelStore,
        monitor: Optional[MemoryMonitor] = None,
        seed: Optional[int] = None,
    ):
        self.store = store
        self.settings = settings
        self.model_store = model_store
        self.monitor = monitor or MemoryMonitor(settings.memory_cleanup_interval)

        seed = settings.random_seed if seed is None else seed
        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)
        self.builder = CandidateGraphBuilder(store, settings, self.monitor, self.rng)

        self.trained_at: Optional[float] = None
        self._lock = asyncio.Lock()

    # =========================================================================
    # Strategy hooks
    # =========================================================================

    @abstractmethod
    async def _fit(self) -> Dict[str, int]:
        """Full training from the entity store. Returns count fields."""

    @abstractmethod
    async def _fit_incremental(self, prior: Optional[PersistedState]) -> Dict[str, int]:
        """Merge-based training on top of ``prior``. Returns count fields."""

    @abstractmethod
    def _export_state(self) -> Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]:
        """(metadata, entries, extra) to persist."""

    @abstractmethod
    async def _import_state(self, state: PersistedState) -> bool:
        """Rebuild in-memory model from persisted state. False if nothing usable."""

    @abstractmethod
    def _reset(self) -> None:
        """Drop all in-memory model state."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether this strategy can produce scores at all."""

    @abstractmethod
    def knows_user(self, user: User) -> bool:
        """Whether a representation exists (or can be synthesized) for ``user``."""

    @abstractmethod
    async def candidate_pool(self, user: User, limit: int, seed_id: Optional[str] = None) -> List[str]:
        """Bounded list of product ids worth scoring for ``user``."""

    @abstractmethod
    async def score_candidates(self, user: User, candidate_ids: Sequence[str]) -> Dict[str, float]:
        """Base scores for ``candidate_ids``; ids the model cannot score are omitted."""

    @abstractmethod
    def seed_similarity(self, seed_id: str, candidate_ids: Sequence[str]) -> Dict[str, float]:
        """Similarity of each candidate to the seed product, in [0, 1]."""

    @abstractmethod
    def memory_usage(self) -> Dict[str, Any]:
        ...

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _guard(self):
        return self._lock if self.settings.single_flight_training else nullcontext()

    @property
    def trained(self) -> bool:
        return self.trained_at is not None

    def is_fresh(self) -> bool:
        if self.trained_at is None:
            return False
        return self.model_store.clock() - self.trained_at <= self.model_store.timeout_seconds

    def _report(self, status: str, duration_ms: float = 0.0, counts: Optional[Dict[str, int]] = None) -> TrainingReport:
        counts = counts or {}
        return TrainingReport(
            strategy=self.name,
            status=status,
            duration_ms=round(duration_ms, 2),
            user_count=counts.get("users", 0),
            product_count=counts.get("products", 0),
            node_count=counts.get("nodes", 0),
            trained_at=datetime.fromtimestamp(self.trained_at, tz=timezone.utc) if self.trained_at else None,
        )

    async def _persist(self) -> None:
        metadata, entries, extra = self._export_state()
        metadata.setdefault("strategy", self.name)
        record = await self.model_store.save(self.name, metadata, entries, extra)
        self.trained_at = float(record["last_trained_at"])

    async def load(self, allow_stale: bool = False) -> bool:
        """Load persisted state into memory. False when missing, stale or corrupt."""
        state = await self.model_store.load(self.name, allow_stale=allow_stale)
        if state is None:
            return False
        self._reset()
        if not await self._import_state(state):
            logger.warning("Persisted state held no usable entries", strategy=self.name)
            self._reset()
            return False
        self.trained_at = state.last_trained_at
        logger.info("Loaded persisted state", strategy=self.name, entries=len(state.entries))
        return True

    def _discard(self, error: Exception) -> None:
        """Forget a half-built model so the next request reloads or retrains."""
        self._reset()
        self.trained_at = None
        logger.error(
            "Training failed",
            strategy=self.name,
            error=str(error),
            error_type=type(error).__name__,
        )

    async def _run_training(self) -> TrainingReport:
        try:
            with log_duration(logger, "Training finished", strategy=self.name) as extra:
                self._reset()
                counts = await self._fit()
                await self._persist()
                extra.update(counts)
        except Exception as e:
            self._discard(e)
            raise
        return self._report("trained", counts=counts)

    async def train(self, force: bool = False) -> TrainingReport:
        """
        Full training run, then persist.

        While the in-memory (or persisted) state is fresh this is a no-op
        unless ``force`` is set.
        """
        async with self._guard():
            if not force:
                if self.is_fresh() or await self.load():
                    logger.info("Model still fresh, skipping training", strategy=self.name)
                    return self._report("fresh")
            start = self.model_store.clock()
            report = await self._run_training()
            report.duration_ms = round((self.model_store.clock() - start) * 1000, 2)
            return report

    async def train_incremental(self) -> TrainingReport:
        """
        Merge-based update over prior persisted state.

        Prior state is used even when stale; without any prior state this
        degrades to a full run.
        """
        async with self._guard():
            start = self.model_store.clock()
            prior = await self.model_store.load(self.name, allow_stale=True)
            if prior is None and not self.trained:
                logger.info("No prior state, running full training", strategy=self.name)
                report = await self._run_training()
            else:
                try:
                    with log_duration(logger, "Incremental training finished", strategy=self.name) as extra:
                        counts = await self._fit_incremental(prior)
                        await self._persist()
                        extra.update(counts)
                except Exception as e:
                    self._discard(e)
                    raise
                report = self._report("incremental", counts=counts)
            report.duration_ms = round((self.model_store.clock() - start) * 1000, 2)
            return report

    async def ensure_ready(self) -> None:
        """
        Make sure a fresh model is in memory.

        Raises:
            ModelUnavailableError: strict load-only mode with no fresh state
        """
        if self.is_fresh():
            return
        async with self._guard():
            if self.is_fresh():
                return
            if await self.load():
                return
            if self.settings.strict_load_only:
                raise ModelUnavailableError(
                    f"No fresh persisted state for the {self.name} strategy; run offline training",
                    retry_after=int(self.settings.cache_timeout_seconds // 10) or 60,
                    strategy=self.name,
                )
            logger.info("No fresh state, training inline", strategy=self.name)
            await self._run_training()

    def clear_memory(self) -> None:
        """Drop in-memory state; the next request reloads from persistence."""
        self._reset()
        self.trained_at = None
        self.monitor.force()
        logger.info("Cleared in-memory model", strategy=self.name)
