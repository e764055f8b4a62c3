"""
Candidate Graph / Matrix Builder.

Reads users (with interaction history) and products from the entity store
in fixed-size pages and builds the per-strategy training structures:

- CandidateGraph: user->product edges from interactions plus symmetric
  product<->product edges from compatibility hints (graph strategy)
- UtilityMatrix: dense users x products matrix of interaction utilities
  (hybrid strategy)

Every page is followed by the memory reclamation hook and a cooperative
checkpoint so long builds never monopolize the event loop. Empty results
are valid; callers detect them and route to cold start.
"""

import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import numpy as np

from config.settings import Settings
from core.logging import get_logger, log_duration
from core.memory import MemoryMonitor
from core.utils import checkpoint
from recs.entity_store import EntityStore, iter_pages
from recs.models import Product, User


logger = get_logger(__name__)


@dataclass
class CandidateGraph:
    """User/product adjacency for one training cycle."""
    users: Dict[str, User] = field(default_factory=dict)
    products: Dict[str, Product] = field(default_factory=dict)
    user_edges: Dict[str, Set[str]] = field(default_factory=dict)
    product_edges: Dict[str, Set[str]] = field(default_factory=dict)
    sampled: bool = False

    @property
    def node_count(self) -> int:
        return len(self.users) + len(self.products)

    @property
    def edge_count(self) -> int:
        product_pairs = sum(len(n) for n in self.product_edges.values()) // 2
        return sum(len(n) for n in self.user_edges.values()) + product_pairs

    @property
    def is_empty(self) -> bool:
        return not self.users or not self.products

    def adjacency(self) -> Dict[str, Set[str]]:
        """
        Undirected neighbour sets keyed by node key ("u:<id>" / "p:<id>").

        Products see both the users who interacted with them and their
        compatible products. Isolated nodes map to an empty set.
        """
        adjacency: Dict[str, Set[str]] = {f"u:{uid}": set() for uid in self.users}
        adjacency.update({f"p:{pid}": set() for pid in self.products})
        for uid, pids in self.user_edges.items():
            for pid in pids:
                adjacency[f"u:{uid}"].add(f"p:{pid}")
                adjacency[f"p:{pid}"].add(f"u:{uid}")
        for pid, others in self.product_edges.items():
            adjacency[f"p:{pid}"].update(f"p:{o}" for o in others)
        return adjacency


@dataclass
class UtilityMatrix:
    """Dense users x products utility matrix with its index maps."""
    matrix: np.ndarray
    user_ids: List[str]
    product_ids: List[str]
    users: Dict[str, User] = field(default_factory=dict)
    products: Dict[str, Product] = field(default_factory=dict)

    def __post_init__(self):
        self.user_index = {uid: i for i, uid in enumerate(self.user_ids)}
        self.item_index = {pid: j for j, pid in enumerate(self.product_ids)}

    @classmethod
    def from_rows(cls, rows: Dict[str, Dict[str, float]], product_ids: List[str]) -> "UtilityMatrix":
        """Build from ``{user_id: {product_id: utility}}``; unknown products are dropped."""
        user_ids = list(rows)
        item_index = {pid: j for j, pid in enumerate(product_ids)}
        matrix = np.zeros((len(user_ids), len(product_ids)), dtype=np.float32)
        for i, uid in enumerate(user_ids):
            for pid, value in rows[uid].items():
                j = item_index.get(pid)
                if j is not None:
                    matrix[i, j] = value
        return cls(matrix=matrix, user_ids=user_ids, product_ids=list(product_ids))

    def row_map(self, user_id: str) -> Dict[str, float]:
        """Non-zero utilities of one user as ``{product_id: utility}``."""
        row = self.matrix[self.user_index[user_id]]
        return {self.product_ids[j]: float(row[j]) for j in np.flatnonzero(row)}

    @property
    def is_empty(self) -> bool:
        return self.matrix.size == 0 or not np.any(self.matrix)

    @property
    def shape(self):
        return self.matrix.shape


def utility_row(user: User, item_index: Dict[str, int]) -> np.ndarray:
    """
    One user's utility vector over ``item_index``.

    A later event for the same product overwrites an earlier one.
    """
    row = np.zeros(len(item_index), dtype=np.float32)
    for event in user.interaction_history:
        j = item_index.get(event.product_id)
        if j is not None:
            row[j] = event.utility
    return row


def utility_map(user: User) -> Dict[str, float]:
    """``{product_id: utility}`` for a user, later events winning."""
    return {event.product_id: event.utility for event in user.interaction_history}


class CandidateGraphBuilder:
    """
    Builds bounded training structures from the entity store.

    Args:
        store: Entity store to page through
        settings: Caps and batch size
        monitor: Memory reclamation hook, called after every page
        rng: Random source for down-sampling
    """

    def __init__(
        self,
        store: EntityStore,
        settings: Settings,
        monitor: Optional[MemoryMonitor] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.settings = settings
        self.monitor = monitor or MemoryMonitor(settings.memory_cleanup_interval)
        self.rng = rng or random.Random(settings.random_seed)

    async def _after_batch(self) -> None:
        self.monitor.reclaim()
        await checkpoint()

    async def fetch_users(self, limit: int) -> Dict[str, User]:
        total = min(limit, await self.store.count_users_with_history())
        users: Dict[str, User] = {}
        async for batch in iter_pages(self.store.list_users_with_history, total, self.settings.batch_size):
            for user in batch:
                if user.has_history:
                    users[user.id] = user
            await self._after_batch()
        return users

    async def fetch_products(self, limit: int) -> Dict[str, Product]:
        total = min(limit, await self.store.count_products())
        products: Dict[str, Product] = {}
        async for batch in iter_pages(self.store.list_products, total, self.settings.batch_size):
            for product in batch:
                products[product.id] = product
            await self._after_batch()
        return products

    # =========================================================================
    # Graph
    # =========================================================================

    async def build_graph(self) -> CandidateGraph:
        """
        Build the adjacency structure, sampling down to ``max_nodes``.

        Users and products are each capped at ``max_nodes`` while reading;
        if together they still exceed the ceiling, node ids are sampled
        uniformly and edges are filtered to the sample.
        """
        max_nodes = self.settings.max_nodes

        with log_duration(logger, "Built candidate graph") as extra:
            users = await self.fetch_users(max_nodes)
            products = await self.fetch_products(max_nodes)
            graph = CandidateGraph(users=users, products=products)

            for uid, user in users.items():
                linked = {pid for pid in user.history_product_ids if pid in products}
                if linked:
                    graph.user_edges[uid] = linked

            for pid, product in products.items():
                for other in product.compatible_products:
                    if other == pid or other not in products:
                        continue
                    graph.product_edges.setdefault(pid, set()).add(other)
                    graph.product_edges.setdefault(other, set()).add(pid)
            await self._after_batch()

            if graph.node_count > max_nodes:
                graph = self._sample(graph, max_nodes)

            extra.update(
                users=len(graph.users),
                products=len(graph.products),
                edges=graph.edge_count,
                sampled=graph.sampled,
            )
        return graph

    def _sample(self, graph: CandidateGraph, max_nodes: int) -> CandidateGraph:
        keys = [f"u:{uid}" for uid in graph.users] + [f"p:{pid}" for pid in graph.products]
        kept = set(self.rng.sample(keys, max_nodes))
        users = {uid: u for uid, u in graph.users.items() if f"u:{uid}" in kept}
        products = {pid: p for pid, p in graph.products.items() if f"p:{pid}" in kept}

        user_edges = {}
        for uid, pids in graph.user_edges.items():
            if uid not in users:
                continue
            linked = {pid for pid in pids if pid in products}
            if linked:
                user_edges[uid] = linked

        product_edges = {}
        for pid, others in graph.product_edges.items():
            if pid not in products:
                continue
            linked = {o for o in others if o in products}
            if linked:
                product_edges[pid] = linked

        logger.info(
            "Sampled candidate graph",
            before=graph.node_count,
            after=len(users) + len(products),
        )
        return CandidateGraph(
            users=users,
            products=products,
            user_edges=user_edges,
            product_edges=product_edges,
            sampled=True,
        )

    # =========================================================================
    # Utility matrix
    # =========================================================================

    async def build_matrix(
        self,
        users: Optional[Dict[str, User]] = None,
        products: Optional[Dict[str, Product]] = None,
    ) -> UtilityMatrix:
        """
        Build the users x products utility matrix.

        Args:
            users: Pre-fetched users (default: read up to ``max_users``)
            products: Pre-fetched products (default: read up to ``max_products``)
        """
        with log_duration(logger, "Built utility matrix") as extra:
            if users is None:
                users = await self.fetch_users(self.settings.max_users)
            if products is None:
                products = await self.fetch_products(self.settings.max_products)

            user_ids = list(users)
            product_ids = list(products)
            item_index = {pid: j for j, pid in enumerate(product_ids)}
            matrix = np.zeros((len(user_ids), len(product_ids)), dtype=np.float32)

            batch = self.settings.batch_size
            for start in range(0, len(user_ids), batch):
                for i in range(start, min(start + batch, len(user_ids))):
                    matrix[i] = utility_row(users[user_ids[i]], item_index)
                await self._after_batch()

            extra.update(users=len(user_ids), products=len(product_ids), nonzero=int(np.count_nonzero(matrix)))

        return UtilityMatrix(
            matrix=matrix,
            user_ids=user_ids,
            product_ids=product_ids,
            users=users,
            products=products,
        )
