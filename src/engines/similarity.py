"""
User-user and item-item similarity for the hybrid strategy.

Below ``dense_similarity_limit`` entities a full symmetric matrix is kept.
Above it only the top-K neighbours per entity (with similarity above the
threshold) are stored in a sparse map, so memory grows as O(n * K).
Either way the diagonal is 1.0 and stored values are symmetric.

Rows are computed in batches of ``batch_size`` with a memory reclamation
call and a cooperative checkpoint after each batch.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.preprocessing import MultiLabelBinarizer, normalize

from config.constants import DEFAULT_HYBRID_CONFIG, HybridConfig
from core.logging import get_logger, log_duration
from core.memory import MemoryMonitor
from core.utils import checkpoint


logger = get_logger(__name__)


@dataclass
class SimilarityIndex:
    """Dense matrix or sparse ``{i: {j: sim}}`` map over ``size`` entities."""
    size: int
    dense: Optional[np.ndarray] = None
    sparse: Dict[int, Dict[int, float]] = field(default_factory=dict)

    @property
    def is_sparse(self) -> bool:
        return self.dense is None

    def get(self, i: int, j: int) -> float:
        if i == j:
            return 1.0
        if self.dense is not None:
            return float(self.dense[i, j])
        return self.sparse.get(i, {}).get(j, 0.0)

    def row(self, i: int) -> np.ndarray:
        """Similarities of entity ``i`` to every entity, as a dense vector."""
        if self.dense is not None:
            return self.dense[i]
        vector = np.zeros(self.size, dtype=np.float32)
        for j, value in self.sparse.get(i, {}).items():
            vector[j] = value
        vector[i] = 1.0
        return vector

    @property
    def entries(self) -> int:
        if self.dense is not None:
            return int(self.dense.size)
        return sum(len(row) for row in self.sparse.values())

    @property
    def nbytes(self) -> int:
        if self.dense is not None:
            return int(self.dense.nbytes)
        # key + value per stored pair, roughly
        return self.entries * 16


def _to_dense(block) -> np.ndarray:
    return block.toarray() if hasattr(block, "toarray") else np.asarray(block)


async def _build_index(
    size: int,
    row_block,
    dense_limit: int,
    neighbors_k: int,
    threshold: float,
    batch_size: int,
    monitor: MemoryMonitor,
) -> SimilarityIndex:
    """
    Assemble a SimilarityIndex from ``row_block(start, end)``, which returns
    the ``(end - start, size)`` similarity rows for that range.
    """
    if size == 0:
        return SimilarityIndex(size=0, dense=np.zeros((0, 0), dtype=np.float32))

    if size <= dense_limit:
        dense = np.zeros((size, size), dtype=np.float32)
        for start in range(0, size, batch_size):
            end = min(start + batch_size, size)
            dense[start:end] = row_block(start, end)
            monitor.reclaim()
            await checkpoint()
        dense = (dense + dense.T) / 2.0
        np.fill_diagonal(dense, 1.0)
        return SimilarityIndex(size=size, dense=dense)

    sparse: Dict[int, Dict[int, float]] = {i: {i: 1.0} for i in range(size)}
    for start in range(0, size, batch_size):
        end = min(start + batch_size, size)
        block = row_block(start, end)
        for offset, i in enumerate(range(start, end)):
            row = block[offset].copy()
            row[i] = -np.inf
            candidates = np.flatnonzero(row > threshold)
            if candidates.size > neighbors_k:
                top = np.argpartition(-row[candidates], neighbors_k - 1)[:neighbors_k]
                candidates = candidates[top]
            for j in candidates:
                value = float(row[j])
                sparse[i][int(j)] = value
                sparse[int(j)][i] = value
        monitor.reclaim()
        await checkpoint()
    return SimilarityIndex(size=size, sparse=sparse)


async def user_similarity(
    matrix: np.ndarray,
    dense_limit: int,
    neighbors_k: int,
    threshold: float,
    batch_size: int,
    monitor: MemoryMonitor,
) -> SimilarityIndex:
    """Cosine similarity between utility-matrix rows."""
    with log_duration(logger, "Computed user similarity", users=matrix.shape[0]) as extra:
        rows = normalize(matrix) if matrix.size else matrix

        def row_block(start: int, end: int) -> np.ndarray:
            return rows[start:end] @ rows.T

        index = await _build_index(
            matrix.shape[0], row_block, dense_limit, neighbors_k, threshold, batch_size, monitor,
        )
        extra.update(sparse=index.is_sparse, entries=index.entries)
    return index


def description_features(descriptions: Sequence[str]):
    """
    L2-normalised TF-IDF rows over product descriptions.

    Empty descriptions give all-zero rows.
    """
    if not any(d.strip() for d in descriptions):
        return np.zeros((len(descriptions), 1), dtype=np.float32)
    vectorizer = TfidfVectorizer(stop_words="english")
    try:
        return vectorizer.fit_transform(descriptions)
    except ValueError:
        # Only stop words in the corpus
        return np.zeros((len(descriptions), 1), dtype=np.float32)


class TagOverlap:
    """
    Jaccard similarity of tag sets, computed a block of rows at a time.

    Only the sparse one-hot tag matrix and per-item tag counts are held,
    so memory stays linear in the number of items.
    """

    def __init__(self, tags: List[List[str]]):
        self.size = len(tags)
        binarizer = MultiLabelBinarizer(sparse_output=True)
        self.onehot = None
        self.sizes = np.zeros(0, dtype=np.float32)
        if self.size:
            self.onehot = binarizer.fit_transform([sorted(set(t)) for t in tags]).astype(np.float32).tocsr()
            self.sizes = np.asarray(self.onehot.sum(axis=1), dtype=np.float32).ravel()

    def block(self, start: int, end: int) -> np.ndarray:
        """Jaccard rows ``start:end`` against every item (0 when either set is empty)."""
        if self.onehot is None or self.onehot.shape[1] == 0:
            return np.zeros((end - start, self.size), dtype=np.float32)
        intersection = _to_dense(self.onehot[start:end] @ self.onehot.T).astype(np.float32)
        union = self.sizes[start:end, None] + self.sizes[None, :] - intersection
        with np.errstate(divide="ignore", invalid="ignore"):
            jaccard = np.where(union > 0, intersection / union, 0.0)
        return jaccard.astype(np.float32)


async def item_similarity(
    descriptions: Sequence[str],
    categories: Sequence[str],
    brands: Sequence[str],
    tags: List[List[str]],
    dense_limit: int,
    neighbors_k: int,
    threshold: float,
    batch_size: int,
    monitor: MemoryMonitor,
    config: HybridConfig = DEFAULT_HYBRID_CONFIG,
) -> SimilarityIndex:
    """
    Blended item similarity, clamped to [0, 1]:

        content cosine (floor when either description is empty)
        + SAME_CATEGORY if same category
        + SAME_BRAND if same brand
        + TAG_OVERLAP * jaccard(tags)
    """
    size = len(descriptions)
    with log_duration(logger, "Computed item similarity", items=size) as extra:
        features = description_features(descriptions)
        has_content = np.asarray(_to_dense(abs(features).sum(axis=1))).ravel() > 0

        category_codes = np.array([c or "" for c in categories], dtype=object)
        brand_codes = np.array([b or "" for b in brands], dtype=object)
        tag_overlap = TagOverlap(tags)

        def row_block(start: int, end: int) -> np.ndarray:
            content = _to_dense(features[start:end] @ features.T).astype(np.float32)
            both = has_content[start:end, None] & has_content[None, :]
            content = np.where(both, content, config.CONTENT_FLOOR)

            same_category = (category_codes[start:end, None] == category_codes[None, :]) \
                & (category_codes[start:end, None] != "")
            same_brand = (brand_codes[start:end, None] == brand_codes[None, :]) \
                & (brand_codes[start:end, None] != "")

            total = (
                content
                + config.SAME_CATEGORY * same_category
                + config.SAME_BRAND * same_brand
                + config.TAG_OVERLAP * tag_overlap.block(start, end)
            )
            return np.clip(total, 0.0, 1.0).astype(np.float32)

        index = await _build_index(size, row_block, dense_limit, neighbors_k, threshold, batch_size, monitor)
        extra.update(sparse=index.is_sparse, entries=index.entries)
    return index


def cosine_to_rows(vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one vector against every matrix row."""
    if matrix.size == 0:
        return np.zeros(matrix.shape[0], dtype=np.float32)
    norm = np.linalg.norm(vector)
    if norm == 0:
        return np.zeros(matrix.shape[0], dtype=np.float32)
    row_norms = np.linalg.norm(matrix, axis=1)
    row_norms[row_norms == 0] = 1.0
    return ((matrix @ vector) / (row_norms * norm)).astype(np.float32)
