"""
Cold-start fallback.

Serves the best rated products when there is no personalization signal:
restricted to the user's gender categories (when gender is known),
without opposite-gender keyword matches, and without children's products
for adults. It is a pure sorted query, so repeated calls with unchanged
data return the same products.
"""

from typing import Callable, Iterable, List, Optional

from core.logging import get_logger
from recs.entity_store import EntityStore
from recs.models import Product, User
from scoring.filters import allowed_categories, is_excluded


logger = get_logger(__name__)

MODEL_LABEL = "ColdStart (TopRated)"


class ColdStartRecommender:
    """
    Top-rated fallback over the entity store.

    Args:
        store: Entity store
        page_size: Rows read per query while filling ``k`` results
        max_scan: Upper bound on rows examined per call
    """

    def __init__(self, store: EntityStore, page_size: int = 100, max_scan: int = 5000):
        self.store = store
        self.page_size = page_size
        self.max_scan = max_scan

    async def recommend(
        self,
        user: Optional[User],
        k: int,
        predicate: Optional[Callable[[Product], bool]] = None,
        exclude_ids: Optional[set] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> List[Product]:
        """
        At most ``k`` top-rated products suitable for ``user``.

        Args:
            user: Requesting user (None for anonymous)
            k: Maximum number of products
            predicate: Extra filter (e.g. same category as a viewed product)
            exclude_ids: Product ids never returned
            categories: Category allow-list (default: the user's gender categories)
        """
        if k <= 0:
            return []
        gender = user.gender if user else None
        age = user.age if user else None
        if categories is None:
            categories = allowed_categories(gender)
        excluded = exclude_ids or set()

        results: List[Product] = []
        offset = 0
        while len(results) < k and offset < self.max_scan:
            page = await self.store.top_rated_products(offset, self.page_size, categories=categories)
            if not page:
                break
            for product in page:
                if product.id in excluded or is_excluded(gender, age, product):
                    continue
                if predicate is not None and not predicate(product):
                    continue
                results.append(product)
                if len(results) >= k:
                    break
            offset += len(page)
            if len(page) < self.page_size:
                break

        logger.debug(
            "Cold start recommendations",
            user_id=user.id if user else None,
            returned=len(results),
            scanned=offset,
        )
        return results
