"""
Outfit Synthesizer
==================

Assembles category-diverse bundles from a ranked candidate pool.

Role buckets (category or outfit tag):
  top        Tops        / "top", "shirt"
  bottom     Bottoms     / "bottom", "pants"
  shoes      Shoes       / "shoes"
  dress      Dresses     / "dress"
  accessory  Accessories / "accessory"

Templates:
  male / other   seed + top + bottom + shoes
  female         seed + dress + accessory + shoes, plus top + bottom + shoes
                 when the seed is a top or a bottom

The seed fills its own role when it has one. A template that yields fewer
than two distinct products falls back to a "Basic Outfit" (seed plus any
other product). Bundles with identical member sets are emitted once.
"""

import random
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from config.constants import DEFAULT_OUTFIT_CONFIG, OutfitConfig
from core.logging import get_logger
from recs.models import Gender, Outfit, Product


logger = get_logger(__name__)

# (product_a_id, product_b_id) -> similarity, or None when either side is unknown
SimilarityFn = Callable[[str, str], Optional[float]]

DESCRIPTION_SEPARATES = "Top + Bottom + Shoes"
DESCRIPTION_DRESS = "Dress + Accessories + Shoes"
DESCRIPTION_BASIC = "Basic Outfit"

OUTFIT_NAME_PREFIX: Dict[Gender, str] = {
    Gender.MALE: "Men's Outfit",
    Gender.FEMALE: "Women's Outfit",
    Gender.OTHER: "Unisex Outfit",
}


# =============================================================================
# Role predicates
# =============================================================================

def _has_role(product: Product, category: str, tags: Tuple[str, ...]) -> bool:
    if product.category == category:
        return True
    return bool(product.tag_set.intersection(tags))


def is_top(product: Product) -> bool:
    return _has_role(product, "Tops", ("top", "shirt"))


def is_bottom(product: Product) -> bool:
    return _has_role(product, "Bottoms", ("bottom", "pants"))


def is_shoe(product: Product) -> bool:
    return _has_role(product, "Shoes", ("shoes",))


def is_dress(product: Product) -> bool:
    return _has_role(product, "Dresses", ("dress",))


def is_accessory(product: Product) -> bool:
    return _has_role(product, "Accessories", ("accessory",))


def _unique(products: Sequence[Optional[Product]]) -> List[Product]:
    seen: Set[str] = set()
    result = []
    for product in products:
        if product is None or product.id in seen:
            continue
        seen.add(product.id)
        result.append(product)
    return result


# =============================================================================
# Synthesizer
# =============================================================================

class OutfitSynthesizer:
    """
    Builds outfits from a candidate pool.

    Args:
        config: Outfit tunables
        rng: Random source for role picks (inject a seeded one for tests)
        similarity: Optional pairwise document similarity used in the
            compatibility score
    """

    def __init__(
        self,
        config: OutfitConfig = DEFAULT_OUTFIT_CONFIG,
        rng: Optional[random.Random] = None,
        similarity: Optional[SimilarityFn] = None,
    ):
        self.config = config
        self.rng = rng or random.Random()
        self.similarity = similarity

    # -------------------------------------------------------------------------
    # Compatibility
    # -------------------------------------------------------------------------

    def compatibility(self, products: Sequence[Product]) -> float:
        """
        Compatibility in [0, 1].

        Category diversity and price-band fit, plus average pairwise
        document similarity when at least one pair has documents.
        """
        c = self.config
        categories = {p.category for p in products if p.category}
        diversity = min(1.0, len(categories) / c.DIVERSITY_CATEGORIES)

        total = sum(p.price for p in products)
        if total > 0:
            price_fit = max(0.0, 1 - abs(total - c.REFERENCE_PRICE) / c.PRICE_BAND)
        else:
            price_fit = 0.5

        pair_scores: List[float] = []
        if self.similarity is not None:
            for i in range(len(products)):
                for j in range(i + 1, len(products)):
                    value = self.similarity(products[i].id, products[j].id)
                    if value is not None:
                        pair_scores.append(value)

        if pair_scores:
            w = c.WEIGHTS_WITH_SIMILARITY
            avg_similarity = sum(pair_scores) / len(pair_scores)
            score = w["diversity"] * diversity + w["price"] * price_fit + w["similarity"] * avg_similarity
        else:
            w = c.WEIGHTS_WITHOUT_SIMILARITY
            score = w["diversity"] * diversity + w["price"] * price_fit
        return max(0.0, min(1.0, score))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _pick(
        self,
        pool: Sequence[Product],
        predicate: Callable[[Product], bool],
        exclude: Set[str],
    ) -> Optional[Product]:
        options = [p for p in pool if predicate(p) and p.id not in exclude]
        if not options:
            return None
        return self.rng.choice(options)

    def _fill_role(
        self,
        seed: Product,
        pool: Sequence[Product],
        predicate: Callable[[Product], bool],
        chosen: Set[str],
    ) -> Optional[Product]:
        if predicate(seed):
            return seed
        product = self._pick(pool, predicate, chosen)
        if product is not None:
            chosen.add(product.id)
        return product

    def _basic(self, seed: Product, pool: Sequence[Product]) -> Optional[List[Product]]:
        for product in pool:
            if product.id != seed.id:
                return [seed, product]
        return None

    def _seeded_template(
        self,
        seed: Product,
        pool: Sequence[Product],
        roles: Sequence[Callable[[Product], bool]],
        description: str,
        attempts: int,
        stop_on_basic: bool,
    ) -> List[Tuple[List[Product], str]]:
        drafts: List[Tuple[List[Product], str]] = []
        for _ in range(attempts):
            chosen = {seed.id}
            parts = [seed] + [self._fill_role(seed, pool, role, chosen) for role in roles]
            products = _unique(parts)
            if len(products) >= self.config.MIN_PRODUCTS:
                drafts.append((products, description))
                continue
            basic = self._basic(seed, pool)
            if basic is not None:
                drafts.append((basic, DESCRIPTION_BASIC))
            if stop_on_basic or basic is None:
                break
        return drafts

    def _finalize(
        self,
        drafts: Sequence[Tuple[List[Product], str]],
        gender: Gender,
        style: Optional[str],
        k: int,
    ) -> List[Outfit]:
        prefix = OUTFIT_NAME_PREFIX.get(gender, OUTFIT_NAME_PREFIX[Gender.OTHER])
        gender_label = "unisex" if gender == Gender.OTHER else gender.value
        outfits: List[Outfit] = []
        seen_keys: Set[str] = set()
        for products, description in drafts:
            if len(products) < self.config.MIN_PRODUCTS:
                continue
            key = "|".join(sorted(p.id for p in products))
            if key in seen_keys:
                continue
            seen_keys.add(key)
            outfits.append(Outfit(
                name=f"{prefix} {len(outfits) + 1}",
                products=list(products),
                style=style or self.config.DEFAULT_STYLE,
                total_price=round(sum(p.price for p in products), 2),
                compatibility_score=self.compatibility(products),
                gender=gender_label,
                description=description,
            ))
            if len(outfits) >= k:
                break
        return outfits

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def synthesize(
        self,
        pool: Sequence[Product],
        seed: Optional[Product],
        gender: Optional[Gender],
        style: Optional[str],
        k: int,
    ) -> List[Outfit]:
        """
        Up to ``k`` distinct outfits anchored on ``seed``.

        Without a seed this delegates to :meth:`unanchored`.
        """
        gender = gender or Gender.OTHER
        if k <= 0:
            return []
        if seed is None:
            return self.unanchored(pool, gender, style, k)

        pool = [p for p in pool if p.id != seed.id]
        attempts = min(self.config.MAX_ATTEMPTS_PER_TEMPLATE, k)
        drafts: List[Tuple[List[Product], str]] = []

        if gender == Gender.FEMALE:
            if is_top(seed) or is_bottom(seed):
                drafts += self._seeded_template(
                    seed, pool, (is_top, is_bottom, is_shoe), DESCRIPTION_SEPARATES,
                    attempts, stop_on_basic=True,
                )
            if is_dress(seed) or any(is_dress(p) for p in pool):
                drafts += self._seeded_template(
                    seed, pool, (is_dress, is_accessory, is_shoe), DESCRIPTION_DRESS,
                    attempts, stop_on_basic=True,
                )
            if not drafts:
                basic = self._basic(seed, pool)
                if basic is not None:
                    drafts.append((basic, DESCRIPTION_BASIC))
        else:
            drafts += self._seeded_template(
                seed, pool, (is_top, is_bottom, is_shoe), DESCRIPTION_SEPARATES,
                attempts, stop_on_basic=False,
            )

        outfits = self._finalize(drafts, gender, style, k)
        logger.debug(
            "Synthesized outfits",
            seed_id=seed.id,
            gender=gender.value,
            pool_size=len(pool),
            drafts=len(drafts),
            outfits=len(outfits),
        )
        return outfits

    def unanchored(
        self,
        pool: Sequence[Product],
        gender: Optional[Gender],
        style: Optional[str],
        k: int,
    ) -> List[Outfit]:
        """
        Outfits without an anchor product, one per leading item.

        male: top + bottom + shoes, other: top + bottom + accessory,
        female: dress + accessory + shoes.
        """
        gender = gender or Gender.OTHER
        if gender == Gender.FEMALE:
            lead, roles, description = is_dress, (is_accessory, is_shoe), DESCRIPTION_DRESS
        elif gender == Gender.MALE:
            lead, roles, description = is_top, (is_bottom, is_shoe), DESCRIPTION_SEPARATES
        else:
            lead, roles, description = is_top, (is_bottom, is_accessory), "Top + Bottom + Accessory"

        leaders = [p for p in pool if lead(p)][:min(self.config.MAX_UNANCHORED_OUTFITS, k)]
        drafts: List[Tuple[List[Product], str]] = []
        for leader in leaders:
            chosen = {leader.id}
            parts = [leader]
            for role in roles:
                product = self._pick(pool, role, chosen)
                if product is not None:
                    chosen.add(product.id)
                    parts.append(product)
            drafts.append((parts, description))
        return self._finalize(drafts, gender, style, k)
