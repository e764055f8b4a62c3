"""
Entity Store Access.

Read-only, paged access to users and products. The engine never writes
through the store; interaction history is appended by other services.

Two backends:
1. InMemoryEntityStore: tests, local development, JSON catalogs
2. SupabaseEntityStore: production (tables configured in Settings)

Usage:
    store = InMemoryEntityStore(users=[...], products=[...])
    user = await store.get_user("u1")
    async for batch in iter_pages(store.list_products, total=500, page_size=100):
        ...
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import (
    Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence,
)

from pydantic import ValidationError

from core.logging import get_logger
from recs.models import Product, User


logger = get_logger(__name__)


class EntityStore(ABC):
    """Narrow read-only selection queries over users and products."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        ...

    @abstractmethod
    async def get_products(self, product_ids: Sequence[str]) -> List[Product]:
        """Products for ``product_ids`` in the same order; unknown ids are skipped."""

    @abstractmethod
    async def count_users_with_history(self) -> int:
        ...

    @abstractmethod
    async def list_users_with_history(self, offset: int, limit: int) -> List[User]:
        ...

    @abstractmethod
    async def count_products(self) -> int:
        ...

    @abstractmethod
    async def list_products(self, offset: int, limit: int) -> List[Product]:
        ...

    @abstractmethod
    async def top_rated_products(
        self,
        offset: int,
        limit: int,
        categories: Optional[Iterable[str]] = None,
    ) -> List[Product]:
        """Products sorted by rating (desc), optionally restricted to categories."""


async def iter_pages(
    fetch: Callable[[int, int], Awaitable[List[Any]]],
    total: int,
    page_size: int,
) -> AsyncIterator[List[Any]]:
    """
    Page through ``fetch(offset, limit)`` until ``total`` rows were read
    or a short page comes back.
    """
    offset = 0
    while offset < total:
        limit = min(page_size, total - offset)
        rows = await fetch(offset, limit)
        if not rows:
            return
        yield rows
        offset += len(rows)
        if len(rows) < limit:
            return


# =============================================================================
# In-Memory Backend
# =============================================================================

class InMemoryEntityStore(EntityStore):
    """
    Dict-backed store.

    Insertion order is the listing order, which keeps paging and
    sampling deterministic.
    """

    def __init__(
        self,
        users: Optional[Iterable[User]] = None,
        products: Optional[Iterable[Product]] = None,
    ):
        self._users: Dict[str, User] = {u.id: u for u in users or []}
        self._products: Dict[str, Product] = {p.id: p for p in products or []}

    @classmethod
    def from_json(cls, path: Path) -> "InMemoryEntityStore":
        """Load ``{"users": [...], "products": [...]}`` from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        users = [User.model_validate(u) for u in data.get("users", [])]
        products = [Product.model_validate(p) for p in data.get("products", [])]
        logger.info("Loaded JSON catalog", path=str(path), users=len(users), products=len(products))
        return cls(users=users, products=products)

    # Mutation helpers for fixtures and local tooling
    def add_user(self, user: User) -> None:
        self._users[user.id] = user

    def add_product(self, product: Product) -> None:
        self._products[product.id] = product

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(str(user_id))

    async def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(str(product_id))

    async def get_products(self, product_ids: Sequence[str]) -> List[Product]:
        return [self._products[pid] for pid in product_ids if pid in self._products]

    def _users_with_history(self) -> List[User]:
        return [u for u in self._users.values() if u.has_history]

    async def count_users_with_history(self) -> int:
        return len(self._users_with_history())

    async def list_users_with_history(self, offset: int, limit: int) -> List[User]:
        return self._users_with_history()[offset:offset + limit]

    async def count_products(self) -> int:
        return len(self._products)

    async def list_products(self, offset: int, limit: int) -> List[Product]:
        return list(self._products.values())[offset:offset + limit]

    async def top_rated_products(
        self,
        offset: int,
        limit: int,
        categories: Optional[Iterable[str]] = None,
    ) -> List[Product]:
        allowed = set(categories) if categories is not None else None
        products = [
            p for p in self._products.values()
            if allowed is None or p.category in allowed
        ]
        # sorted() is stable: equal ratings keep catalog order
        products = sorted(products, key=lambda p: p.rating, reverse=True)
        return products[offset:offset + limit]


# =============================================================================
# Supabase Backend
# =============================================================================

class SupabaseEntityStore(EntityStore):
    """
    Supabase-backed store.

    Expects a users table with an ``interaction_history`` JSON column and a
    products table whose columns match :class:`Product`. The supabase client
    is synchronous, so queries run in the default executor.
    """

    def __init__(self, client, users_table: str = "users", products_table: str = "products"):
        self.client = client
        self.users_table = users_table
        self.products_table = products_table

    async def _run(self, query) -> List[Dict[str, Any]]:
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, query.execute)
        return result.data or []

    async def _count(self, query) -> int:
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, query.execute)
        return result.count or 0

    def _parse_users(self, rows: List[Dict[str, Any]]) -> List[User]:
        users = []
        for row in rows:
            try:
                users.append(User.model_validate(row))
            except ValidationError as e:
                logger.warning("Skipping malformed user row", user_id=row.get("id"), error=str(e))
        return users

    def _parse_products(self, rows: List[Dict[str, Any]]) -> List[Product]:
        products = []
        for row in rows:
            try:
                products.append(Product.model_validate(row))
            except ValidationError as e:
                logger.warning("Skipping malformed product row", product_id=row.get("id"), error=str(e))
        return products

    def _users_with_history_query(self, select: str = "*", **kwargs):
        # interaction_history is a JSON array; "not empty" means != []
        return (
            self.client.table(self.users_table)
            .select(select, **kwargs)
            .neq("interaction_history", "[]")
            .not_.is_("interaction_history", "null")
        )

    async def get_user(self, user_id: str) -> Optional[User]:
        rows = await self._run(
            self.client.table(self.users_table).select("*").eq("id", str(user_id)).limit(1)
        )
        users = self._parse_users(rows)
        return users[0] if users else None

    async def get_product(self, product_id: str) -> Optional[Product]:
        rows = await self._run(
            self.client.table(self.products_table).select("*").eq("id", str(product_id)).limit(1)
        )
        products = self._parse_products(rows)
        return products[0] if products else None

    async def get_products(self, product_ids: Sequence[str]) -> List[Product]:
        ids = [str(pid) for pid in product_ids]
        if not ids:
            return []
        by_id: Dict[str, Product] = {}
        # Keep IN-lists short enough for the REST query string
        for start in range(0, len(ids), 100):
            chunk = ids[start:start + 100]
            rows = await self._run(
                self.client.table(self.products_table).select("*").in_("id", chunk)
            )
            for product in self._parse_products(rows):
                by_id[product.id] = product
        return [by_id[pid] for pid in ids if pid in by_id]

    async def count_users_with_history(self) -> int:
        return await self._count(self._users_with_history_query("id", count="exact").limit(1))

    async def list_users_with_history(self, offset: int, limit: int) -> List[User]:
        rows = await self._run(
            self._users_with_history_query().order("id").range(offset, offset + limit - 1)
        )
        return self._parse_users(rows)

    async def count_products(self) -> int:
        return await self._count(
            self.client.table(self.products_table).select("id", count="exact").limit(1)
        )

    async def list_products(self, offset: int, limit: int) -> List[Product]:
        rows = await self._run(
            self.client.table(self.products_table).select("*").order("id").range(offset, offset + limit - 1)
        )
        return self._parse_products(rows)

    async def top_rated_products(
        self,
        offset: int,
        limit: int,
        categories: Optional[Iterable[str]] = None,
    ) -> List[Product]:
        query = self.client.table(self.products_table).select("*")
        if categories is not None:
            query = query.in_("category", sorted(categories))
        query = query.order("rating", desc=True).order("id").range(offset, offset + limit - 1)
        rows = await self._run(query)
        return self._parse_products(rows)


def create_entity_store(settings) -> EntityStore:
    """
    Pick a backend from settings.

    Supabase when configured, else a JSON catalog when ``catalog_path`` is
    set, else an empty in-memory store.
    """
    if settings.supabase_configured:
        from config.database import get_supabase_client
        logger.info("Using Supabase entity store", users_table=settings.users_table)
        return SupabaseEntityStore(
            get_supabase_client(),
            users_table=settings.users_table,
            products_table=settings.products_table,
        )
    if settings.catalog_path and Path(settings.catalog_path).exists():
        return InMemoryEntityStore.from_json(Path(settings.catalog_path))
    logger.warning("No entity store configured, using an empty in-memory store")
    return InMemoryEntityStore()
