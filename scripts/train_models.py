#!/usr/bin/env python3
"""
Offline model training.

Trains (or incrementally updates) the recommendation strategies and writes
their persisted state, so that a service running with
RECOMMEND_STRICT_LOAD_ONLY=true can serve from it.

Usage:
    python scripts/train_models.py                       # all strategies, skip fresh ones
    python scripts/train_models.py --strategy hybrid --force
    python scripts/train_models.py --incremental
"""

import argparse
import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "src"))

from config.settings import get_settings
from core.logging import configure_logging, get_logger
from engines.factory import normalize_strategy
from recs.entity_store import create_entity_store
from recs.models import Strategy
from services.recommendation_service import RecommendationService


logger = get_logger("train_models")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Train recommendation models")
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in Strategy] + ["gnn", "all"],
        default="all",
        help="Strategy to train (default: all)",
    )
    parser.add_argument(
        "--incremental",
        action="store_true",
        help="Merge with prior persisted state instead of a full run",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Retrain even when the persisted state is still fresh",
    )
    parser.add_argument(
        "--catalog",
        default=None,
        help="JSON catalog for the in-memory store (overrides CATALOG_PATH)",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.catalog:
        settings = settings.model_copy(update={"catalog_path": args.catalog})

    store = create_entity_store(settings)
    service = RecommendationService(store, settings)
    strategy = None if args.strategy == "all" else normalize_strategy(args.strategy)

    if args.incremental:
        reports = await service.train_incremental(strategy)
    else:
        reports = await service.train(strategy, force=args.force)

    print("=" * 60)
    print("Training summary")
    print("=" * 60)
    for name, report in reports.items():
        print(
            f"  {name:<8} {report.status:<12} {report.duration_ms / 1000:.2f}s  "
            f"users={report.user_count} products={report.product_count} nodes={report.node_count}"
        )
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(json_logs=settings.is_production, log_level="DEBUG" if settings.debug else "INFO")
    logger.info("Starting offline training", strategy=args.strategy, incremental=args.incremental, force=args.force)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
