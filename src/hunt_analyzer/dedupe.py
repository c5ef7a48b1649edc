from __future__ import annotations

from typing import Dict, List, Tuple

from hunt_analyzer.models import Product


def dedupe_products(products: List[Product]) -> Tuple[List[Product], Dict[str, int]]:
    unique: List[Product] = []
    seen: Dict[str, Product] = {}
    duplicates_removed = 0

    for product in products:
        key = (product.id or "").strip()
        if not key:
            key = f"name:{product.name.strip().lower()}"
        existing = seen.get(key)
        if existing is None:
            seen[key] = product
            unique.append(product)
            continue

        duplicates_removed += 1
        # First occurrence keeps its position; fill gaps from the later copy.
        if not existing.tagline and product.tagline:
            existing.tagline = product.tagline
        if not existing.topics and product.topics:
            existing.topics = product.topics
        if product.votes_count > existing.votes_count:
            existing.votes_count = product.votes_count

    stats = {
        "raw_items": len(products),
        "unique_items": len(unique),
        "duplicates_removed": duplicates_removed,
    }
    return unique, stats
