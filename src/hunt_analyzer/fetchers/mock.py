from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from hunt_analyzer.models import Maker, Product, Topic

_SEED_PRODUCTS = [
    (
        "AI Code Assistant Pro",
        "Your intelligent coding companion",
        "An advanced AI-powered code assistant that helps developers write better code faster "
        "with intelligent suggestions and automated refactoring.",
        1247,
        89,
        "Developer Tools",
        "Alex Developer",
        "alexdev",
    ),
    (
        "DataViz Studio",
        "Beautiful data visualizations made simple",
        "Create stunning interactive charts and dashboards from your data with an intuitive "
        "drag-and-drop interface.",
        892,
        67,
        "Analytics",
        "Sarah Analytics",
        "sarahdata",
    ),
    (
        "CloudSync Manager",
        "Seamless file synchronization across all devices",
        "Keep your files in sync across all your devices with secure, fast and reliable cloud sync.",
        634,
        45,
        "Productivity",
        "Mike Cloud",
        "mikecloud",
    ),
]

MAX_MOCK_PRODUCTS = 20


def mock_products(limit: int, now: Optional[datetime] = None) -> list[Product]:
    now = now or datetime.now(timezone.utc)
    products: list[Product] = []
    for idx in range(1, min(limit, MAX_MOCK_PRODUCTS) + 1):
        launched = (now - timedelta(days=idx - 1)).isoformat()
        if idx <= len(_SEED_PRODUCTS):
            name, tagline, description, votes, comments, topic, maker, username = _SEED_PRODUCTS[idx - 1]
        else:
            name = f"Product {idx}"
            tagline = "Innovative solution for modern challenges"
            description = "A cutting-edge product that solves real-world problems with elegant design."
            votes = 100 + (idx * 37) % 500
            comments = 10 + (idx * 7) % 50
            topic = "Technology"
            maker = f"Creator {idx}"
            username = f"creator{idx}"
        owner = Maker(id=str(idx), name=maker, username=username)
        products.append(
            Product(
                id=f"mock-{idx}",
                name=name,
                tagline=tagline,
                description=description,
                url=f"https://example.com/product-{idx}",
                website=f"https://example.com/product-{idx}",
                votes_count=votes,
                comments_count=comments,
                created_at=launched,
                featured_at=launched,
                makers=[owner],
                topics=[Topic(name=topic, id=str(idx))],
                user=owner,
            )
        )
    return products
