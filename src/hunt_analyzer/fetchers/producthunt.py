from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx
from dateutil import parser as date_parser

from hunt_analyzer.config import Settings
from hunt_analyzer.dedupe import dedupe_products
from hunt_analyzer.errors import FetchFailed
from hunt_analyzer.fetchers.mock import mock_products
from hunt_analyzer.models import Maker, Product, Topic

logger = logging.getLogger(__name__)

TRENDING_POSTS_QUERY = """
query getTrendingPosts($first: Int!, $after: String) {
  posts(first: $first, after: $after, order: VOTES) {
    edges {
      node {
        id
        name
        tagline
        description
        url
        votesCount
        commentsCount
        createdAt
        featuredAt
        website
        makers { id name username }
        topics { edges { node { id name slug } } }
        thumbnail { url }
        user { id name username }
      }
    }
  }
}
"""

REST_PAGE_CAP = 50


class RetryableStatus(Exception):
    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


def _should_retry(exc: Exception) -> bool:
    if isinstance(exc, RetryableStatus):
        return True
    return isinstance(exc, (httpx.TimeoutException, httpx.NetworkError))


def _parse_time(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    try:
        parsed = date_parser.parse(str(raw))
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _maker(raw: Any) -> Optional[Maker]:
    if not isinstance(raw, dict):
        return None
    return Maker(
        id=str(raw.get("id") or ""),
        name=str(raw.get("name") or ""),
        username=str(raw.get("username") or ""),
    )


def product_from_graphql(node: dict[str, Any]) -> Product:
    topics: list[Topic] = []
    for edge in ((node.get("topics") or {}).get("edges") or []):
        topic = (edge or {}).get("node") or {}
        name = str(topic.get("name") or "")
        if name:
            topics.append(Topic(name=name, slug=str(topic.get("slug") or ""), id=str(topic.get("id") or "")))
    makers = [m for m in (_maker(raw) for raw in node.get("makers") or []) if m]
    return Product(
        id=str(node.get("id") or ""),
        name=str(node.get("name") or ""),
        tagline=str(node.get("tagline") or ""),
        description=str(node.get("description") or ""),
        url=str(node.get("url") or ""),
        website=str(node.get("website") or ""),
        votes_count=node.get("votesCount") or 0,
        comments_count=node.get("commentsCount") or 0,
        created_at=node.get("createdAt"),
        featured_at=node.get("featuredAt"),
        thumbnail=(node.get("thumbnail") or {}).get("url"),
        makers=makers,
        topics=topics,
        user=_maker(node.get("user")),
    )


def product_from_rest(post: dict[str, Any]) -> Product:
    screenshots = post.get("screenshot_url") or {}
    day = post.get("day") or datetime.now(timezone.utc).isoformat()
    return Product(
        id=str(post.get("id") or ""),
        name=str(post.get("name") or ""),
        tagline=str(post.get("tagline") or ""),
        description=str(post.get("discussion_url") or post.get("redirect_url") or ""),
        url=str(post.get("discussion_url") or ""),
        website=str(post.get("redirect_url") or ""),
        votes_count=post.get("votes_count") or 0,
        comments_count=post.get("comments_count") or 0,
        created_at=day,
        featured_at=day,
        thumbnail=screenshots.get("300px") or screenshots.get("850px"),
        user=_maker(post.get("user")),
    )


def _normalized(convert: Callable[[dict[str, Any]], Product], rows: list[dict[str, Any]], label: str) -> list[Product]:
    try:
        return [convert(row) for row in rows]
    except (AttributeError, TypeError, ValueError) as exc:
        raise FetchFailed(f"Malformed post in {label} response: {exc}") from exc


def _launched_within(product: Product, start: datetime, end: datetime) -> bool:
    for raw in (product.created_at, product.featured_at):
        ts = _parse_time(raw)
        if ts is not None and start <= ts < end:
            return True
    return False


def select_trending(products: list[Product], limit: int, now: Optional[datetime] = None) -> list[Product]:
    now = now or datetime.now(timezone.utc)
    day_start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = day_start + timedelta(days=1)

    todays = [p for p in products if _launched_within(p, day_start, day_end)]
    # sorted() is stable, so equal vote counts keep API order.
    todays = sorted(todays, key=lambda p: p.votes_count, reverse=True)[:limit]
    if todays:
        return todays
    logger.info("No products launched today, using recent trending products")
    return products[:limit]


class ProductHuntSource:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.graphql_url = settings.ph_graphql_url
        self.rest_url = settings.ph_rest_url
        self.timeout = settings.request_timeout_sec
        self.max_retries = max(0, settings.fetch_max_retries)
        self.retry_delay = settings.fetch_retry_delay_sec
        self.overscan_cap = settings.fetch_overscan_cap
        self.mock_fallback = settings.mock_fallback_enabled
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport, follow_redirects=True)

    @staticmethod
    def _headers(credential: Optional[str]) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "hunt-analyzer/1.0",
        }
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        return headers

    async def _with_retries(self, label: str, call: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        attempt = 0
        while True:
            try:
                response = await call()
                if response.status_code == 429 or response.status_code >= 500:
                    raise RetryableStatus(response.status_code)
                response.raise_for_status()
                return response
            except (RetryableStatus, httpx.HTTPError) as exc:
                logger.warning("%s request failed (attempt %d): %s", label, attempt + 1, exc)
                if attempt >= self.max_retries or not _should_retry(exc):
                    raise FetchFailed(f"{label} request failed: {exc}") from exc
                attempt += 1
                await self._sleep(self.retry_delay)

    async def fetch_graphql(self, credential: Optional[str], count: int) -> list[Product]:
        variables = {"first": min(count * 2, self.overscan_cap), "after": None}
        async with self._client() as client:
            response = await self._with_retries(
                "GraphQL",
                lambda: client.post(
                    self.graphql_url,
                    json={"query": TRENDING_POSTS_QUERY, "variables": variables},
                    headers=self._headers(credential),
                ),
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchFailed("Invalid JSON from Product Hunt API") from exc
        if not isinstance(payload, dict):
            raise FetchFailed("Invalid response structure from Product Hunt API")
        if payload.get("errors"):
            raise FetchFailed(f"GraphQL errors: {payload['errors']}")
        data = payload.get("data")
        posts = data.get("posts") if isinstance(data, dict) else None
        edges = posts.get("edges") if isinstance(posts, dict) else None
        if not isinstance(edges, list):
            raise FetchFailed("Invalid response structure from Product Hunt API")
        nodes = [edge["node"] for edge in edges if isinstance(edge, dict) and isinstance(edge.get("node"), dict)]
        if edges and not nodes:
            raise FetchFailed("No usable posts in Product Hunt API response")
        return _normalized(product_from_graphql, nodes, "GraphQL")

    async def fetch_rest(self, credential: Optional[str], count: int) -> list[Product]:
        params = {"sort_by": "votes_count", "order": "desc", "per_page": min(count, REST_PAGE_CAP)}
        async with self._client() as client:
            response = await self._with_retries(
                "REST",
                lambda: client.get(self.rest_url, params=params, headers=self._headers(credential)),
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchFailed("Invalid JSON from REST API") from exc
        posts = payload.get("posts") if isinstance(payload, dict) else None
        if not isinstance(posts, list):
            raise FetchFailed("Invalid response from REST API")
        usable = [post for post in posts if isinstance(post, dict)]
        if posts and not usable:
            raise FetchFailed("No usable posts in REST API response")
        return _normalized(product_from_rest, usable, "REST")[:count]

    async def fetch(self, credential: Optional[str], count: int) -> list[Product]:
        if count <= 0:
            return []
        try:
            posts = await self.fetch_graphql(credential, count)
            products = select_trending(self._unique(posts), count)
            logger.info("Fetched %d products via GraphQL", len(products))
        except FetchFailed as exc:
            logger.error("Error fetching trending products via GraphQL: %s", exc)
            try:
                products = self._unique(await self.fetch_rest(credential, count))
                logger.info("Fetched %d products via REST fallback", len(products))
            except FetchFailed as rest_exc:
                logger.error("REST API fallback also failed: %s", rest_exc)
                if not self.mock_fallback:
                    raise
                logger.warning("Using mock data as final fallback")
                products = mock_products(count)
        return products

    @staticmethod
    def _unique(products: list[Product]) -> list[Product]:
        unique, stats = dedupe_products(products)
        if stats["duplicates_removed"]:
            logger.info("Removed %d duplicate products", stats["duplicates_removed"])
        return unique
