from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def slugify(name: str) -> str:
    return "-".join((name or "").lower().split())


@dataclass
class Topic:
    name: str
    slug: str = ""
    id: str = ""

    def __post_init__(self) -> None:
        if not self.slug:
            self.slug = slugify(self.name)

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "slug": self.slug}


@dataclass
class Maker:
    id: str
    name: str
    username: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "username": self.username}


@dataclass
class Product:
    id: str
    name: str
    tagline: str = ""
    description: str = ""
    url: str = ""
    website: str = ""
    votes_count: int = 0
    comments_count: int = 0
    created_at: Optional[str] = None
    featured_at: Optional[str] = None
    thumbnail: Optional[str] = None
    makers: list[Maker] = field(default_factory=list)
    topics: list[Topic] = field(default_factory=list)
    user: Optional[Maker] = None
    fetched_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        self.votes_count = max(0, int(self.votes_count or 0))
        self.comments_count = max(0, int(self.comments_count or 0))

    @property
    def topic_names(self) -> list[str]:
        return [t.name for t in self.topics if t.name]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tagline": self.tagline,
            "description": self.description,
            "url": self.url,
            "website": self.website,
            "votesCount": self.votes_count,
            "commentsCount": self.comments_count,
            "createdAt": self.created_at,
            "featuredAt": self.featured_at,
            "thumbnail": self.thumbnail,
            "makers": [m.to_dict() for m in self.makers],
            "topics": [t.to_dict() for t in self.topics],
            "user": self.user.to_dict() if self.user else None,
            "fetchedAt": self.fetched_at,
        }


@dataclass(frozen=True)
class TargetUser:
    demographic: str
    likelihood: str

    def to_dict(self) -> dict[str, str]:
        return {"demographic": self.demographic, "likelihood": self.likelihood}


@dataclass
class ProductAnalysis:
    product_name: str
    target_users: list[TargetUser]
    success_probability: str
    summary: str
    market_insights: str = ""
    user_personas: list[str] = field(default_factory=list)
    source: str = "llm"
    analyzed_at: str = field(default_factory=utc_now_iso)
    model: Optional[str] = None
    tokens_used: int = 0

    @property
    def is_rule_based(self) -> bool:
        return self.source == "rule_based"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "productName": self.product_name,
            "targetUsers": [u.to_dict() for u in self.target_users],
            "successProbability": self.success_probability,
            "summary": self.summary,
            "marketInsights": self.market_insights,
            "userPersonas": list(self.user_personas),
            "fallback": self.is_rule_based,
            "analyzedAt": self.analyzed_at,
        }
        if self.model:
            payload["metadata"] = {"model": self.model, "tokensUsed": self.tokens_used}
        return payload


@dataclass
class AnalysisFailure:
    error: str
    error_type: str = "analysis-failed"
    analyzed_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if not (self.error or "").strip():
            self.error = "Unknown analysis error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "errorType": self.error_type, "analyzedAt": self.analyzed_at}


Analysis = Union[ProductAnalysis, AnalysisFailure]


@dataclass(frozen=True)
class AnalyzedProduct:
    product: Product
    analysis: Analysis

    @property
    def succeeded(self) -> bool:
        return isinstance(self.analysis, ProductAnalysis)

    def to_dict(self) -> dict[str, Any]:
        payload = self.product.to_dict()
        payload["analysis"] = self.analysis.to_dict()
        return payload


@dataclass
class RunSummary:
    run_id: str
    total_products: int
    success_count: int
    error_count: int
    timestamp: str
    products: list[AnalyzedProduct] = field(default_factory=list)

    @classmethod
    def build(cls, run_id: str, products: list[AnalyzedProduct], timestamp: Optional[str] = None) -> "RunSummary":
        success = sum(1 for p in products if p.succeeded)
        return cls(
            run_id=run_id,
            total_products=len(products),
            success_count=success,
            error_count=len(products) - success,
            timestamp=timestamp or utc_now_iso(),
            products=list(products),
        )

    @classmethod
    def empty(cls, run_id: str) -> "RunSummary":
        return cls.build(run_id, [])

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "totalProducts": self.total_products,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "timestamp": self.timestamp,
            "products": [p.to_dict() for p in self.products],
        }

    def to_bounded_dict(self) -> dict[str, Any]:
        return {
            "totalProducts": self.total_products,
            "timestamp": self.timestamp,
            "products": [p.to_dict() for p in self.products],
        }
