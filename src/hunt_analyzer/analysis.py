from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol, Union

from openai import AsyncOpenAI, OpenAIError

from hunt_analyzer.config import Settings, configured_value
from hunt_analyzer.errors import AnalysisFailed
from hunt_analyzer.models import Product, ProductAnalysis, TargetUser

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a market analyst. Provide concise JSON analysis of products and their target users."

# (topic keywords, demographic)
TOPIC_DEMOGRAPHICS = [
    (("developer", "tech"), "开发者和技术专业人士"),
    (("business", "productivity"), "商业专业人士"),
    (("design", "creative"), "设计师和创意工作者"),
    (("ai", "machine learning"), "AI和机器学习从业者"),
    (("marketing", "social"), "营销和社交媒体专家"),
]
DEFAULT_DEMOGRAPHIC = "一般科技用户"

HIGH_VOTES = 100
LOW_VOTES = 20


class ProductAnalyzer(Protocol):
    name: str

    async def analyze(self, product: Product) -> ProductAnalysis: ...


def build_prompt(product: Product) -> str:
    topics = ", ".join(product.topic_names) or "None"
    return (
        "Analyze this Product Hunt product for target users and market insights. "
        "Provide response in Chinese except for the product name:\n\n"
        f"Product: {product.name}\n"
        f"Tagline: {product.tagline}\n"
        f"Votes: {product.votes_count} | Comments: {product.comments_count}\n"
        f"Topics: {topics}\n\n"
        "Return JSON with Chinese content (except productName):\n"
        "{\n"
        f'  "productName": "{product.name}",\n'
        '  "targetUsers": [{"demographic": "目标用户群体描述", "likelihood": "高/中/低"}],\n'
        '  "successProbability": "高/中/低",\n'
        '  "summary": "简短的一句话分析",\n'
        '  "marketInsights": "市场洞察和建议",\n'
        '  "userPersonas": ["用户画像1", "用户画像2", "用户画像3"]\n'
        "}\n\n"
        "请用中文分析，但保持产品名称为英文。重点关注最可能的目标用户群体。"
    )


def rule_based_analysis(product: Product) -> ProductAnalysis:
    topics = [name.lower() for name in product.topic_names]
    target_users: list[TargetUser] = []
    for keywords, demographic in TOPIC_DEMOGRAPHICS:
        if any(k in topic for topic in topics for k in keywords):
            target_users.append(TargetUser(demographic=demographic, likelihood="高"))
    if not target_users:
        target_users.append(TargetUser(demographic=DEFAULT_DEMOGRAPHIC, likelihood="中"))

    votes = product.votes_count
    if votes > HIGH_VOTES:
        probability = "高"
    elif votes < LOW_VOTES:
        probability = "低"
    else:
        probability = "中"

    return ProductAnalysis(
        product_name=product.name,
        target_users=target_users,
        success_probability=probability,
        summary=f"获得{votes}票的产品，主要面向{target_users[0].demographic}",
        market_insights="基于产品类别和投票数的基础分析",
        user_personas=[u.demographic for u in target_users[:3]],
        source="rule_based",
    )


def _target_users(raw: Any) -> list[TargetUser]:
    if not isinstance(raw, list):
        return []
    users: list[TargetUser] = []
    for row in raw:
        if isinstance(row, dict):
            demographic = str(row.get("demographic") or "").strip()
            likelihood = str(row.get("likelihood") or "").strip() or "中"
        else:
            demographic, likelihood = str(row or "").strip(), "中"
        if demographic:
            users.append(TargetUser(demographic=demographic, likelihood=likelihood))
    return users


def parse_llm_payload(raw: str, product: Product, model: str, tokens_used: int = 0) -> ProductAnalysis:
    try:
        parsed = json.loads(raw or "{}")
    except ValueError as exc:
        raise AnalysisFailed("Failed to parse structured response") from exc
    if not isinstance(parsed, dict):
        raise AnalysisFailed("Failed to parse structured response")

    personas = parsed.get("userPersonas")
    return ProductAnalysis(
        product_name=str(parsed.get("productName") or product.name),
        target_users=_target_users(parsed.get("targetUsers")),
        success_probability=str(parsed.get("successProbability") or "未知"),
        summary=str(parsed.get("summary") or ""),
        market_insights=str(parsed.get("marketInsights") or ""),
        user_personas=[str(p) for p in personas if str(p).strip()] if isinstance(personas, list) else [],
        source="llm",
        model=model,
        tokens_used=tokens_used,
    )


class RuleBasedAnalyzer:
    name = "rule_based"

    async def analyze(self, product: Product) -> ProductAnalysis:
        return rule_based_analysis(product)


class LLMAnalyzer:
    name = "llm"

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        provider: str = "openai",
        temperature: float = 0.3,
        max_tokens: int = 300,
    ):
        self.client = client
        self.model = model
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _model_candidates(self) -> list[str]:
        if self.provider == "deepseek":
            unique: list[str] = []
            for model in [self.model, "deepseek-chat", "deepseek-reasoner"]:
                if model and model not in unique:
                    unique.append(model)
            return unique
        return [self.model]

    async def analyze(self, product: Product) -> ProductAnalysis:
        logger.info("Analyzing product: %s", product.name)
        completion = None
        used_model = self.model
        last_error: Optional[Exception] = None
        for model in self._model_candidates():
            try:
                completion = await self.client.chat.completions.create(
                    model=model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    response_format={"type": "json_object"},
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": build_prompt(product)},
                    ],
                )
                used_model = model
                break
            except OpenAIError as exc:
                last_error = exc
                if "Model Not Exist" in str(exc):
                    continue
                raise AnalysisFailed(str(exc)) from exc
        if completion is None:
            raise AnalysisFailed(f"LLM completion failed: {last_error}")

        raw = completion.choices[0].message.content or "{}"
        usage = getattr(completion, "usage", None)
        tokens = int(getattr(usage, "total_tokens", 0) or 0)
        analysis = parse_llm_payload(raw, product, used_model, tokens_used=tokens)
        logger.info("Analyzed product: %s", product.name)
        return analysis


def build_analyzer(settings: Settings) -> Union[LLMAnalyzer, RuleBasedAnalyzer]:
    provider = settings.analysis_provider.lower()
    openai_key = configured_value(settings.openai_api_key)
    deepseek_key = configured_value(settings.deepseek_api_key)
    common = {"temperature": settings.analysis_temperature, "max_tokens": settings.analysis_max_tokens}

    if provider == "openai" and openai_key:
        client = AsyncOpenAI(api_key=openai_key, max_retries=settings.analysis_max_retries)
        return LLMAnalyzer(client, settings.openai_model, provider="openai", **common)
    if provider == "deepseek" and deepseek_key:
        client = AsyncOpenAI(
            api_key=deepseek_key,
            base_url=settings.deepseek_base_url,
            max_retries=settings.analysis_max_retries,
        )
        return LLMAnalyzer(client, settings.deepseek_model, provider="deepseek", **common)

    if provider != "heuristic":
        logger.warning("No API key configured for provider '%s'; using rule-based analysis", provider)
    return RuleBasedAnalyzer()
