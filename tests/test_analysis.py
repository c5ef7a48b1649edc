import asyncio
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from hunt_analyzer.analysis import (
    LLMAnalyzer,
    RuleBasedAnalyzer,
    build_analyzer,
    build_prompt,
    parse_llm_payload,
    rule_based_analysis,
)
from hunt_analyzer.errors import AnalysisFailed
from hunt_analyzer.models import Product, Topic


def _product(votes: int = 50, topics=("Developer Tools",)) -> Product:
    return Product(
        id="1",
        name="Codex Lens",
        tagline="See your code",
        votes_count=votes,
        comments_count=4,
        topics=[Topic(name=t) for t in topics],
    )


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=SimpleNamespace(total_tokens=42))


def _client(completions: FakeCompletions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_rule_based_probability_thresholds() -> None:
    assert rule_based_analysis(_product(votes=101)).success_probability == "高"
    assert rule_based_analysis(_product(votes=100)).success_probability == "中"
    assert rule_based_analysis(_product(votes=20)).success_probability == "中"
    assert rule_based_analysis(_product(votes=19)).success_probability == "低"


def test_rule_based_maps_topics_to_demographics() -> None:
    analysis = rule_based_analysis(_product(topics=("Developer Tools", "Artificial Intelligence", "Design Tools")))

    demographics = [u.demographic for u in analysis.target_users]
    assert "开发者和技术专业人士" in demographics
    assert "设计师和创意工作者" in demographics
    assert all(u.likelihood == "高" for u in analysis.target_users)
    assert analysis.is_rule_based
    assert analysis.to_dict()["fallback"] is True


def test_rule_based_defaults_to_general_audience() -> None:
    analysis = rule_based_analysis(_product(topics=("Gardening",)))

    assert [u.to_dict() for u in analysis.target_users] == [{"demographic": "一般科技用户", "likelihood": "中"}]


def test_prompt_includes_product_fields() -> None:
    prompt = build_prompt(_product(votes=77))

    assert "Product: Codex Lens" in prompt
    assert "Votes: 77 | Comments: 4" in prompt
    assert "Topics: Developer Tools" in prompt


def test_parse_llm_payload_normalizes_fields() -> None:
    raw = (
        '{"targetUsers": [{"demographic": "独立开发者", "likelihood": "高"}, "产品经理"],'
        ' "successProbability": "中", "summary": "不错", "userPersonas": ["A", ""]}'
    )

    analysis = parse_llm_payload(raw, _product(), model="gpt-4o-mini", tokens_used=12)

    assert analysis.product_name == "Codex Lens"
    assert [u.to_dict() for u in analysis.target_users] == [
        {"demographic": "独立开发者", "likelihood": "高"},
        {"demographic": "产品经理", "likelihood": "中"},
    ]
    assert analysis.user_personas == ["A"]
    assert analysis.to_dict()["metadata"] == {"model": "gpt-4o-mini", "tokensUsed": 12}


def test_parse_llm_payload_rejects_invalid_json() -> None:
    with pytest.raises(AnalysisFailed) as exc_info:
        parse_llm_payload("not json", _product(), model="m")

    assert exc_info.value.message == "Failed to parse structured response"


def test_llm_analyzer_returns_structured_analysis() -> None:
    completions = FakeCompletions(content='{"productName": "Codex Lens", "successProbability": "高", "summary": "强"}')
    analyzer = LLMAnalyzer(_client(completions), model="gpt-4o-mini")

    analysis = asyncio.run(analyzer.analyze(_product()))

    assert analysis.success_probability == "高"
    assert analysis.source == "llm"
    assert analysis.tokens_used == 42
    assert completions.calls[0]["response_format"] == {"type": "json_object"}


def test_llm_analyzer_wraps_client_errors() -> None:
    analyzer = LLMAnalyzer(_client(FakeCompletions(error=OpenAIError("quota exceeded"))), model="gpt-4o-mini")

    with pytest.raises(AnalysisFailed) as exc_info:
        asyncio.run(analyzer.analyze(_product()))

    assert "quota exceeded" in exc_info.value.message


def test_rule_based_analyzer_never_fails() -> None:
    analysis = asyncio.run(RuleBasedAnalyzer().analyze(_product(votes=0, topics=())))

    assert analysis.success_probability == "低"


def test_build_analyzer_without_key_uses_rules() -> None:
    settings = SimpleNamespace(
        analysis_provider="openai",
        openai_api_key="your_openai_api_key",
        deepseek_api_key=None,
        analysis_temperature=0.3,
        analysis_max_tokens=300,
    )

    assert isinstance(build_analyzer(settings), RuleBasedAnalyzer)


def test_build_analyzer_with_key_uses_llm() -> None:
    settings = SimpleNamespace(
        analysis_provider="openai",
        openai_api_key="sk-test",
        openai_model="gpt-4o-mini",
        deepseek_api_key=None,
        analysis_temperature=0.3,
        analysis_max_tokens=300,
        analysis_max_retries=1,
    )

    analyzer = build_analyzer(settings)

    assert isinstance(analyzer, LLMAnalyzer)
    assert analyzer.model == "gpt-4o-mini"
