from __future__ import annotations

import csv
import io
import json
from collections import Counter
from typing import Any, Dict, List, Union

from dateutil import parser as date_parser

from hunt_analyzer.models import RunSummary

CSV_BOM = "\ufeff"
CSV_HEADERS = [
    "产品名称",
    "标语",
    "投票数",
    "评论数",
    "成功概率",
    "目标用户群体",
    "市场洞察",
    "用户画像",
    "分析摘要",
    "产品链接",
    "主题标签",
    "创建时间",
]

SummaryLike = Union[RunSummary, Dict[str, Any]]


def _payload(summary: SummaryLike) -> Dict[str, Any]:
    return summary.to_dict() if isinstance(summary, RunSummary) else summary


def _products(summary: SummaryLike) -> List[Dict[str, Any]]:
    rows = _payload(summary).get("products") or []
    return [row for row in rows if isinstance(row, dict)]


def _analysis(product: Dict[str, Any]) -> Dict[str, Any]:
    analysis = product.get("analysis")
    return analysis if isinstance(analysis, dict) else {}


def _date_only(raw: Any) -> str:
    if not raw:
        return "未知"
    try:
        return date_parser.parse(str(raw)).date().isoformat()
    except (ValueError, TypeError, OverflowError):
        return "未知"


def aggregate_stats(summary: SummaryLike) -> Dict[str, Any]:
    products = _products(summary)
    votes = [int(p.get("votesCount") or 0) for p in products]
    topics: Counter[str] = Counter()
    demographics: Counter[str] = Counter()
    for product in products:
        for topic in product.get("topics") or []:
            name = topic.get("name") if isinstance(topic, dict) else str(topic)
            if name:
                topics[name] += 1
        for user in _analysis(product).get("targetUsers") or []:
            demographic = user.get("demographic") if isinstance(user, dict) else None
            if demographic:
                demographics[demographic] += 1

    return {
        "totalVotes": sum(votes),
        "averageVotes": round(sum(votes) / len(votes)) if votes else 0,
        "topCategories": [{"category": k, "count": v} for k, v in topics.most_common(10)],
        "commonTargetUsers": [{"demographic": k, "count": v} for k, v in demographics.most_common(10)],
    }


def build_markdown(summary: SummaryLike) -> str:
    payload = _payload(summary)
    stats = aggregate_stats(payload)
    lines = [
        f"# Product Hunt Analysis - {payload.get('timestamp', '')}",
        "",
        f"- Total products: {payload.get('totalProducts', 0)}",
        f"- Successful analyses: {payload.get('successCount', 0)}",
        f"- Failed analyses: {payload.get('errorCount', 0)}",
        f"- Total votes: {stats['totalVotes']}",
        "",
    ]
    if stats["commonTargetUsers"]:
        lines.append("## Common target users")
        lines.extend(f"- {row['demographic']} ({row['count']})" for row in stats["commonTargetUsers"])
        lines.append("")

    lines.append("## Products")
    for idx, product in enumerate(_products(payload), start=1):
        name = product.get("name") or "(unnamed)"
        url = product.get("url") or ""
        heading = f"[{name}]({url})" if url else name
        lines.append(f"### {idx}. {heading}")
        if product.get("tagline"):
            lines.append(f"_{product['tagline']}_")
        lines.append(f"- Votes: {product.get('votesCount', 0)} | Comments: {product.get('commentsCount', 0)}")
        analysis = _analysis(product)
        if analysis.get("error"):
            lines.append(f"- Analysis failed: {analysis['error']}")
        else:
            users = ", ".join(
                f"{u.get('demographic')}({u.get('likelihood')})"
                for u in analysis.get("targetUsers") or []
                if isinstance(u, dict)
            )
            lines.append(f"- Success probability: {analysis.get('successProbability', '未知')}")
            if users:
                lines.append(f"- Target users: {users}")
            if analysis.get("summary"):
                lines.append(f"- {analysis['summary']}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def build_csv(summary: SummaryLike) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL)
    writer.writerow(CSV_HEADERS)
    for product in _products(summary):
        analysis = _analysis(product)
        users = analysis.get("targetUsers") or []
        personas = analysis.get("userPersonas") or []
        topics = product.get("topics") or []
        writer.writerow(
            [
                product.get("name") or "",
                product.get("tagline") or "",
                product.get("votesCount") or 0,
                product.get("commentsCount") or 0,
                analysis.get("successProbability") or "未知",
                "; ".join(f"{u.get('demographic')}({u.get('likelihood')})" for u in users if isinstance(u, dict))
                or "未分析",
                analysis.get("marketInsights") or "无",
                "; ".join(str(p) for p in personas) or "无",
                analysis.get("summary") or analysis.get("error") or "无分析",
                product.get("url") or "",
                ", ".join(t.get("name", "") for t in topics if isinstance(t, dict)) or "无",
                _date_only(product.get("createdAt")),
            ]
        )
    return CSV_BOM + buffer.getvalue()


def build_json_payload(summary: SummaryLike) -> str:
    payload = dict(_payload(summary))
    payload["stats"] = aggregate_stats(payload)
    return json.dumps(payload, ensure_ascii=False, indent=2)
