"""Prompt building and reply parsing for the text-generation collaborator.

Two reply shapes are used. Free-text flows (weekly insight, monthly summary)
take the reply verbatim. Structured flows ask for a JSON object and read it
back with :func:`extract_json`, which yields either :class:`Parsed` or
:class:`Unparsed`. What happens on :class:`Unparsed` depends on who consumes
the result: descriptive flows fall back to boilerplate, flows whose numbers
feed back into a budget raise :class:`GenerationParseError`.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Protocol, Union

import google.generativeai as genai
from jinja2 import DictLoader, Environment, StrictUndefined

from budgeting import (
    TransactionLike,
    aggregate_by_category,
    default_budget_for_income,
    format_currency,
)
from models import CATEGORY_NAMES


logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "Keep up the good work tracking your expenses!"
FALLBACK_RECOMMENDATION = "Continue monitoring your spending habits."
TOP_CATEGORY_COUNT = 3


class GenerationParseError(ValueError):
    pass


class GenerationUnavailable(RuntimeError):
    """The text-generation service could not produce a reply."""


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str: ...


class GeminiTextGenerator:
    """Text generation through the Google Gemini SDK."""

    def __init__(self, api_key: str, model: str, timeout: float) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise GenerationUnavailable("Gemini API key not configured")
        try:
            genai.configure(api_key=self.api_key)
            model = genai.GenerativeModel(model_name=self.model)
            response = model.generate_content(
                prompt, request_options={"timeout": self.timeout}
            )
            # .text raises ValueError when the candidate was blocked or empty
            return response.text
        except Exception as exc:
            raise GenerationUnavailable(f"Gemini request failed: {exc}") from exc


@dataclass(frozen=True)
class Parsed:
    data: dict[str, Any]


@dataclass(frozen=True)
class Unparsed:
    raw: str


ParseResult = Union[Parsed, Unparsed]


def extract_json(text: Optional[str]) -> ParseResult:
    """Read the object spanning the first "{" to the last "}" of a reply."""
    raw = text or ""
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end <= start:
        return Unparsed(raw)
    try:
        data = json.loads(raw[start : end + 1])
    except json.JSONDecodeError:
        return Unparsed(raw)
    if not isinstance(data, dict):
        return Unparsed(raw)
    return Parsed(data)


@dataclass(frozen=True)
class SpendingSummary:
    total_spent: float
    by_category: dict[str, float]
    transaction_count: int
    top_categories: list[str]


def top_categories(
    by_category: Mapping[str, float], count: int = TOP_CATEGORY_COUNT
) -> list[str]:
    ranked = sorted(by_category.items(), key=lambda item: (-item[1], item[0]))
    return [name for name, _ in ranked[:count]]


def summarize(transactions: Iterable[TransactionLike]) -> SpendingSummary:
    items = list(transactions)
    by_category = aggregate_by_category(items)
    return SpendingSummary(
        total_spent=sum(by_category.values()),
        by_category=by_category,
        transaction_count=len(items),
        top_categories=top_categories(by_category),
    )


def _pretty_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


PROMPTS = {
    "weekly.txt": """\
Generate a brief weekly spending summary (2-3 sentences).

Total spent this week: {{ summary.total_spent | money(currency) }}
Transactions: {{ summary.transaction_count }}

Spending by category:
{{ summary.by_category | pretty_json }}

Provide an encouraging, actionable insight. Keep it friendly and under 100 words.
""",
    "_summary.txt": """\
Total Spent: {{ summary.total_spent | money(currency) }}

By Category:
{% for category, amount in summary.by_category.items() %}
- {{ category }}: {{ amount | money(currency) }}
{% endfor %}
""",
    "analysis.txt": """\
You are a financial advisor analyzing a user's spending patterns.

User Profile:
- Monthly Income: {{ income | money(currency) }}
- Currency: {{ currency }}

Transaction Summary (Last 30 days):
{% include "_summary.txt" %}

Please provide:
1. A brief analysis of spending patterns (2-3 sentences)
2. Top 3 spending categories
3. Any concerning trends or overspending areas
4. One actionable recommendation

Keep your response concise, friendly, and actionable. Format as JSON:
{
  "analysis": "Brief analysis text",
  "topCategories": ["category1", "category2", "category3"],
  "concerns": ["concern1", "concern2"],
  "recommendation": "One key recommendation"
}
""",
    "recommendations.txt": """\
You are a financial advisor creating a personalized budget plan.

User Profile:
- Monthly Income: {{ income | money(currency) }}

{% if current_budget %}
Current Budget:
{{ current_budget | pretty_json }}
{% else %}
No current budget set
{% endif %}

Recent Spending (Last 30 days):
{% include "_summary.txt" %}

Based on the 50/30/20 rule (50% needs, 30% wants, 20% savings) and the user's \
actual spending patterns, suggest realistic monthly budget limits for these categories:
{% for category in categories %}
- {{ category }}
{% endfor %}

Provide your recommendations as JSON:
{
  "categories": {
{% for category in categories %}
    "{{ category }}": amount{{ "," if not loop.last }}
{% endfor %}
  },
  "reasoning": "Brief explanation of your recommendations"
}
""",
    "overspending.txt": """\
You are monitoring a user's spending for potential overspending alerts.

Monthly Income: {{ income | money(currency) }}

Budget Limits:
{{ limits | pretty_json }}

Current Spending (This Month):
{{ summary.by_category | pretty_json }}

Identify any categories where spending is approaching or exceeding budget limits. \
Provide alerts as JSON:
{
  "alerts": [
    {
      "category": "category name",
      "spent": amount,
      "budget": amount,
      "percentage": percentage,
      "severity": "warning|critical",
      "message": "Friendly alert message"
    }
  ],
  "overallStatus": "on_track|warning|critical"
}

Mark as "warning" if 80-99% of budget used, "critical" if 100%+ used.
""",
    "monthly.txt": """\
Create a friendly monthly spending summary for a user.

Monthly Income: {{ income | money(currency) }}
Total Spent: {{ summary.total_spent | money(currency) }}

Spending by Category:
{{ summary.by_category | pretty_json }}

Budget:
{{ limits | pretty_json }}

Provide a friendly, encouraging summary (2-3 paragraphs) that:
1. Highlights overall performance
2. Mentions top spending categories
3. Offers one piece of positive reinforcement or advice
4. Keeps tone supportive and non-judgmental

Keep it concise and actionable.
""",
    "adjustments.txt": """\
A user experienced a life change: "{{ life_change }}"

Current Monthly Income: {{ income | money(currency) }}

Current Budget:
{{ limits | pretty_json }}

Suggest how to adjust their budget to accommodate this change. Provide response as JSON:
{
  "adjustments": {
    "Category Name": {
      "oldAmount": current_amount,
      "newAmount": suggested_amount,
      "reason": "why this adjustment"
    }
  },
  "summary": "Brief explanation of overall adjustments"
}
""",
}

prompt_env = Environment(
    loader=DictLoader(PROMPTS),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)
prompt_env.filters["money"] = format_currency
prompt_env.filters["pretty_json"] = _pretty_json


def render_prompt(name: str, **context: Any) -> str:
    return prompt_env.get_template(name).render(**context)


@dataclass
class InsightDraft:
    summary: str
    total_spent: float
    transaction_count: int
    top_categories: list[str]
    concerns: list[str] = field(default_factory=list)
    recommendation: Optional[str] = None
    generated: bool = True


def _income(profile: Any) -> float:
    return float(getattr(profile, "monthly_income", 0) or 0)


def _currency(profile: Any) -> str:
    return getattr(profile, "currency", None) or "INR"


class SpendingAdvisor:
    def __init__(self, generator: TextGenerator) -> None:
        self.generator = generator

    def _ask(self, template: str, profile: Any, **context: Any) -> str:
        prompt = render_prompt(
            template, income=_income(profile), currency=_currency(profile), **context
        )
        return self.generator.generate(prompt)

    def weekly_insight(
        self, transactions: Iterable[TransactionLike], profile: Any
    ) -> InsightDraft:
        summary = summarize(transactions)
        try:
            text = self._ask("weekly.txt", profile, summary=summary)
        except Exception:
            logger.exception("weekly_insight: generation failed, using fallback")
            text = ""
        if not (text and text.strip()):
            return InsightDraft(
                summary=FALLBACK_SUMMARY,
                total_spent=0.0,
                transaction_count=0,
                top_categories=[],
                generated=False,
            )
        return InsightDraft(
            summary=text.strip(),
            total_spent=summary.total_spent,
            transaction_count=summary.transaction_count,
            top_categories=summary.top_categories,
        )

    def monthly_summary(
        self,
        transactions: Iterable[TransactionLike],
        limits: Optional[Mapping[str, float]],
        profile: Any,
    ) -> str:
        summary = summarize(transactions)
        return self._ask(
            "monthly.txt", profile, summary=summary, limits=dict(limits or {})
        )

    def monthly_insight(
        self,
        transactions: Iterable[TransactionLike],
        limits: Optional[Mapping[str, float]],
        profile: Any,
    ) -> InsightDraft:
        items = list(transactions)
        summary = summarize(items)
        text = self.monthly_summary(items, limits, profile)
        return InsightDraft(
            summary=text.strip() or FALLBACK_SUMMARY,
            total_spent=summary.total_spent,
            transaction_count=summary.transaction_count,
            top_categories=summary.top_categories,
            generated=bool(text.strip()),
        )

    def analyze_spending_patterns(
        self, transactions: Iterable[TransactionLike], profile: Any
    ) -> dict[str, Any]:
        summary = summarize(transactions)
        reply = extract_json(self._ask("analysis.txt", profile, summary=summary))
        if isinstance(reply, Unparsed):
            logger.warning("analyze_spending_patterns: unparsed reply, using fallback")
            return {
                "analysis": reply.raw.strip() or FALLBACK_SUMMARY,
                "topCategories": [],
                "concerns": [],
                "recommendation": FALLBACK_RECOMMENDATION,
            }
        data = dict(reply.data)
        data.setdefault("analysis", "")
        data.setdefault("topCategories", [])
        data.setdefault("concerns", [])
        data.setdefault("recommendation", FALLBACK_RECOMMENDATION)
        return data

    def detect_overspending(
        self,
        transactions: Iterable[TransactionLike],
        limits: Mapping[str, float],
        profile: Any,
    ) -> dict[str, Any]:
        summary = summarize(transactions)
        reply = extract_json(
            self._ask(
                "overspending.txt", profile, summary=summary, limits=dict(limits or {})
            )
        )
        if isinstance(reply, Unparsed):
            logger.warning("detect_overspending: unparsed reply, using fallback")
            return {"alerts": [], "overallStatus": "on_track"}
        return reply.data

    def generate_budget_recommendations(
        self,
        transactions: Iterable[TransactionLike],
        profile: Any,
        current_budget: Optional[Mapping[str, float]] = None,
    ) -> dict[str, Any]:
        income = _income(profile)
        if not income:
            raise ValueError("Please set your monthly income first in your profile.")
        items = list(transactions)
        if not items:
            return {
                "categories": default_budget_for_income(income),
                "reasoning": "Default 50/30/20 allocation based on your monthly income.",
                "source": "default",
            }

        summary = summarize(items)
        reply = extract_json(
            self._ask(
                "recommendations.txt",
                profile,
                summary=summary,
                current_budget=dict(current_budget or {}),
                categories=CATEGORY_NAMES,
            )
        )
        if isinstance(reply, Unparsed):
            raise GenerationParseError("Failed to parse budget recommendations")
        categories = reply.data.get("categories")
        if not isinstance(categories, dict):
            raise GenerationParseError("Budget recommendations contain no categories")
        limits: dict[str, float] = {}
        for name, amount in categories.items():
            if name not in CATEGORY_NAMES:
                continue
            if (
                isinstance(amount, bool)
                or not isinstance(amount, (int, float))
                or not math.isfinite(amount)
            ):
                raise GenerationParseError(f"Invalid recommended limit for {name}")
            limits[name] = max(0.0, float(amount))
        return {
            "categories": limits,
            "reasoning": str(reply.data.get("reasoning", "")),
            "source": "generated",
        }

    def suggest_budget_adjustments(
        self, life_change: str, current_budget: Mapping[str, float], profile: Any
    ) -> dict[str, Any]:
        reply = extract_json(
            self._ask(
                "adjustments.txt",
                profile,
                life_change=life_change,
                limits=dict(current_budget or {}),
            )
        )
        if isinstance(reply, Unparsed):
            raise GenerationParseError("Failed to parse budget adjustments")
        if not isinstance(reply.data.get("adjustments"), dict):
            raise GenerationParseError("Budget adjustments contain no adjustments")
        return reply.data
