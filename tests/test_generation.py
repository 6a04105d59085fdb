from datetime import datetime
from types import SimpleNamespace

import pytest

import generation
from generation import (
    FALLBACK_RECOMMENDATION,
    FALLBACK_SUMMARY,
    GeminiTextGenerator,
    GenerationParseError,
    GenerationUnavailable,
    Parsed,
    SpendingAdvisor,
    Unparsed,
    extract_json,
    render_prompt,
    summarize,
    top_categories,
)
from models import Category, Transaction, TransactionType


class FakeGenerator:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


PROFILE = SimpleNamespace(monthly_income=50_000.0, currency="INR")
MALFORMED = "Sorry, I cannot produce a budget right now."


def _transactions():
    return [
        Transaction(
            description="Groceries",
            amount=1200.0,
            category=Category.food,
            type=TransactionType.expense,
            date=datetime(2025, 3, 2),
        ),
        Transaction(
            description="Shoes",
            amount=800.0,
            category=Category.shopping,
            type=TransactionType.expense,
            date=datetime(2025, 3, 3),
        ),
        Transaction(
            description="Salary",
            amount=50_000.0,
            category=Category.other,
            type=TransactionType.income,
            date=datetime(2025, 3, 1),
        ),
    ]


def test_extract_json_reads_embedded_object():
    reply = (
        'Here is your summary: {"analysis":"ok","topCategories":["Food"],'
        '"concerns":[],"recommendation":"save more"}'
    )

    result = extract_json(reply)

    assert isinstance(result, Parsed)
    assert result.data["analysis"] == "ok"
    assert result.data["recommendation"] == "save more"


def test_extract_json_reports_unparsed_replies():
    assert extract_json(MALFORMED) == Unparsed(MALFORMED)
    assert isinstance(extract_json("{not json}"), Unparsed)
    assert isinstance(extract_json("} backwards {"), Unparsed)
    assert isinstance(extract_json(None), Unparsed)


def test_summarize_counts_all_but_sums_expenses():
    summary = summarize(_transactions())

    assert summary.total_spent == 2000.0
    assert summary.transaction_count == 3
    assert summary.by_category == {"Food & Groceries": 1200.0, "Shopping": 800.0}
    assert summary.top_categories == ["Food & Groceries", "Shopping"]


def test_top_categories_breaks_ties_by_name():
    spending = {"Shopping": 100.0, "Entertainment": 100.0, "Housing": 500.0, "Other": 1.0}
    assert top_categories(spending) == ["Housing", "Entertainment", "Shopping"]


def test_prompt_keeps_category_names_and_formats_money():
    prompt = render_prompt(
        "analysis.txt", income=50_000.0, currency="INR", summary=summarize(_transactions())
    )

    assert "- Food & Groceries: ₹1,200.00" in prompt
    assert "Monthly Income: ₹50,000.00" in prompt
    assert '"recommendation": "One key recommendation"' in prompt


def test_analysis_parses_reply():
    generator = FakeGenerator(
        'Here is your summary: {"analysis":"ok","topCategories":["Food"],'
        '"concerns":[],"recommendation":"save more"}'
    )

    result = SpendingAdvisor(generator).analyze_spending_patterns(_transactions(), PROFILE)

    assert result["analysis"] == "ok"
    assert result["topCategories"] == ["Food"]
    assert len(generator.prompts) == 1


def test_analysis_falls_back_on_malformed_reply():
    result = SpendingAdvisor(FakeGenerator(MALFORMED)).analyze_spending_patterns(
        _transactions(), PROFILE
    )

    assert result == {
        "analysis": MALFORMED,
        "topCategories": [],
        "concerns": [],
        "recommendation": FALLBACK_RECOMMENDATION,
    }


def test_overspending_falls_back_on_malformed_reply():
    result = SpendingAdvisor(FakeGenerator(MALFORMED)).detect_overspending(
        _transactions(), {"Food & Groceries": 1000.0}, PROFILE
    )
    assert result == {"alerts": [], "overallStatus": "on_track"}


def test_recommendations_raise_on_malformed_reply():
    advisor = SpendingAdvisor(FakeGenerator(MALFORMED))
    with pytest.raises(GenerationParseError, match="Failed to parse budget recommendations"):
        advisor.generate_budget_recommendations(_transactions(), PROFILE)


def test_recommendations_keep_known_categories():
    generator = FakeGenerator(
        'Sure! {"categories": {"Housing": 15000, "Food & Groceries": 6000, '
        '"Crypto": 5000}, "reasoning": "Rent is high."}'
    )

    result = SpendingAdvisor(generator).generate_budget_recommendations(
        _transactions(), PROFILE, {"Housing": 12000.0}
    )

    assert result["categories"] == {"Housing": 15000.0, "Food & Groceries": 6000.0}
    assert result["reasoning"] == "Rent is high."
    assert result["source"] == "generated"
    assert '"Housing": 12000.0' in generator.prompts[0]


def test_recommendations_reject_non_numeric_limits():
    generator = FakeGenerator('{"categories": {"Housing": "a lot"}}')
    with pytest.raises(GenerationParseError):
        SpendingAdvisor(generator).generate_budget_recommendations(
            _transactions(), PROFILE
        )


def test_recommendations_default_without_history():
    generator = FakeGenerator(error=AssertionError("should not be called"))

    result = SpendingAdvisor(generator).generate_budget_recommendations([], PROFILE)

    assert result["source"] == "default"
    assert result["categories"]["Housing"] == 12_500
    assert generator.prompts == []


def test_recommendations_require_income():
    advisor = SpendingAdvisor(FakeGenerator("{}"))
    with pytest.raises(ValueError, match="monthly income"):
        advisor.generate_budget_recommendations(
            _transactions(), SimpleNamespace(monthly_income=0, currency="INR")
        )


def test_adjustments_raise_on_malformed_reply():
    advisor = SpendingAdvisor(FakeGenerator(MALFORMED))
    with pytest.raises(GenerationParseError):
        advisor.suggest_budget_adjustments("New baby", {"Housing": 1000.0}, PROFILE)


def test_adjustments_return_parsed_object():
    reply = (
        '{"adjustments": {"Healthcare": {"oldAmount": 500, "newAmount": 2000, '
        '"reason": "Pediatric visits"}}, "summary": "Shift to healthcare."}'
    )
    advisor = SpendingAdvisor(FakeGenerator(reply))

    result = advisor.suggest_budget_adjustments("New baby", {"Healthcare": 500.0}, PROFILE)

    assert result["adjustments"]["Healthcare"]["newAmount"] == 2000
    assert 'A user experienced a life change: "New baby"' in advisor.generator.prompts[0]


def test_weekly_insight_returns_free_text():
    generator = FakeGenerator("You spent most on groceries. Nice work!")

    draft = SpendingAdvisor(generator).weekly_insight(_transactions(), PROFILE)

    assert draft.summary == "You spent most on groceries. Nice work!"
    assert draft.total_spent == 2000.0
    assert draft.transaction_count == 3
    assert draft.top_categories == ["Food & Groceries", "Shopping"]
    assert draft.generated is True


def test_weekly_insight_falls_back_when_generation_fails():
    generator = FakeGenerator(error=TimeoutError("deadline exceeded"))

    draft = SpendingAdvisor(generator).weekly_insight(_transactions(), PROFILE)

    assert draft.summary == FALLBACK_SUMMARY
    assert draft.total_spent == 0.0
    assert draft.transaction_count == 0
    assert draft.top_categories == []
    assert draft.concerns == []
    assert draft.generated is False


def test_weekly_insight_falls_back_on_blank_reply():
    draft = SpendingAdvisor(FakeGenerator("   ")).weekly_insight(_transactions(), PROFILE)
    assert draft.summary == FALLBACK_SUMMARY
    assert draft.top_categories == []


def test_recommendations_reject_non_finite_limits():
    generator = FakeGenerator('{"categories": {"Housing": Infinity}}')
    with pytest.raises(GenerationParseError):
        SpendingAdvisor(generator).generate_budget_recommendations(
            _transactions(), PROFILE
        )


class _BlockedResponse:
    @property
    def text(self):
        raise ValueError("The response was blocked by safety filters.")


class _BlockedModel:
    def __init__(self, model_name):
        self.model_name = model_name

    def generate_content(self, prompt, request_options=None):
        return _BlockedResponse()


def test_gemini_errors_are_not_value_errors(monkeypatch):
    monkeypatch.setattr(generation.genai, "configure", lambda **kwargs: None)
    monkeypatch.setattr(generation.genai, "GenerativeModel", _BlockedModel)
    generator = GeminiTextGenerator(api_key="key", model="gemini-test", timeout=5)

    with pytest.raises(GenerationUnavailable) as excinfo:
        generator.generate("hello")

    assert not isinstance(excinfo.value, ValueError)
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_gemini_without_api_key_is_unavailable():
    generator = GeminiTextGenerator(api_key="", model="gemini-test", timeout=5)
    with pytest.raises(GenerationUnavailable, match="API key"):
        generator.generate("hello")
