"""Tests for the model pricing registry and cost helpers."""

import pytest

from gitanalyzer.domain.pricing import (
    Provider,
    api_model_name,
    calculate_cost,
    estimate_analysis_cost,
    estimate_depth_cost,
    format_cost_brl,
    format_cost_usd,
    get_model_pricing,
    is_economic_model,
    model_mode,
    resolve_pricing,
)

pytestmark = pytest.mark.unit


def test_calculate_cost_uses_per_1k_rates():
    """1,000 input + 1,000 output tokens on gemini-2.5-flash cost $0.00075."""
    cost = calculate_cost(1000, 1000, "google/gemini-2.5-flash", Provider.GATEWAY)
    assert cost == pytest.approx(0.00075)


def test_calculate_cost_unknown_model_uses_provider_default():
    unknown = calculate_cost(1000, 1000, "google/some-future-model", Provider.GATEWAY)
    default = calculate_cost(1000, 1000, "google/gemini-2.5-flash", Provider.GATEWAY)
    assert unknown == default


def test_lookup_accepts_bare_key_and_full_id():
    assert get_model_pricing("gpt-5-mini") is get_model_pricing("openai/gpt-5-mini")
    assert get_model_pricing("gpt-5-mini", Provider.GATEWAY) is None


def test_resolve_pricing_falls_back_per_provider():
    assert resolve_pricing("nope", Provider.OPENAI).id == "openai/gpt-5-mini"
    assert resolve_pricing("nope", "lovable").id == "google/gemini-2.5-flash"


def test_api_model_name_maps_to_dated_name():
    assert api_model_name("gpt-5-mini") == "gpt-5-mini-2025-08-07"
    assert api_model_name("gpt-4o") == "gpt-4o"


def test_estimate_analysis_cost_splits_tokens_by_ratio():
    # 2,000 in at 0.00015 + 2,000 out at 0.0006
    assert estimate_analysis_cost("google/gemini-2.5-flash", 4000) == pytest.approx(0.0015)


def test_estimate_analysis_cost_unknown_model_is_zero():
    assert estimate_analysis_cost("acme/unknown", 4000) == 0.0


def test_estimate_depth_cost_uses_static_token_estimate():
    assert estimate_depth_cost("complete", "google/gemini-2.5-flash") == pytest.approx(
        estimate_analysis_cost("google/gemini-2.5-flash", 25000)
    )


@pytest.mark.parametrize(
    ("model", "economic"),
    [
        ("google/gemini-2.5-flash-lite", True),
        ("openai/gpt-5-nano", True),
        ("gpt-5-mini", True),
        ("google/gemini-2.5-flash", False),
        ("openai/gpt-5", False),
        (None, False),
    ],
)
def test_is_economic_model_matches_name_patterns(model, economic):
    assert is_economic_model(model) is economic
    assert model_mode(model) == ("economic" if economic else "detailed")


def test_cost_formatting_switches_precision_below_one_cent():
    assert format_cost_usd(0.00123) == "$0.0012"
    assert format_cost_usd(1.5) == "$1.50"
    assert format_cost_brl(1.0) == "R$ 5.50"
    assert format_cost_brl(0.001) == "R$ 0.0055"
