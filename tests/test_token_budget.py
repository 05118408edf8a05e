"""Tests for token estimation, agent classification and budget selection."""

from storyteller.utils.token_budget import (
    build_token_params,
    calculate_budget,
    classify_agent,
    estimate_tokens,
    get_context_limit,
    supports_response_format,
    supports_temperature,
    validate_utilization,
)


class TestEstimateTokens:
    def test_four_chars_per_token_rounded_up(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0


class TestClassifyAgent:
    def test_separators_case_and_agent_suffix_are_ignored(self):
        assert classify_agent("Scene_Generator-Agent") == "reasoning-heavy"
        assert classify_agent("sfx agent") == "utility"

    def test_unknown_agents_default(self):
        assert classify_agent("mystery") == "default"
        assert classify_agent(None) == "default"


class TestCalculateBudget:
    def test_reasoning_heavy_gets_headroom(self):
        assert calculate_budget(1000, "reasoning-heavy").budget == 28_000
        assert calculate_budget(10_000, "reasoning-heavy").budget == 30_000

    def test_utility_is_capped(self):
        assert calculate_budget(1000, "utility").budget == 3_000
        assert calculate_budget(7000, "utility").budget == 8_000

    def test_default_is_moderate(self):
        budget = calculate_budget(1000, "default")
        assert budget.budget == 12_000
        assert budget.increase == 11_000
        assert calculate_budget(6000, "default").budget == 14_000


class TestValidateUtilization:
    def test_over_limit_is_invalid(self):
        report = validate_utilization(7000, 2000, 8192, label="probe")
        assert report.valid is False
        assert "TOKEN_LIMIT_EXCEEDED" in report.warning

    def test_high_utilization_warns_but_stays_valid(self):
        report = validate_utilization(85_000, 1000, 100_000)
        assert report.valid is True
        assert report.utilization_pct == 85
        assert "HIGH_UTILIZATION" in report.warning

    def test_low_utilization_has_no_warning(self):
        report = validate_utilization(10_000, 1000, 100_000)
        assert report.valid and report.warning is None


class TestModelParameters:
    def test_completion_tokens_parameter_for_reasoning_models(self):
        assert build_token_params("gpt-5.1", 5000) == {"max_completion_tokens": 5000}
        assert build_token_params("o3-mini", 5000) == {"max_completion_tokens": 5000}
        assert build_token_params("gpt-4o", 5000) == {"max_tokens": 5000}

    def test_capabilities(self):
        assert supports_temperature("gpt-4o")
        assert supports_response_format("gpt-4.1-2025-04-14")
        assert not supports_response_format("o1-preview")

    def test_context_limits(self):
        assert get_context_limit("gpt-4") == 8_192
        assert get_context_limit("gpt-4o-mini") == 128_000
        assert get_context_limit("something-else") == 128_000
