# =============================================================================
# tests/test_rule_assistant.py - AI Rule Assistant Tests
# =============================================================================
# This module contains tests for:
# - Strict parsing of model responses (generation and refinement)
# - RuleAssistant logic (with mocked OpenAI)
# - Per-call client configuration
# - Error handling (malformed answers, unreachable API)
#
# Tests use mocked OpenAI responses to avoid API costs.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from openai import OpenAIError

from app.exceptions import ConnectivityError, MalformedAiResponseError
from agents.models import RefinementResponse
from agents.rule_assistant import (
    AiClientConfig,
    RuleAssistant,
    parse_generation,
    parse_json_object,
    parse_refinement,
)
from core.models import RuleDimension, RuleSeverity, RuleSource


def _client_mock(create) -> MagicMock:
    """AsyncOpenAI client mock that also works as `async with` target."""
    mock_client = MagicMock()
    mock_client.chat.completions.create = create
    mock_client.__aenter__.return_value = mock_client
    mock_client.__aexit__.return_value = False
    return mock_client


def _mock_openai(content: str) -> MagicMock:
    """Build a patched AsyncOpenAI class whose client answers with `content`."""
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = content

    return MagicMock(return_value=_client_mock(AsyncMock(return_value=mock_response)))


@pytest.fixture
def config():
    return AiClientConfig(api_key="sk-test", model="gpt-4o-mini", temperature=0.1, timeout_seconds=5)


# =============================================================================
# JSON Parsing
# =============================================================================

class TestParseJsonObject:
    """Test the untrusted-text JSON parser."""

    def test_plain_object(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}

    def test_single_fence_tolerated(self):
        assert parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}

    def test_invalid_json(self):
        with pytest.raises(MalformedAiResponseError) as exc_info:
            parse_json_object("Sure! Here is the fix: amount > 0")
        assert exc_info.value.code == "MALFORMED_AI_RESPONSE"

    def test_array_rejected(self):
        with pytest.raises(MalformedAiResponseError):
            parse_json_object("[1, 2]")

    def test_empty(self):
        with pytest.raises(MalformedAiResponseError):
            parse_json_object("  ")

    def test_raw_response_truncated(self):
        with pytest.raises(MalformedAiResponseError) as exc_info:
            parse_json_object("x" * 2000)
        assert len(exc_info.value.details["raw_response"]) == 500


class TestParseRefinement:
    """Test the refinement contract."""

    def test_success(self):
        answer = parse_refinement(json.dumps({
            "success": True,
            "refinedCondition": "LENGTH(name) > 0;",
            "explanation": "LEN is LENGTH in PostgreSQL",
            "confidence": 90,
        }))

        assert answer.success is True
        assert answer.refined_condition == "LENGTH(name) > 0"
        assert answer.confidence == 90

    def test_declined(self):
        answer = parse_refinement(json.dumps({"success": False, "errorMessage": "column does not exist"}))

        assert answer.success is False
        assert answer.reason == "column does not exist"

    @pytest.mark.parametrize(
        "payload",
        [
            {"success": "true", "refinedCondition": "x > 0"},
            {"success": True},
            {"success": True, "refinedCondition": "   "},
            {"success": False},
            {"success": True, "refinedCondition": "x > 0", "confidence": 150},
            {"refinedCondition": "x > 0"},
        ],
    )
    def test_contract_violations(self, payload):
        with pytest.raises(MalformedAiResponseError):
            parse_refinement(json.dumps(payload))


class TestParseGeneration:
    """Test the generation contract."""

    def test_aliases_and_normalisation(self):
        parsed = parse_generation(json.dumps({
            "rules": [{
                "id": "R1",
                "name": "Email válido",
                "dimension": "Validade",
                "column": "email",
                "sqlCondition": "email LIKE '%@%'",
                "severity": "ERROR",
                "expectedPassRate": 98,
            }],
        }))

        rule = parsed.rules[0]
        assert rule.dimension == RuleDimension.VALIDITY
        assert rule.severity == RuleSeverity.ERROR
        assert rule.candidate_severity == RuleSeverity.HIGH
        assert rule.expected_pass_rate == 98.0

    def test_missing_rules_key(self):
        with pytest.raises(MalformedAiResponseError):
            parse_generation('{"suggestions": []}')

    def test_missing_condition(self):
        with pytest.raises(MalformedAiResponseError):
            parse_generation('{"rules": [{"dimension": "validity"}]}')


# =============================================================================
# Client Configuration
# =============================================================================

class TestAiClientConfig:
    def test_from_settings_with_overrides(self):
        config = AiClientConfig.from_settings(model="gpt-4o", base_url="https://llm.internal/v1")

        assert config.model == "gpt-4o"
        assert config.base_url == "https://llm.internal/v1"
        assert config.api_key

    def test_api_key_hidden_from_repr(self, config):
        assert "sk-test" not in repr(config)

    def test_client_built_per_call(self, config):
        mock_class = _mock_openai('{"success": false, "errorMessage": "no"}')
        other = AiClientConfig(api_key="sk-other", base_url="https://other/v1")

        with patch("agents.rule_assistant.AsyncOpenAI", mock_class):
            assistant = RuleAssistant()
            asyncio.run(assistant.refine_condition("x", "err", "public.t", [], config))
            asyncio.run(assistant.refine_condition("x", "err", "public.t", [], other))

        keys = [call.kwargs["api_key"] for call in mock_class.call_args_list]
        assert keys == ["sk-test", "sk-other"]
        assert mock_class.call_args_list[1].kwargs["base_url"] == "https://other/v1"

    def test_client_closed_after_call(self, config):
        mock_class = _mock_openai('{"success": false, "errorMessage": "no"}')

        with patch("agents.rule_assistant.AsyncOpenAI", mock_class):
            asyncio.run(RuleAssistant().refine_condition("x", "err", "public.t", [], config))

        mock_class.return_value.__aenter__.assert_awaited_once()
        mock_class.return_value.__aexit__.assert_awaited_once()


# =============================================================================
# RuleAssistant (mocked OpenAI)
# =============================================================================

class TestGenerateRuleCandidates:
    """Test rule generation with mocked OpenAI."""

    def test_candidates_built_and_unknown_columns_dropped(self, config, customers_table, customer_columns):
        content = json.dumps({
            "rules": [
                {
                    "name": "Valid email",
                    "dimension": "validity",
                    "column": "EMAIL",
                    "sqlCondition": "email LIKE '%@%'",
                    "severity": "high",
                    "expectedPassRate": 99,
                },
                {
                    "name": "Phone present",
                    "dimension": "completude",
                    "column": "phone",
                    "sqlCondition": "phone IS NOT NULL",
                },
                {
                    "name": "Table not empty",
                    "dimension": "completeness",
                    "sqlCondition": "id IS NOT NULL",
                },
            ],
        })
        mock_class = _mock_openai(content)

        with patch("agents.rule_assistant.AsyncOpenAI", mock_class):
            candidates = asyncio.run(RuleAssistant().generate_rule_candidates(
                customers_table, customer_columns, [{"id": 1, "email": "a@b.com"}], config
            ))

        assert [c.name for c in candidates] == ["Valid email", "Table not empty"]
        email_rule = candidates[0]
        assert email_rule.column == "email"
        assert email_rule.source == RuleSource.AI
        assert email_rule.auto_generated is True
        assert email_rule.approved_by_user is False
        assert email_rule.table_full_name == "public.customers"
        assert email_rule.expected_pass_rate == 99.0
        assert candidates[1].column is None

    def test_json_mode_and_settings_used(self, config, customers_table, customer_columns):
        mock_class = _mock_openai('{"rules": []}')

        with patch("agents.rule_assistant.AsyncOpenAI", mock_class):
            asyncio.run(RuleAssistant().generate_rule_candidates(customers_table, customer_columns, [], config))

        create = mock_class.return_value.chat.completions.create
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.1
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "public.customers" in kwargs["messages"][0]["content"]

    def test_malformed_response_raises(self, config, customers_table, customer_columns):
        mock_class = _mock_openai("I think you should check emails.")

        with patch("agents.rule_assistant.AsyncOpenAI", mock_class):
            with pytest.raises(MalformedAiResponseError):
                asyncio.run(RuleAssistant().generate_rule_candidates(
                    customers_table, customer_columns, [], config
                ))


class TestRefineCondition:
    """Test condition repair with mocked OpenAI."""

    def test_refined_condition(self, config, customer_columns):
        mock_class = _mock_openai(json.dumps({
            "success": True,
            "refinedCondition": "LENGTH(name) > 0",
            "confidence": 85,
        }))

        with patch("agents.rule_assistant.AsyncOpenAI", mock_class):
            answer = asyncio.run(RuleAssistant().refine_condition(
                "LEN(name) > 0", "function len(text) does not exist", "public.customers",
                customer_columns, config,
            ))

        assert isinstance(answer, RefinementResponse)
        assert answer.refined_condition == "LENGTH(name) > 0"
        prompt = mock_class.return_value.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert "<failed_condition>LEN(name) > 0</failed_condition>" in prompt
        assert "function len(text) does not exist" in prompt

    def test_api_error_is_connectivity_error(self, config):
        mock_client = _client_mock(AsyncMock(side_effect=OpenAIError("rate limited")))

        with patch("agents.rule_assistant.AsyncOpenAI", MagicMock(return_value=mock_client)):
            with pytest.raises(ConnectivityError):
                asyncio.run(RuleAssistant().refine_condition("x", "err", "public.t", [], config))

        mock_client.__aexit__.assert_awaited_once()

    def test_timeout_is_connectivity_error(self):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        mock_client = _client_mock(slow)
        config = AiClientConfig(api_key="sk-test", timeout_seconds=0.01)

        with patch("agents.rule_assistant.AsyncOpenAI", MagicMock(return_value=mock_client)):
            with pytest.raises(ConnectivityError) as exc_info:
                asyncio.run(RuleAssistant().refine_condition("x", "err", "public.t", [], config))
        assert "timed out" in exc_info.value.message


class TestSuggestValidations:
    def test_numbered_list(self, config, customers_table, customer_columns):
        mock_class = _mock_openai("Suggestions:\n1. Email contains @\n2. Names are not blank")

        with patch("agents.rule_assistant.AsyncOpenAI", mock_class):
            parsed = asyncio.run(RuleAssistant().suggest_validations(customers_table, customer_columns, config))

        assert parsed.texts == ["Email contains @", "Names are not blank"]
        assert parsed.dropped_count == 1
        kwargs = mock_class.return_value.chat.completions.create.call_args.kwargs
        assert "response_format" not in kwargs
