# =============================================================================
# agents/rule_assistant.py - AI Rule Generation & Repair Collaborator
# =============================================================================
# The rule assistant talks to a language model to:
#
#   1. generate_rule_candidates  propose data-quality rules for a table
#   2. refine_condition          repair a rule condition that failed to run
#   3. suggest_validations       free-text numbered list of validation ideas
#
# Design:
# - Direct OpenAI calls, JSON mode, low temperature
# - Every call receives its own AiClientConfig (key, model, endpoint); a fresh
#   client is built per call so concurrent refinements never share headers
# - Responses are untrusted: strict parsing via Pydantic, and any deviation
#   raises MalformedAiResponseError instead of being guessed at
#
# Usage:
#   assistant = RuleAssistant()
#   config = AiClientConfig.from_settings()
#   candidates = await assistant.generate_rule_candidates(table, columns, rows, config)
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Literal
from uuid import uuid4

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError

from app.config import settings
from app.exceptions import ConnectivityError, MalformedAiResponseError
from agents.models import GenerationResponse, RefinementResponse
from agents.prompts import build_generation_prompt, build_refinement_prompt
from agents.validation_parser import ParsedValidations, parse_numbered_validations
from core.models import ColumnMetadata, RuleCandidate, RuleSource, TableMetadata

# Set up logging for this module
logger = logging.getLogger(__name__)

# A whole response wrapped in one ```json ... ``` fence
_FENCED = re.compile(r"^\s*```(?:json)?\s*\n(.*)\n\s*```\s*$", re.DOTALL)


# =============================================================================
# Per-call Configuration
# =============================================================================

class AiClientConfig(BaseModel):
    """
    Everything needed to reach the model for one call.

    Passed explicitly to every collaborator method; nothing about the
    provider is stored on the assistant itself.
    """

    model_config = {"frozen": True}

    provider: Literal["openai"] = "openai"
    api_key: str = Field(..., min_length=1, repr=False)
    model: str = Field(default="gpt-4o-mini")
    base_url: str | None = Field(default=None, description="OpenAI-compatible endpoint")
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=60.0, gt=0)

    @classmethod
    def from_settings(cls, **overrides: Any) -> "AiClientConfig":
        """Build a config from application settings, with per-call overrides."""
        values: dict[str, Any] = {
            "api_key": settings.OPENAI_API_KEY or "",
            "model": settings.OPENAI_MODEL,
            "temperature": settings.AI_TEMPERATURE,
            "timeout_seconds": settings.AI_TIMEOUT_SECONDS,
        }
        values.update(overrides)
        return cls(**values)


# =============================================================================
# Collaborator Contract
# =============================================================================

class RuleAssistantBase(ABC):
    """What the rule lifecycle needs from an AI collaborator."""

    @abstractmethod
    async def generate_rule_candidates(
        self,
        table: TableMetadata,
        columns: list[ColumnMetadata],
        sample_rows: list[dict[str, Any]],
        config: AiClientConfig,
    ) -> list[RuleCandidate]:
        ...

    @abstractmethod
    async def refine_condition(
        self,
        condition: str,
        error_message: str,
        table: str,
        columns: list[ColumnMetadata],
        config: AiClientConfig,
    ) -> RefinementResponse:
        ...


# =============================================================================
# Response Parsing
# =============================================================================

def parse_json_object(response_text: str) -> dict[str, Any]:
    """
    Parse a model response into a JSON object.

    A single surrounding ```json fence is tolerated; anything else that is not
    exactly one JSON object is rejected.

    Raises:
        MalformedAiResponseError: On empty text, invalid JSON or a non-object
    """
    if not response_text or not response_text.strip():
        raise MalformedAiResponseError("empty response", raw_response=response_text)

    fenced = _FENCED.match(response_text)
    body = fenced.group(1) if fenced else response_text

    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise MalformedAiResponseError(f"invalid JSON: {e}", raw_response=response_text) from e

    if not isinstance(data, dict):
        raise MalformedAiResponseError(
            f"expected a JSON object, got {type(data).__name__}", raw_response=response_text
        )
    return data


def _validation_summary(error: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in error.errors())


def parse_refinement(response_text: str) -> RefinementResponse:
    """Strictly parse a refinement answer."""
    data = parse_json_object(response_text)
    try:
        return RefinementResponse.model_validate(data)
    except ValidationError as e:
        raise MalformedAiResponseError(
            f"invalid refinement structure: {_validation_summary(e)}", raw_response=response_text
        ) from e


def parse_generation(response_text: str) -> GenerationResponse:
    """Strictly parse a rule generation answer."""
    data = parse_json_object(response_text)
    try:
        return GenerationResponse.model_validate(data)
    except ValidationError as e:
        raise MalformedAiResponseError(
            f"invalid rules structure: {_validation_summary(e)}", raw_response=response_text
        ) from e


# =============================================================================
# OpenAI Implementation
# =============================================================================

class RuleAssistant(RuleAssistantBase):
    """
    OpenAI-backed rule assistant.

    Example:
        assistant = RuleAssistant()
        answer = await assistant.refine_condition(
            "LEN(name) > 0", "function len(text) does not exist",
            "public.customers", columns, AiClientConfig(api_key="sk-..."),
        )
        if answer.success:
            print(answer.refined_condition)
    """

    def _client(self, config: AiClientConfig) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )

    async def _complete(
        self,
        config: AiClientConfig,
        system_prompt: str,
        user_message: str,
        json_mode: bool = True,
    ) -> str:
        """Send one chat completion and return the raw text."""
        kwargs: dict[str, Any] = {
            "model": config.model,
            "temperature": config.temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}  # Force JSON output

        try:
            async with self._client(config) as client:
                response = await asyncio.wait_for(
                    client.chat.completions.create(**kwargs),
                    timeout=config.timeout_seconds,
                )
        except asyncio.TimeoutError as e:
            raise ConnectivityError(
                f"AI call timed out after {config.timeout_seconds}s",
                details={"model": config.model},
            ) from e
        except OpenAIError as e:
            raise ConnectivityError(
                f"OpenAI API call failed: {e}",
                details={"model": config.model},
            ) from e

        response_text = response.choices[0].message.content or ""
        logger.debug(f"OpenAI response: {response_text[:200]}...")
        return response_text

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate_rule_candidates(
        self,
        table: TableMetadata,
        columns: list[ColumnMetadata],
        sample_rows: list[dict[str, Any]],
        config: AiClientConfig,
    ) -> list[RuleCandidate]:
        """
        Ask the model for rule candidates for one table.

        Rules that reference a column the table does not have are dropped
        with a warning; a response that does not match the contract raises.

        Raises:
            MalformedAiResponseError: Response failed strict parsing
            ConnectivityError: API unreachable or timed out
        """
        system_prompt = build_generation_prompt(table, columns, sample_rows)
        response_text = await self._complete(
            config, system_prompt, f"Propose data-quality rules for {table.full_name}."
        )
        parsed = parse_generation(response_text)

        known = {c.name.lower(): c.name for c in columns}
        candidates = []
        for rule in parsed.rules:
            column = None
            if rule.column:
                column = known.get(rule.column.lower())
                if column is None:
                    logger.warning(
                        f"Dropping generated rule {rule.name or rule.id!r}: "
                        f"unknown column {rule.column!r} in {table.full_name}"
                    )
                    continue
            candidates.append(RuleCandidate(
                id=uuid4().hex,
                name=rule.name or rule.id or "",
                dimension=rule.dimension,
                schema_name=table.schema_name,
                table_name=table.name,
                column=column,
                condition=rule.sql_condition,
                description=rule.description,
                severity=rule.candidate_severity,
                expected_pass_rate=rule.expected_pass_rate,
                auto_generated=True,
                source=RuleSource.AI,
            ))

        logger.info(f"Generated {len(candidates)} rule candidates for {table.full_name}")
        return candidates

    # -------------------------------------------------------------------------
    # Refinement
    # -------------------------------------------------------------------------

    async def refine_condition(
        self,
        condition: str,
        error_message: str,
        table: str,
        columns: list[ColumnMetadata],
        config: AiClientConfig,
    ) -> RefinementResponse:
        """
        Ask the model to repair a condition the database rejected.

        Raises:
            MalformedAiResponseError: Response failed strict parsing
            ConnectivityError: API unreachable or timed out
        """
        system_prompt = build_refinement_prompt(condition, error_message, table, columns)
        response_text = await self._complete(config, system_prompt, "Repair the failed condition.")
        answer = parse_refinement(response_text)
        logger.info(
            f"Refinement for {table}: success={answer.success} confidence={answer.confidence}"
        )
        return answer

    # -------------------------------------------------------------------------
    # Free-text Suggestions
    # -------------------------------------------------------------------------

    async def suggest_validations(
        self,
        table: TableMetadata,
        columns: list[ColumnMetadata],
        config: AiClientConfig,
    ) -> ParsedValidations:
        """
        Ask for a numbered list of validation ideas in plain text.

        Lines that are not "N. text" are dropped and counted.
        """
        column_list = ", ".join(f"{c.name} ({c.data_type})" for c in columns)
        system_prompt = (
            "You are a data-quality analyst. Answer with a numbered list, one "
            "validation idea per line, formatted as 'N. description'."
        )
        response_text = await self._complete(
            config,
            system_prompt,
            f"Table {table.full_name} has columns: {column_list}. Which validations matter most?",
            json_mode=False,
        )
        parsed = parse_numbered_validations(response_text)
        if parsed.dropped_count:
            logger.warning(
                f"Dropped {parsed.dropped_count} unparseable line(s) from validation suggestions "
                f"for {table.full_name}"
            )
        return parsed
