"""Agent blueprints parsed from model output.

Chat models describe new agents as JSON. This module is the only place that
text is interpreted: it extracts the JSON, validates it into typed
blueprints, and reports malformed output as `BlueprintError`. Everything
past this boundary works with validated values.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from biosphere.errors import BlueprintError

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_FENCED_ANY = re.compile(r"```\s*([\s\S]*?)\s*```")


class AgentBlueprint(BaseModel):
    """Validated description of an agent to create."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    receptor_patterns: list[str] = Field(..., min_length=1)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    voice: Optional[str] = None
    purpose: Optional[str] = None

    @field_validator("id", "name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("receptor_patterns")
    @classmethod
    def _drop_blank_patterns(cls, patterns: list[str]) -> list[str]:
        kept = [p.strip() for p in patterns if p and p.strip()]
        if not kept:
            raise ValueError("at least one non-blank receptor pattern is required")
        return kept


class BridgeBlueprint(AgentBlueprint):
    """Blueprint for a translator agent between two weakly resonant agents."""

    pass


class SeedPlan(BaseModel):
    """Initial society proposed for a goal. Entries are validated one by one."""

    agents: list[dict[str, Any]]


def extract_json(text: str) -> str:
    """Pull the JSON payload out of a model response.

    Tries a ```json fence, then any fence, then the outermost braces.
    """
    fenced = _FENCED_JSON.search(text)
    if fenced:
        return fenced.group(1)

    fenced = _FENCED_ANY.search(text)
    if fenced:
        return fenced.group(1)

    first = text.find("{")
    last = text.rfind("}")
    if first >= 0 and last > first:
        return text[first:last + 1]

    return text


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a JSON object from model output.

    Raises:
        BlueprintError: If no JSON object can be decoded
    """
    try:
        parsed = json.loads(extract_json(text))
    except json.JSONDecodeError as e:
        raise BlueprintError(f"Model output is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise BlueprintError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def _validate(model: type[AgentBlueprint], payload: Any) -> AgentBlueprint:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise BlueprintError(f"Invalid agent blueprint: {e.error_count()} error(s)") from e


def parse_agent_blueprint(text: str) -> AgentBlueprint:
    """Parse `{"agent": {...}}` (or a bare blueprint object)."""
    parsed = parse_json_object(text)
    return _validate(AgentBlueprint, parsed.get("agent", parsed))


def parse_bridge_blueprint(text: str) -> BridgeBlueprint:
    """Parse a bridge blueprint from `{"agent": {...}}` model output."""
    parsed = parse_json_object(text)
    return _validate(BridgeBlueprint, parsed.get("agent", parsed))


def parse_seed_plan(text: str) -> list[AgentBlueprint]:
    """Parse a seed plan, discarding individual malformed entries.

    Raises:
        BlueprintError: If the output has no `agents` list at all
    """
    parsed = parse_json_object(text)
    try:
        plan = SeedPlan.model_validate(parsed)
    except ValidationError as e:
        raise BlueprintError("Invalid seed plan from model: missing agents list") from e

    blueprints: list[AgentBlueprint] = []
    for entry in plan.agents:
        try:
            blueprints.append(_validate(AgentBlueprint, entry))
        except BlueprintError as e:
            logger.warning(f"Discarding malformed blueprint {entry.get('id', '<no id>')!r}: {e}")
    return blueprints
