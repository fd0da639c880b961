"""
Copilot response contract validation.

validate_copilot_response() is the single gate deciding whether a candidate
payload is a usable copilot answer. Both the live model path and any other
generator pass their output through it unmodified.

COPILOT_JSON_SCHEMA is the JSON-schema document handed to the model backend as
its structured-output format. It describes the same contract as the
CopilotAnswer pydantic model; the pydantic model is authoritative.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ops_copilot.models import CopilotAnswer


COPILOT_JSON_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "summary": {"type": "string", "minLength": 1},
        "key_drivers": {
            "type": "array",
            "minItems": 3,
            "maxItems": 6,
            "items": {"type": "string", "minLength": 1},
        },
        "recommended_actions": {
            "type": "array",
            "minItems": 3,
            "maxItems": 6,
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "action": {"type": "string", "minLength": 1},
                    "reason": {"type": "string", "minLength": 1},
                    "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                },
                "required": ["action", "reason", "priority"],
            },
        },
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "used_data_points": {
            "type": "array",
            "minItems": 1,
            "maxItems": 16,
            "items": {"type": "string", "minLength": 1},
        },
    },
    "required": [
        "summary",
        "key_drivers",
        "recommended_actions",
        "confidence",
        "used_data_points",
    ],
}


@dataclass(frozen=True)
class CopilotValidation:
    """
    Result of validating a copilot candidate.

    Exactly one of data / error is set: data when ok, error otherwise.
    """
    ok: bool
    data: Optional[CopilotAnswer] = None
    error: Optional[str] = None


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        parts.append(f"{location}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def validate_copilot_response(candidate: Any) -> CopilotValidation:
    """
    Validate a candidate copilot answer against the contract.

    Enforces: non-empty summary; 3-6 non-empty key_drivers; 3-6
    recommended_actions each with non-empty action/reason and priority in
    {high, medium, low}; confidence in [0, 1]; 1-16 non-empty
    used_data_points; no missing or extra keys. Violations are a failure,
    never a partial success.

    Args:
        candidate: Any decoded JSON value.

    Returns:
        CopilotValidation with ok=True and the parsed CopilotAnswer, or ok=False
        and a short description of every violation.
    """
    if isinstance(candidate, CopilotAnswer):
        candidate = candidate.model_dump(mode="json", exclude={"meta"})

    try:
        data = CopilotAnswer.model_validate(candidate)
    except ValidationError as exc:
        return CopilotValidation(ok=False, error=_format_errors(exc))

    return CopilotValidation(ok=True, data=data)
