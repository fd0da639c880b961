"""
Model backend adapter for the copilot.

OpenAICopilotClient sends one structured-output request to the OpenAI
Responses API and returns the decoded JSON object. It makes no attempt to
validate the object against the copilot contract; that is the orchestrator's
job.

Every failure, whether transport, API error, timeout, or an unusable payload,
is raised as ModelBackendError carrying an enumerated ModelFailureReason. The
SDK's own retries are disabled (max_retries=0): the orchestrator owns the
single strict retry.

Response decoding is done by parse_model_output(), which looks in the known
payload locations in a fixed order:
    1. output[0].content[0].parsed
    2. output[0].content[0].json
    3. output_text                  (JSON text)
    4. output[0].content[0].text    (JSON text)
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import BaseModel

from ops_copilot.models import ModelFailureReason, PromptVersion
from ops_copilot.services.schema_validation import COPILOT_JSON_SCHEMA


logger = logging.getLogger(__name__)


PROMPTS_DIR: Path = Path(__file__).resolve().parent.parent / "prompts"

RESPONSE_FORMAT_NAME: str = "ops_copilot_response"


# =============================================================================
# Errors and Results
# =============================================================================


class ModelBackendError(Exception):
    """The model backend did not produce a usable JSON object."""

    def __init__(self, reason: ModelFailureReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


@dataclass(frozen=True)
class ModelOutput:
    """Decoded model payload, or the reason none could be decoded."""
    payload: Optional[Dict[str, Any]] = None
    failure: Optional[ModelFailureReason] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


# =============================================================================
# Prompt Templates
# =============================================================================


@lru_cache(maxsize=None)
def load_prompt(version: PromptVersion) -> str:
    """Return the system prompt template for a prompt version."""
    filename = "copilot_v2.md" if version == PromptVersion.V2 else "copilot_v1.md"
    return (PROMPTS_DIR / filename).read_text(encoding="utf-8")


def compose_system_prompt(template: str, extra_instruction: Optional[str] = None) -> str:
    if not extra_instruction:
        return template
    return f"{template}\n\nSTRICT MODE:\n{extra_instruction}"


def compose_user_message(query: str, data_points: Sequence[str]) -> str:
    bullets = "\n".join(f"- {point}" for point in data_points)
    return (
        f"USER_QUESTION:\n{query}\n\n"
        f"AVAILABLE_DATA_POINTS (cite these verbatim in used_data_points):\n{bullets}"
    )


# =============================================================================
# Response Parsing
# =============================================================================


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _first(items: Any) -> Any:
    if isinstance(items, (list, tuple)) and items:
        return items[0]
    return None


def _decode_text(text: str) -> ModelOutput:
    try:
        decoded = json.loads(text)
    except ValueError:
        return ModelOutput(failure=ModelFailureReason.INVALID_JSON)
    if not isinstance(decoded, dict):
        return ModelOutput(failure=ModelFailureReason.NOT_AN_OBJECT)
    return ModelOutput(payload=decoded)


def parse_model_output(response: Any) -> ModelOutput:
    """
    Extract the JSON object from a Responses API result.

    Works on SDK response objects and on plain dicts of the same shape.

    Returns:
        ModelOutput with the decoded payload, or a failure of empty_response
        (no location carried content), invalid_json, or not_an_object.
    """
    first_content = _first(_field(_first(_field(response, "output")), "content"))

    for name in ("parsed", "json"):
        structured = _field(first_content, name)
        # SDK models expose a deprecated json() method under the same name
        if structured is None or callable(structured):
            continue
        if isinstance(structured, dict):
            return ModelOutput(payload=structured)
        if isinstance(structured, BaseModel):
            return ModelOutput(payload=structured.model_dump())
        return ModelOutput(failure=ModelFailureReason.NOT_AN_OBJECT)

    output_text = _field(response, "output_text")
    if isinstance(output_text, str) and output_text.strip():
        return _decode_text(output_text)

    text = _field(first_content, "text")
    if isinstance(text, str) and text.strip():
        return _decode_text(text)

    return ModelOutput(failure=ModelFailureReason.EMPTY_RESPONSE)


# =============================================================================
# Clients
# =============================================================================


class CopilotModelClient(Protocol):
    """Interface the orchestrator calls; tests substitute a fake."""

    async def generate(
        self,
        model: str,
        system_prompt: str,
        query: str,
        data_points: Sequence[str],
        max_output_tokens: int,
        extra_instruction: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...


class OpenAICopilotClient:
    """
    Structured-output copilot calls on the OpenAI Responses API.

    Args:
        api_key: OpenAI API key.
        timeout_seconds: Wall-clock bound for each call.
        client: Pre-built AsyncOpenAI client (tests).
    """

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = 30.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            max_retries=0,
        )

    async def generate(
        self,
        model: str,
        system_prompt: str,
        query: str,
        data_points: Sequence[str],
        max_output_tokens: int,
        extra_instruction: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Ask the model for a copilot answer.

        Returns:
            The decoded JSON object (not yet validated).

        Raises:
            ModelBackendError: On any request or decoding failure.
        """
        request_input: List[Dict[str, Any]] = [
            {
                "role": "system",
                "content": compose_system_prompt(system_prompt, extra_instruction),
            },
            {
                "role": "user",
                "content": [
                    {"type": "input_text", "text": compose_user_message(query, data_points)}
                ],
            },
        ]

        try:
            response = await asyncio.wait_for(
                self.client.responses.create(
                    model=model,
                    input=request_input,
                    max_output_tokens=max_output_tokens,
                    text={
                        "format": {
                            "type": "json_schema",
                            "name": RESPONSE_FORMAT_NAME,
                            "schema": COPILOT_JSON_SCHEMA,
                            "strict": True,
                        }
                    },
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ModelBackendError(
                ModelFailureReason.REQUEST_FAILED, f"timed out after {self.timeout_seconds}s"
            ) from e
        except (openai.OpenAIError, httpx.HTTPError) as e:
            raise ModelBackendError(ModelFailureReason.REQUEST_FAILED, type(e).__name__) from e

        output = parse_model_output(response)
        if not output.ok:
            logger.warning(f"Unusable model output from {model}: {output.failure.value}")
            raise ModelBackendError(output.failure)

        return output.payload
