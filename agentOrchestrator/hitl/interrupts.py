"""Approval interrupt payloads and records.

The payload shape follows the agent-inbox convention::

    {
        "action_request": {"action": "send_email", "args": {...}},
        "config": {"allow_accept": True, "allow_edit": True,
                   "allow_respond": False, "allow_ignore": True},
        "description": "..."
    }
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agentOrchestrator.utils.error_handler import InvalidInterruptError

InterruptStatus = Literal["pending", "approved", "rejected", "edited"]
ResponseType = Literal["accept", "edit", "response", "ignore"]

RESPONSE_STATUS: Dict[str, InterruptStatus] = {
    "accept": "approved",
    "response": "approved",
    "edit": "edited",
    "ignore": "rejected",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ActionRequest(BaseModel):
    action: str = Field(min_length=1)
    args: Dict[str, Any] = Field(default_factory=dict)


class HumanInterruptConfig(BaseModel):
    allow_accept: bool = True
    allow_edit: bool = True
    allow_respond: bool = False
    allow_ignore: bool = True


class HumanInterrupt(BaseModel):
    action_request: ActionRequest
    config: HumanInterruptConfig = Field(default_factory=HumanInterruptConfig)
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HumanResponse(BaseModel):
    """A human decision.

    ``args`` holds replacement tool arguments for ``edit`` and free text for
    ``response``; it is ignored for ``accept`` and ``ignore``.
    """

    type: ResponseType
    args: Union[Dict[str, Any], str, None] = None


class InterruptState(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    interrupt_id: str = Field(default_factory=lambda: f"interrupt_{uuid4().hex[:12]}")
    execution_id: str
    thread_id: str
    payload: HumanInterrupt
    status: InterruptStatus = "pending"
    created_at: datetime = Field(default_factory=_now)
    updated_at: Optional[datetime] = None
    response: Optional[HumanResponse] = None
    user_id: Optional[str] = None
    agent_id: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"


def response_status(response: HumanResponse) -> InterruptStatus:
    return RESPONSE_STATUS[response.type]


def normalize_interrupt_payload(raw: Any) -> Any:
    """Unwrap the envelopes an interrupt value may arrive in.

    Handles tuples/lists of interrupts, LangGraph ``Interrupt`` objects
    (``.value``), and ``{"value": ...}`` / ``{"interrupt": ...}`` dicts.
    """
    current = raw
    for _ in range(5):
        if isinstance(current, (list, tuple)):
            if not current:
                return None
            current = current[0]
            continue
        if not isinstance(current, dict) and hasattr(current, "value"):
            current = current.value
            continue
        if isinstance(current, dict) and "action_request" not in current:
            if "value" in current:
                current = current["value"]
                continue
            if "interrupt" in current:
                current = current["interrupt"]
                continue
        break
    return current


def validate_interrupt_payload(payload: Any) -> HumanInterrupt:
    """Validate a normalized payload.

    Raises:
        InvalidInterruptError: The payload is not a well-formed HumanInterrupt
    """
    if isinstance(payload, HumanInterrupt):
        return payload
    if not isinstance(payload, dict):
        raise InvalidInterruptError(f"Invalid interrupt payload: expected object, got {type(payload).__name__}")
    try:
        return HumanInterrupt.model_validate(payload)
    except ValidationError as e:
        raise InvalidInterruptError(f"Invalid interrupt payload: {e.error_count()} validation error(s)") from e


def coerce_response(response: Union[HumanResponse, Dict[str, Any], str]) -> HumanResponse:
    """Accept a HumanResponse, its dict form, or a bare response type string."""
    if isinstance(response, HumanResponse):
        return response
    if isinstance(response, str):
        return HumanResponse(type=response)
    return HumanResponse.model_validate(response)
