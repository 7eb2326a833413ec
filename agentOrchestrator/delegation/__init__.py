"""Agent-to-agent delegation."""

from .coordinator import NIL_UUID, DelegationCoordinator, resolve_user_id
from .models import (
    STAGE_SEQUENCE,
    DelegationOutcome,
    DelegationPriority,
    DelegationRequest,
    DelegationStage,
)
from .tools import build_delegation_tool_specs, delegation_tool_name, is_delegation_tool, parse_delegation_call

__all__ = [
    "NIL_UUID",
    "STAGE_SEQUENCE",
    "DelegationCoordinator",
    "DelegationOutcome",
    "DelegationPriority",
    "DelegationRequest",
    "DelegationStage",
    "build_delegation_tool_specs",
    "delegation_tool_name",
    "is_delegation_tool",
    "parse_delegation_call",
    "resolve_user_id",
]
