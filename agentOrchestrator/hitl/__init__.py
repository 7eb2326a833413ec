"""Human-in-the-Loop (HITL) approval gates.

Provides approval rules, the approval graph node and interrupt payload models.
"""

from .approval_checker import ApprovalChecker, ApprovalDecision
from .approval_node import ApprovalNode, build_interrupt_payload
from .interrupts import (
    ActionRequest,
    HumanInterrupt,
    HumanInterruptConfig,
    HumanResponse,
    InterruptState,
    coerce_response,
    normalize_interrupt_payload,
    response_status,
    validate_interrupt_payload,
)

__all__ = [
    "ActionRequest",
    "ApprovalChecker",
    "ApprovalDecision",
    "ApprovalNode",
    "HumanInterrupt",
    "HumanInterruptConfig",
    "HumanResponse",
    "InterruptState",
    "build_interrupt_payload",
    "coerce_response",
    "normalize_interrupt_payload",
    "response_status",
    "validate_interrupt_payload",
]
