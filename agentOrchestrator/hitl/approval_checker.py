"""Approval checker deciding which tool calls need a human decision."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

import yaml

LOGGER = logging.getLogger(__name__)

RISK_LEVELS_ORDER = ("critical", "high", "medium", "low")


@dataclass
class ApprovalDecision:
    """审批决策结果"""

    needs_approval: bool
    reason: str = ""
    risk_level: str = "low"  # low, medium, high, critical


class ApprovalChecker:
    """工具执行审批检测器

    Rules, highest priority first:
    1. Custom per-tool checkers registered in code
    2. Agent-level ``approval_required_tools``
    3. Global risk patterns matched against all argument values
    4. Per-tool configuration (``always`` flag or risk patterns)

    Example rules file::

        global:
          risk_patterns:
            critical:
              patterns: ["password\\s*[=:]"]
              reason: "Sensitive data in arguments"
        tools:
          send_email:
            always: true
            reason: "Outgoing email"
          delete_file:
            patterns:
              high: ["/etc/"]
    """

    def __init__(self, config_path: Optional[Path] = None, rules: Optional[Dict[str, Any]] = None):
        """
        Args:
            config_path: YAML rules file (optional)
            rules: Rules dict, used when no file is given
        """
        self.config_path = Path(config_path) if config_path else None
        self.rules = self._load_config() if self.config_path else (rules or {})
        self.custom_checkers: Dict[str, Callable[[dict], ApprovalDecision]] = {}
        self.global_patterns = self._load_global_patterns()

    def _load_config(self) -> dict:
        if not self.config_path or not self.config_path.exists():
            LOGGER.warning(f"Approval rules file not found: {self.config_path}")
            return {}

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            LOGGER.warning(f"Failed to load approval config {self.config_path}: {e}")
            return {}

    def _load_global_patterns(self) -> Dict[str, Dict[str, Any]]:
        risk_patterns = (self.rules.get("global") or {}).get("risk_patterns") or {}
        patterns_by_level = {}
        for level, pattern_config in risk_patterns.items():
            if isinstance(pattern_config, dict):
                patterns_by_level[level] = {
                    "patterns": pattern_config.get("patterns", []),
                    "action": pattern_config.get("action", "require_approval"),
                    "reason": pattern_config.get("reason", f"Matched global {level} risk pattern"),
                }
        return patterns_by_level

    def register_checker(self, tool_name: str, checker: Callable[[dict], ApprovalDecision]) -> None:
        """Register a custom checker for one tool.

        Args:
            tool_name: Tool name
            checker: Receives the call args, returns an ApprovalDecision
        """
        self.custom_checkers[tool_name] = checker

    def check(self, tool_name: str, args: dict, required_tools: Iterable[str] = ()) -> ApprovalDecision:
        """Decide whether a tool call needs approval.

        Args:
            tool_name: Tool name
            args: Tool arguments
            required_tools: Tool names the calling agent always gates

        Returns:
            ApprovalDecision
        """
        if tool_name in self.custom_checkers:
            return self.custom_checkers[tool_name](args)

        if tool_name in set(required_tools):
            return ApprovalDecision(
                needs_approval=True,
                reason=f"{tool_name} requires approval for this agent",
                risk_level="medium",
            )

        global_decision = self._check_global_patterns(args)
        if global_decision.needs_approval:
            return global_decision

        if tool_name in (self.rules.get("tools") or {}):
            return self._check_config_rules(tool_name, args)

        return ApprovalDecision(needs_approval=False)

    def _args_text(self, args: dict) -> str:
        return " ".join(str(v) for v in (args or {}).values())

    def _check_global_patterns(self, args: dict) -> ApprovalDecision:
        if not self.global_patterns:
            return ApprovalDecision(needs_approval=False)

        args_str = self._args_text(args)
        for risk_level in RISK_LEVELS_ORDER:
            pattern_config = self.global_patterns.get(risk_level)
            if not pattern_config or pattern_config["action"] != "require_approval":
                continue
            for pattern in pattern_config["patterns"]:
                if re.search(pattern, args_str, re.IGNORECASE):
                    return ApprovalDecision(
                        needs_approval=True,
                        reason=pattern_config["reason"],
                        risk_level=risk_level,
                    )

        return ApprovalDecision(needs_approval=False)

    def _check_config_rules(self, tool_name: str, args: dict) -> ApprovalDecision:
        tool_config = self.rules["tools"][tool_name] or {}

        if not tool_config.get("enabled", True):
            return ApprovalDecision(needs_approval=False)

        if tool_config.get("always"):
            return ApprovalDecision(
                needs_approval=True,
                reason=tool_config.get("reason", f"{tool_name} always requires approval"),
                risk_level=tool_config.get("risk_level", "medium"),
            )

        args_str = self._args_text(args)
        for risk_level, pattern_list in (tool_config.get("patterns") or {}).items():
            for pattern in pattern_list:
                if re.search(pattern, args_str, re.IGNORECASE):
                    action = (tool_config.get("actions") or {}).get(risk_level, "require_approval")
                    if action == "require_approval":
                        return ApprovalDecision(
                            needs_approval=True,
                            reason=f"Matched {risk_level} risk pattern: {pattern}",
                            risk_level=risk_level,
                        )

        return ApprovalDecision(needs_approval=False)
