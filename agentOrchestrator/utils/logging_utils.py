"""Logging utilities for the orchestration engine."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "agentOrchestrator"
PREVIEW_LIMIT = 500


def _preview(value: Any, limit: int = PREVIEW_LIMIT) -> str:
    text = value if isinstance(value, str) else str(value)
    if len(text) > limit:
        return text[:limit] + "... (truncated)"
    return text


def setup_logging(level: int = logging.INFO, log_dir: Optional[Path] = None) -> logging.Logger:
    """Setup logging configuration for the orchestrator.

    Args:
        level: Console logging level (default: INFO)
        log_dir: Directory for a timestamped debug log file (optional)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"orchestrator_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)
        logger.info(f"Log file: {log_file}")

    return logger


def log_node_entry(logger: logging.Logger, node_name: str, state: Dict[str, Any], execution_id: str = None) -> None:
    """Log node entry with a short state snapshot.

    Args:
        logger: Logger instance
        node_name: Name of the node being entered
        state: Current graph state
        execution_id: Owning execution (optional)
    """
    logger.debug(
        f"Entering node {node_name} "
        f"(execution={execution_id}, agent={state.get('agent_id')}, "
        f"loops={state.get('loops', 0)}/{state.get('max_loops')}, "
        f"messages={len(state.get('messages', []))})"
    )


def log_routing_decision(logger: logging.Logger, from_node: str, decision: str, reason: str = "") -> None:
    """Log routing decision.

    Args:
        logger: Logger instance
        from_node: Source node making the decision
        decision: Routing destination
        reason: Reason for the routing decision
    """
    if reason:
        logger.info(f"Routing {from_node} -> {decision} ({reason})")
    else:
        logger.info(f"Routing {from_node} -> {decision}")


def log_tool_call(logger: logging.Logger, tool_name: str, args: Dict[str, Any]) -> None:
    """Log tool invocation.

    Args:
        logger: Logger instance
        tool_name: Name of the tool being called
        args: Tool arguments
    """
    logger.info(f"Tool call: {tool_name}")
    logger.debug(f"  Arguments: {_preview(json.dumps(args, ensure_ascii=False, default=str))}")


def log_tool_result(logger: logging.Logger, tool_name: str, result: Any, success: bool = True) -> None:
    """Log tool execution result.

    Args:
        logger: Logger instance
        tool_name: Name of the tool
        result: Tool execution result
        success: Whether the tool executed successfully
    """
    status = "success" if success else "failed"
    logger.info(f"Tool result: {tool_name} - {status}")
    logger.debug(f"  Result: {_preview(result)}")


def log_delegation(logger: logging.Logger, source: str, target: str, stage: str, task: str = "") -> None:
    """Log a delegation progress stage."""
    logger.info(f"Delegation {source} -> {target}: {stage}")
    if task:
        logger.debug(f"  Task: {_preview(task, 200)}")


def log_interrupt(logger: logging.Logger, execution_id: str, action: str, status: str) -> None:
    """Log an approval gate transition."""
    logger.info(f"Interrupt for {execution_id}: action={action} status={status}")


def log_error(logger: logging.Logger, error: BaseException, context: str = "") -> None:
    """Log error with context.

    Args:
        logger: Logger instance
        error: Exception instance
        context: Additional context about where the error occurred
    """
    logger.error(f"Error occurred: {type(error).__name__}: {error}")
    if context:
        logger.error(f"  Context: {context}")
    logger.debug("Full traceback:", exc_info=error)
