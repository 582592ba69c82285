"""
Flow Module - Flow Execution Engine

This module provides the execution side of automation flows:
- Traversal engine with durable sessions (start, resume, go-to-flow calls)
- One executor per node kind (messaging, branching, contact data, control)
- AI replies generated from conversation history
- Platform adaptation of rich messages for each channel
- Trigger matching for inbound messages
"""

from .engine import FlowEngine, create_engine, get_engine
from .executor import NodeExecutor, duration_to_timedelta
from .ai_response import AIResponseExecutor, build_history
from .delivery import MessageDelivery, DeliveryTarget
from .evaluator import ConditionEvaluator, evaluator
from .template import interpolate
from .platform_adapter import AdaptedMessage, adapt_message, parse_numbered_response
from .trigger_matcher import match_trigger, matches_keywords
from .context import ExecutionContext, create_context
from .result import (
    NodeResult,
    Signal,
    continue_result,
    branch_result,
    pause_result,
    call_flow_result
)

__all__ = [
    # Engine
    "FlowEngine",
    "create_engine",
    "get_engine",

    # Executors
    "NodeExecutor",
    "duration_to_timedelta",
    "AIResponseExecutor",
    "build_history",
    "MessageDelivery",
    "DeliveryTarget",

    # Evaluator
    "ConditionEvaluator",
    "evaluator",

    # Messages
    "interpolate",
    "AdaptedMessage",
    "adapt_message",
    "parse_numbered_response",

    # Triggers
    "match_trigger",
    "matches_keywords",

    # Context
    "ExecutionContext",
    "create_context",

    # Result
    "NodeResult",
    "Signal",
    "continue_result",
    "branch_result",
    "pause_result",
    "call_flow_result",
]


# Version info
__version__ = "1.0.0"
