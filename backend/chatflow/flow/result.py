"""
Node Result - control signal returned by every node executor
"""
from dataclasses import dataclass, field
from typing import Optional, Any, Dict
from enum import Enum


class Signal(str, Enum):
    """What the traversal engine should do after a node"""
    CONTINUE = "continue"   # follow the plain outgoing edge
    BRANCH = "branch"       # follow the edge labeled with `handle`
    PAUSE = "pause"         # stop; something external resumes the session
    CALL_FLOW = "call_flow" # hand over to another flow


@dataclass
class NodeResult:
    """
    Result of executing one node.

    Executors never touch the ExecutionContext directly. Variable writes go
    into `variables` and freshly resolved identifiers (gateway account or
    conversation ids, platform) into `context_updates`; the engine applies
    both before moving on.
    """

    signal: Signal = Signal.CONTINUE
    handle: Optional[str] = None

    # State diff
    variables: Dict[str, str] = field(default_factory=dict)
    context_updates: Dict[str, Any] = field(default_factory=dict)

    # goToFlow
    target_flow_id: Optional[str] = None
    return_after: bool = False

    # Informational, never raised
    error: Optional[str] = None

    def is_pause(self) -> bool:
        return self.signal == Signal.PAUSE

    def is_branch(self) -> bool:
        return self.signal == Signal.BRANCH

    def is_call(self) -> bool:
        return self.signal == Signal.CALL_FLOW


# ==================== Factory Functions ====================

def continue_result(
    variables: Optional[Dict[str, str]] = None,
    error: Optional[str] = None,
    **context_updates: Any
) -> NodeResult:
    """Plain continue, optionally carrying a variable diff"""
    return NodeResult(
        signal=Signal.CONTINUE,
        variables=variables or {},
        context_updates={k: v for k, v in context_updates.items() if v is not None},
        error=error
    )


def branch_result(handle: str, **context_updates: Any) -> NodeResult:
    """Continue via the edge labeled `handle`"""
    return NodeResult(
        signal=Signal.BRANCH,
        handle=handle,
        context_updates={k: v for k, v in context_updates.items() if v is not None}
    )


def pause_result(variables: Optional[Dict[str, str]] = None) -> NodeResult:
    """Suspend traversal"""
    return NodeResult(signal=Signal.PAUSE, variables=variables or {})


def call_flow_result(flow_id: str, return_after: bool = False) -> NodeResult:
    """Hand over to another flow, optionally returning afterwards"""
    return NodeResult(
        signal=Signal.CALL_FLOW,
        target_flow_id=flow_id,
        return_after=return_after
    )
