"""
Execution Context - per-invocation data threaded through node execution
"""
import dataclasses
from dataclasses import dataclass, field
from typing import Optional, Any, Dict, Mapping

from ..models.workspace import IncomingMessage
from ..models.session import ResumeFlowPayload


@dataclass(frozen=True)
class ExecutionContext:
    """
    Everything a node executor needs to know about the current invocation.

    The context is never mutated in place. Node executors report variable
    writes and resolved identifiers in their NodeResult and the engine
    derives the next context with with_variables() / with_updates().
    """

    # Identifiers
    flow_id: str
    channel_id: str
    contact_id: str
    conversation_id: str
    workspace_id: str
    trigger_id: Optional[str] = None

    # Messaging gateway identifiers (resolved lazily)
    external_account_id: Optional[str] = None
    external_conversation_id: Optional[str] = None
    platform: Optional[str] = None

    # Inbound event
    incoming_message: IncomingMessage = field(default_factory=IncomingMessage)

    # Session variables
    variables: Dict[str, str] = field(default_factory=dict)

    @property
    def log_prefix(self) -> str:
        return f"[contact: {self.contact_id}, flow: {self.flow_id}]"

    def with_updates(self, **changes: Any) -> "ExecutionContext":
        """Copy with some fields replaced"""
        if not changes:
            return self
        return dataclasses.replace(self, **changes)

    def with_variables(self, diff: Optional[Mapping[str, Any]]) -> "ExecutionContext":
        """Copy with a variable diff applied; values are stored as strings"""
        if not diff:
            return self
        merged = dict(self.variables)
        for key, value in diff.items():
            merged[key] = value if isinstance(value, str) else str(value)
        return dataclasses.replace(self, variables=merged)

    @classmethod
    def from_resume_payload(cls, payload: ResumeFlowPayload) -> "ExecutionContext":
        """Rebuild the context a delay or timeout job carried"""
        return cls(
            trigger_id=None,
            flow_id=payload.flow_id,
            channel_id=payload.channel_id,
            contact_id=payload.contact_id,
            conversation_id=payload.conversation_id,
            workspace_id=payload.workspace_id,
            external_account_id=payload.external_account_id,
            external_conversation_id=payload.external_conversation_id,
        )


def create_context(
    flow_id: str,
    channel_id: str,
    contact_id: str,
    conversation_id: str,
    workspace_id: str,
    trigger_id: Optional[str] = None,
    incoming_message: Optional[IncomingMessage] = None,
    variables: Optional[Dict[str, Any]] = None,
    **kwargs: Any
) -> ExecutionContext:
    """
    Factory function to create an ExecutionContext.

    Args:
        flow_id: Flow to start
        channel_id: Channel the event arrived on
        contact_id: Contact the flow runs for
        conversation_id: Conversation to reply in
        workspace_id: Owning workspace
        trigger_id: Trigger that fired, if any
        incoming_message: Inbound payload
        variables: Initial session variables
        **kwargs: Pre-resolved gateway identifiers or platform

    Returns:
        New ExecutionContext instance
    """
    return ExecutionContext(
        flow_id=flow_id,
        channel_id=channel_id,
        contact_id=contact_id,
        conversation_id=conversation_id,
        workspace_id=workspace_id,
        trigger_id=trigger_id,
        incoming_message=incoming_message or IncomingMessage(),
        variables={k: str(v) for k, v in (variables or {}).items()},
        **kwargs
    )
