"""
Inbound message webhook

Routes a normalized inbound message either to the contact's session that
is waiting for input or, through trigger matching, to a new flow.
"""
import logging
from typing import Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...flow.context import create_context
from ...flow.engine import FlowEngine
from ...flow.trigger_matcher import match_trigger
from ...models import IncomingMessage
from ..deps import get_flow_engine, get_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class InboundEvent(BaseModel):
    """Inbound message already stored by the inbox"""

    model_config = {"populate_by_name": True}

    channel_id: str = Field(alias="channelId")
    contact_id: str = Field(alias="contactId")
    conversation_id: str = Field(alias="conversationId")
    workspace_id: str = Field(alias="workspaceId")
    incoming_message: IncomingMessage = Field(default_factory=IncomingMessage, alias="incomingMessage")
    variables: Dict[str, str] = {}


@router.post("/inbound")
async def inbound_message(
    event: InboundEvent,
    engine: FlowEngine = Depends(get_flow_engine),
    repository=Depends(get_repository)
):
    """Resume a waiting session or start the flow of the matching trigger"""
    conversation = await repository.get_conversation(event.conversation_id)
    if conversation and conversation.is_automation_paused:
        logger.info(f"Automation paused on conversation {event.conversation_id}, ignoring message")
        return {"status": "ignored", "reason": "automation_paused"}

    waiting = await repository.find_waiting_session(event.contact_id, event.channel_id)
    if waiting:
        context = create_context(
            flow_id=waiting.flow_id,
            channel_id=event.channel_id,
            contact_id=event.contact_id,
            conversation_id=event.conversation_id,
            workspace_id=event.workspace_id,
            incoming_message=event.incoming_message,
        )
        session = await engine.resume(waiting, context)
        return {"status": "resumed", "session_id": session.id if session else waiting.id}

    trigger = await match_trigger(
        repository, event.channel_id, event.conversation_id, event.incoming_message
    )
    if not trigger:
        logger.debug(f"No trigger matched on channel {event.channel_id}")
        return {"status": "ignored", "reason": "no_trigger"}

    context = create_context(
        flow_id=trigger.flow_id,
        channel_id=event.channel_id,
        contact_id=event.contact_id,
        conversation_id=event.conversation_id,
        workspace_id=event.workspace_id,
        trigger_id=trigger.id,
        incoming_message=event.incoming_message,
        variables=event.variables,
    )
    session = await engine.start_or_resume(context)

    return {
        "status": "started" if session else "skipped",
        "trigger_id": trigger.id,
        "session_id": session.id if session else None,
    }
