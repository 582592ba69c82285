"""
Flow execution API routes
"""
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...flow.context import create_context
from ...flow.engine import FlowEngine
from ...models import IncomingMessage
from ..deps import get_flow_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/flows", tags=["flows"])


class ExecuteFlowRequest(BaseModel):
    """Trigger intake payload"""

    model_config = {"populate_by_name": True}

    trigger_id: Optional[str] = Field(None, alias="triggerId")
    flow_id: str = Field(alias="flowId")
    channel_id: str = Field(alias="channelId")
    contact_id: str = Field(alias="contactId")
    conversation_id: str = Field(alias="conversationId")
    workspace_id: str = Field(alias="workspaceId")
    late_account_id: Optional[str] = Field(None, alias="lateAccountId")
    late_conversation_id: Optional[str] = Field(None, alias="lateConversationId")
    incoming_message: IncomingMessage = Field(default_factory=IncomingMessage, alias="incomingMessage")
    variables: Dict[str, str] = {}


@router.post("/execute")
async def execute_flow(request: ExecuteFlowRequest, engine: FlowEngine = Depends(get_flow_engine)):
    """Start the flow for a contact, or resume the session waiting for their input"""
    context = create_context(
        flow_id=request.flow_id,
        channel_id=request.channel_id,
        contact_id=request.contact_id,
        conversation_id=request.conversation_id,
        workspace_id=request.workspace_id,
        trigger_id=request.trigger_id,
        incoming_message=request.incoming_message,
        variables=request.variables,
        external_account_id=request.late_account_id,
        external_conversation_id=request.late_conversation_id,
    )

    session = await engine.start_or_resume(context)
    if not session:
        return {"status": "skipped", "session_id": None}

    return {
        "status": "ok",
        "session_id": session.id,
        "session_status": session.status.value,
        "current_node_id": session.current_node_id,
    }
