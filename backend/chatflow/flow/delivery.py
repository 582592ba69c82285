"""
Outbound delivery shared by the messaging node executors.

Resolves where a message goes (workspace key, gateway account, gateway
conversation, platform) and records every attempt as a message row plus
a message_sent / message_failed analytics event.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..core.exceptions import GatewayError
from ..models import MessageCreate, MessageDirection, MessageStatus, Workspace
from ..services.analytics import AnalyticsService, EventType
from ..services.gateway import MessagingGateway, create_gateway
from .context import ExecutionContext

logger = logging.getLogger(__name__)


@dataclass
class DeliveryTarget:
    """Resolved destination for outbound messages"""
    gateway: MessagingGateway
    workspace: Workspace
    account_id: str
    conversation_id: Optional[str] = None
    platform: Optional[str] = None

    def context_updates(self) -> Dict[str, Any]:
        """Identifiers to cache into the execution context"""
        return {
            "external_account_id": self.account_id,
            "external_conversation_id": self.conversation_id,
            "platform": self.platform,
        }


class MessageDelivery:
    """Resolves delivery targets and records outbound messages"""

    def __init__(
        self,
        repository,
        analytics: AnalyticsService,
        gateway_factory: Callable[[str], MessagingGateway] = create_gateway
    ):
        self.repository = repository
        self.analytics = analytics
        self.gateway_factory = gateway_factory

    async def resolve_target(
        self,
        context: ExecutionContext,
        require_conversation: bool = True
    ) -> Optional[DeliveryTarget]:
        """
        Resolve the gateway client and identifiers for this context.

        Identifiers already cached in the context are reused; missing ones
        are looked up on the channel and conversation records. Returns None
        (after logging) when the workspace has no gateway key, the channel
        is gone, or a DM target conversation is unknown.
        """
        workspace = await self.repository.get_workspace(context.workspace_id)
        if not workspace or not workspace.late_api_key_encrypted:
            logger.warning(f"{context.log_prefix} No gateway API key for workspace {context.workspace_id}")
            return None

        account_id = context.external_account_id
        platform = context.platform
        if not account_id or not platform:
            channel = await self.repository.get_channel(context.channel_id)
            if not channel:
                logger.warning(f"{context.log_prefix} Channel {context.channel_id} not found")
                return None
            account_id = account_id or channel.late_account_id
            platform = platform or channel.platform

        if not account_id:
            logger.warning(f"{context.log_prefix} Channel {context.channel_id} has no gateway account")
            return None

        conversation_id = context.external_conversation_id
        if not conversation_id and context.conversation_id:
            conversation = await self.repository.get_conversation(context.conversation_id)
            if conversation and conversation.late_conversation_id:
                conversation_id = conversation.late_conversation_id

        if require_conversation and not conversation_id:
            logger.error(
                f"{context.log_prefix} No gateway conversation id for conversation {context.conversation_id}"
            )
            return None

        return DeliveryTarget(
            gateway=self.gateway_factory(workspace.late_api_key_encrypted),
            workspace=workspace,
            account_id=account_id,
            conversation_id=conversation_id,
            platform=platform,
        )

    async def send(
        self,
        target: DeliveryTarget,
        context: ExecutionContext,
        text: str,
        attachments: Optional[List[Dict[str, Any]]] = None,
        reply_markup: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Send one DM and record the outcome; never raises GatewayError"""
        try:
            message_id = await target.gateway.send_message(
                target.account_id,
                target.conversation_id,
                text,
                attachments=attachments,
                reply_markup=reply_markup
            )
        except GatewayError as e:
            logger.error(f"{context.log_prefix} Failed to send message: {e}")
            await self.record_failed(context, text, str(e))
            return False

        await self.record_sent(context, text, attachments, message_id)
        return True

    async def record_sent(
        self,
        context: ExecutionContext,
        text: str,
        attachments: Optional[List[Dict[str, Any]]] = None,
        platform_message_id: Optional[str] = None
    ) -> None:
        await self.repository.create_message(MessageCreate(
            conversation_id=context.conversation_id,
            direction=MessageDirection.OUTBOUND,
            text=text,
            attachments=attachments,
            status=MessageStatus.SENT,
            platform_message_id=platform_message_id,
            sent_by_flow_id=context.flow_id,
        ))
        await self.analytics.track(
            EventType.MESSAGE_SENT,
            workspace_id=context.workspace_id,
            flow_id=context.flow_id,
            contact_id=context.contact_id,
        )

    async def record_failed(self, context: ExecutionContext, text: str, error: str) -> None:
        await self.repository.create_message(MessageCreate(
            conversation_id=context.conversation_id,
            direction=MessageDirection.OUTBOUND,
            text=text,
            status=MessageStatus.FAILED,
            sent_by_flow_id=context.flow_id,
        ))
        await self.analytics.track(
            EventType.MESSAGE_FAILED,
            workspace_id=context.workspace_id,
            flow_id=context.flow_id,
            contact_id=context.contact_id,
            metadata={"error": error},
        )
