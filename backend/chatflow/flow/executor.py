"""
Node Executor - one handler per node kind.

Each handler receives the node, its validated data, the current
ExecutionContext and the session, performs its side effect through the
repository or the gateway and returns a NodeResult. Handlers resolve their
own external-call errors; nothing here raises into the traversal engine.
"""
import asyncio
import json
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx
from pydantic import ValidationError

from ..core.config import settings
from ..core.exceptions import GatewayError
from ..models import (
    NodeKind, FlowNode, NodeData, ExecutionSession, SessionStatus,
    SendMessageNodeData, ConditionNodeData, ABSplitNodeData, TagNodeData,
    SetFieldNodeData, HttpRequestNodeData, DelayNodeData, SmartDelayNodeData,
    GoToFlowNodeData, HumanTakeoverNodeData, CommentReplyNodeData,
    PrivateReplyNodeData, AiResponseNodeData, ResumeFlowPayload, ResumeReason,
    ScheduledJobCreate, JobType
)
from .ai_response import AIResponseExecutor
from .context import ExecutionContext
from .delivery import MessageDelivery
from .evaluator import ConditionEvaluator
from .platform_adapter import adapt_message
from .result import (
    NodeResult, continue_result, branch_result, pause_result, call_flow_result
)
from .template import interpolate

logger = logging.getLogger(__name__)

Handler = Callable[[FlowNode, Any, ExecutionContext, ExecutionSession], Awaitable[NodeResult]]

UNIT_MILLISECONDS = {
    "seconds": 1000,
    "minutes": 60 * 1000,
    "hours": 60 * 60 * 1000,
    "days": 24 * 60 * 60 * 1000,
}


def duration_to_timedelta(duration: float, unit: Optional[str]) -> timedelta:
    """Convert a node duration to a timedelta; unknown units count as seconds"""
    multiplier = UNIT_MILLISECONDS.get((unit or "").lower(), 1000)
    return timedelta(milliseconds=duration * multiplier)


class NodeExecutor:
    """
    Dispatches a node to its handler.

    The registry is closed over NodeKind: constructing an executor fails
    if any kind lacks a handler.
    """

    def __init__(
        self,
        repository,
        delivery: MessageDelivery,
        ai_executor: AIResponseExecutor,
        evaluator: Optional[ConditionEvaluator] = None,
        http_timeout: Optional[float] = None,
        message_pacing: Optional[float] = None,
        random_source: Callable[[], float] = random.random
    ):
        self.repository = repository
        self.delivery = delivery
        self.ai_executor = ai_executor
        self.evaluator = evaluator or ConditionEvaluator()
        self.http_timeout = http_timeout if http_timeout is not None else settings.HTTP_NODE_TIMEOUT_SECONDS
        self.message_pacing = message_pacing if message_pacing is not None else settings.MESSAGE_PACING_SECONDS
        self.random_source = random_source

        self._handlers: Dict[NodeKind, Handler] = self._register_handlers()

        missing = set(NodeKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler registered for node kinds: {sorted(k.value for k in missing)}")

    def _register_handlers(self) -> Dict[NodeKind, Handler]:
        """Register all node kind handlers"""
        return {
            NodeKind.TRIGGER: self._handle_trigger,

            # Messaging
            NodeKind.SEND_MESSAGE: self._handle_send_message,
            NodeKind.COMMENT_REPLY: self._handle_comment_reply,
            NodeKind.PRIVATE_REPLY: self._handle_private_reply,
            NodeKind.AI_RESPONSE: self._handle_ai_response,

            # Branching
            NodeKind.CONDITION: self._handle_condition,
            NodeKind.AB_SPLIT: self._handle_ab_split,

            # Contact data
            NodeKind.ADD_TAG: self._handle_add_tag,
            NodeKind.REMOVE_TAG: self._handle_remove_tag,
            NodeKind.SET_CUSTOM_FIELD: self._handle_set_custom_field,
            NodeKind.SUBSCRIBE: self._handle_subscribe,
            NodeKind.UNSUBSCRIBE: self._handle_unsubscribe,

            # Integrations
            NodeKind.HTTP_REQUEST: self._handle_http_request,

            # Control
            NodeKind.DELAY: self._handle_delay,
            NodeKind.SMART_DELAY: self._handle_smart_delay,
            NodeKind.GO_TO_FLOW: self._handle_go_to_flow,
            NodeKind.HUMAN_TAKEOVER: self._handle_human_takeover,
        }

    async def execute(
        self,
        node: FlowNode,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """Run the handler for a node"""
        kind = node.kind
        if kind is None:
            logger.warning(f"{context.log_prefix} Unknown node type '{node.type}' on node {node.id}, skipping")
            return continue_result(error=f"Unknown node type: {node.type}")

        try:
            data = node.parsed_data()
        except ValidationError as e:
            logger.error(f"{context.log_prefix} Invalid data on {kind.value} node {node.id}: {e}")
            return continue_result(error="Invalid node data")

        return await self._handlers[kind](node, data, context, session)

    # ==================== Messaging ====================

    async def _handle_trigger(self, node: FlowNode, data: NodeData, context, session) -> NodeResult:
        """Trigger nodes are entry points; reaching one mid-flow just passes through"""
        return continue_result()

    async def _handle_send_message(
        self,
        node: FlowNode,
        data: SendMessageNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """Send each message item in order; a failed item does not stop the rest"""
        target = await self.delivery.resolve_target(context)
        if not target:
            return continue_result()

        total = len(data.messages)
        for index, content in enumerate(data.messages):
            adapted = adapt_message(content, target.platform)
            text = interpolate(adapted.text, context.variables)

            await self.delivery.send(
                target,
                context,
                text,
                attachments=adapted.attachments(),
                reply_markup=adapted.reply_markup
            )

            if total > 1 and index < total - 1 and self.message_pacing > 0:
                await asyncio.sleep(self.message_pacing)

        return continue_result(**target.context_updates())

    def _resolve_comment_ids(self, context: ExecutionContext) -> Tuple[Optional[str], Optional[str]]:
        sender = context.incoming_message.sender
        comment_id = context.variables.get("comment_id") or (sender.id if sender else None)
        post_id = context.variables.get("post_id")
        return comment_id, post_id

    async def _handle_comment_reply(
        self,
        node: FlowNode,
        data: CommentReplyNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """Public reply under the triggering comment; no message row is written"""
        target = await self.delivery.resolve_target(context, require_conversation=False)
        if not target:
            return continue_result()

        comment_id, post_id = self._resolve_comment_ids(context)
        if not comment_id or not post_id:
            logger.warning(f"{context.log_prefix} commentReply node {node.id} missing comment_id/post_id")
            return continue_result()

        text = interpolate(data.text, context.variables)
        try:
            await target.gateway.reply_to_post(post_id, target.account_id, text, comment_id)
        except GatewayError as e:
            logger.error(f"{context.log_prefix} Failed to post comment reply: {e}")
            return continue_result(error=str(e))

        return continue_result()

    async def _handle_private_reply(
        self,
        node: FlowNode,
        data: PrivateReplyNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """DM the commenter and record it like any outbound message"""
        target = await self.delivery.resolve_target(context, require_conversation=False)
        if not target:
            return continue_result()

        comment_id, post_id = self._resolve_comment_ids(context)
        if not comment_id or not post_id:
            logger.warning(f"{context.log_prefix} privateReply node {node.id} missing comment_id/post_id")
            return continue_result()

        text = interpolate(data.text, context.variables)
        attachments = [{"type": "image", "url": data.image_url}] if data.image_url else None

        try:
            await target.gateway.send_private_reply(post_id, comment_id, target.account_id, text)
        except GatewayError as e:
            logger.error(f"{context.log_prefix} Failed to send private reply: {e}")
            await self.delivery.record_failed(context, text, str(e))
            return continue_result(error=str(e))

        await self.delivery.record_sent(context, text, attachments)
        return continue_result()

    async def _handle_ai_response(
        self,
        node: FlowNode,
        data: AiResponseNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        return await self.ai_executor.execute(node, data, context, session)

    # ==================== Branching ====================

    async def _handle_condition(
        self,
        node: FlowNode,
        data: ConditionNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """Evaluate every rule against the contact and branch on "true"/"false" """
        contact = await self.repository.get_contact(context.contact_id)
        if not contact:
            logger.warning(f"{context.log_prefix} Contact not found, condition {node.id} is false")
            return branch_result("false")

        tag_names = set(await self.repository.get_contact_tag_names(context.contact_id))
        field_values = await self.repository.get_contact_field_values(context.contact_id)

        results = []
        for rule in data.conditions:
            field = rule.field or ""
            if field == "platform":
                value = context.platform
            elif field == "is_subscribed":
                value = str(contact.is_subscribed).lower()
            elif field.startswith("tag:"):
                value = str(field[len("tag:"):] in tag_names).lower()
            elif field.startswith("variable:"):
                value = context.variables.get(field[len("variable:"):])
            else:
                value = field_values.get(field)

            results.append(self.evaluator.evaluate(value, rule.operator, rule.value))

        passed = self.evaluator.combine(results, data.logic)
        logger.debug(f"{context.log_prefix} Condition {node.id} ({data.logic}) -> {passed}")
        return branch_result("true" if passed else "false")

    async def _handle_ab_split(
        self,
        node: FlowNode,
        data: ABSplitNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """Weighted random path: draw in [0, total) and walk cumulative weights"""
        if not data.paths:
            logger.warning(f"{context.log_prefix} abSplit node {node.id} has no paths")
            return continue_result()

        total = sum(max(path.weight, 0) for path in data.paths)
        if total <= 0:
            return branch_result(data.paths[0].name)

        draw = self.random_source() * total
        cumulative = 0.0
        for path in data.paths:
            cumulative += max(path.weight, 0)
            if draw < cumulative:
                return branch_result(path.name)

        return branch_result(data.paths[0].name)

    # ==================== Contact data ====================

    async def _handle_add_tag(self, node: FlowNode, data: TagNodeData, context, session) -> NodeResult:
        tag = await self._get_tag(node, data, context)
        if tag:
            await self.repository.add_contact_tag(context.contact_id, tag.id)
        return continue_result()

    async def _handle_remove_tag(self, node: FlowNode, data: TagNodeData, context, session) -> NodeResult:
        tag = await self._get_tag(node, data, context)
        if tag:
            await self.repository.remove_contact_tag(context.contact_id, tag.id)
        return continue_result()

    async def _get_tag(self, node: FlowNode, data: TagNodeData, context: ExecutionContext):
        if not data.tag_name:
            logger.warning(f"{context.log_prefix} Tag node {node.id} has no tag name")
            return None
        return await self.repository.upsert_tag(context.workspace_id, data.tag_name)

    async def _handle_set_custom_field(
        self,
        node: FlowNode,
        data: SetFieldNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        definition = await self.repository.get_field_definition(context.workspace_id, data.field_slug)
        if not definition:
            logger.warning(f"{context.log_prefix} Custom field '{data.field_slug}' is not defined")
            return continue_result()

        value = interpolate(data.value, context.variables)
        await self.repository.upsert_contact_field(context.contact_id, definition.id, value)
        return continue_result()

    async def _handle_subscribe(self, node: FlowNode, data: NodeData, context, session) -> NodeResult:
        await self.repository.update_contact(context.contact_id, {"is_subscribed": True})
        return continue_result()

    async def _handle_unsubscribe(self, node: FlowNode, data: NodeData, context, session) -> NodeResult:
        await self.repository.update_contact(context.contact_id, {"is_subscribed": False})
        return continue_result()

    # ==================== Integrations ====================

    async def _handle_http_request(
        self,
        node: FlowNode,
        data: HttpRequestNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """Best-effort external call; the response can be stored in a variable"""
        method = (data.method or "GET").upper()
        url = interpolate(data.url, context.variables)
        headers = {"Content-Type": "application/json", **data.headers}

        body = None
        if method != "GET" and data.body is not None:
            raw_body = data.body if isinstance(data.body, str) else json.dumps(data.body)
            body = interpolate(raw_body, context.variables)

        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    content=body,
                    timeout=self.http_timeout
                )
            logger.info(f"{context.log_prefix} HTTP {method} {url} - Status: {response.status_code}")
        except Exception as e:
            logger.error(f"{context.log_prefix} HTTP request node {node.id} failed: {e}")
            return continue_result(error=str(e))

        if not data.response_variable:
            return continue_result()

        raw = response.text
        try:
            parsed = json.loads(raw)
            value = parsed if isinstance(parsed, str) else json.dumps(parsed)
        except ValueError:
            value = raw

        return continue_result(variables={data.response_variable: value})

    # ==================== Control ====================

    async def _schedule_resume(
        self,
        node: FlowNode,
        context: ExecutionContext,
        session: ExecutionSession,
        run_at: datetime,
        reason: ResumeReason
    ) -> None:
        payload = ResumeFlowPayload(
            session_id=session.id,
            node_id=node.id,
            flow_id=context.flow_id,
            channel_id=context.channel_id,
            contact_id=context.contact_id,
            conversation_id=context.conversation_id,
            workspace_id=context.workspace_id,
            external_account_id=context.external_account_id,
            external_conversation_id=context.external_conversation_id,
            reason=reason,
        )
        await self.repository.create_job(ScheduledJobCreate(
            type=JobType.RESUME_FLOW.value,
            payload=payload.to_payload(),
            run_at=run_at,
        ))

    async def _handle_delay(
        self,
        node: FlowNode,
        data: DelayNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """Schedule a resume job and park the session until it fires"""
        run_at = datetime.now(timezone.utc) + duration_to_timedelta(data.duration, data.unit)

        await self._schedule_resume(node, context, session, run_at, ResumeReason.DELAY)
        await self.repository.update_session(session.id, {
            "waiting_until": run_at,
            "current_node_id": node.id,
        })

        logger.info(f"{context.log_prefix} Delay node {node.id}: resuming at {run_at.isoformat()}")
        return pause_result()

    async def _handle_smart_delay(
        self,
        node: FlowNode,
        data: SmartDelayNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """Wait for the next inbound message, optionally with a timeout job"""
        cancelled = await self.repository.cancel_waiting_sessions(
            context.contact_id, context.channel_id, exclude_session_id=session.id
        )
        if cancelled:
            logger.warning(f"{context.log_prefix} Cancelled {cancelled} other waiting session(s)")

        update: Dict[str, Any] = {"waiting_for_input": True, "current_node_id": node.id}

        if data.timeout:
            run_at = datetime.now(timezone.utc) + duration_to_timedelta(data.timeout, data.timeout_unit)
            await self._schedule_resume(node, context, session, run_at, ResumeReason.SMART_DELAY_TIMEOUT)
            update["waiting_until"] = run_at

        await self.repository.update_session(session.id, update)
        return pause_result()

    async def _handle_go_to_flow(
        self,
        node: FlowNode,
        data: GoToFlowNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        if not data.flow_id:
            logger.warning(f"{context.log_prefix} goToFlow node {node.id} has no target flow")
            return pause_result()
        return call_flow_result(data.flow_id, return_after=data.return_after)

    async def _handle_human_takeover(
        self,
        node: FlowNode,
        data: HumanTakeoverNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """Hand the conversation to a human; terminal for this session"""
        if data.message:
            target = await self.delivery.resolve_target(context)
            if target:
                await self.delivery.send(target, context, interpolate(data.message, context.variables))

        await self.repository.update_conversation(context.conversation_id, {"is_automation_paused": True})
        await self.repository.update_session(session.id, {
            "status": SessionStatus.COMPLETED,
            "human_takeover_at": datetime.now(timezone.utc),
            "waiting_for_input": False,
        })

        logger.info(f"{context.log_prefix} Human takeover on conversation {context.conversation_id}")
        return pause_result()
