"""
Flow Engine - starts, resumes and traverses flow sessions.

A traversal walks the graph from one node to the next, committing the
session position before each node runs, until a node pauses, the graph
runs out of edges (completion) or the step ceiling is hit.
"""
import asyncio
import logging
import weakref
from typing import Optional, Tuple

from ..core.config import settings
from ..models import (
    ExecutionSession, FlowFrame, FlowGraph, FlowNode, ResumeReason, SessionStatus
)
from ..services.analytics import AnalyticsService, EventType
from .context import ExecutionContext
from .executor import NodeExecutor

logger = logging.getLogger(__name__)


class FlowEngine:
    """
    Traversal engine.

    Public entry points take the per (contact, channel) lock, so two events
    for the same contact never interleave inside one process. Internal
    helpers prefixed with an underscore assume the lock is held.
    """

    def __init__(
        self,
        repository,
        executor: NodeExecutor,
        analytics: AnalyticsService,
        max_steps: Optional[int] = None
    ):
        self.repository = repository
        self.executor = executor
        self.analytics = analytics
        self.max_steps = max_steps if max_steps is not None else settings.MAX_STEPS_PER_PASS

        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, contact_id: str, channel_id: str) -> asyncio.Lock:
        key = (contact_id, channel_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ==================== Entry points ====================

    async def start_or_resume(self, context: ExecutionContext) -> Optional[ExecutionSession]:
        """Resume the contact's waiting session on this channel, or start the flow"""
        async with self._lock_for(context.contact_id, context.channel_id):
            waiting = await self.repository.find_waiting_session(context.contact_id, context.channel_id)
            if waiting:
                logger.info(f"{context.log_prefix} Resuming waiting session {waiting.id}")
                return await self._resume(waiting, context)
            return await self._start(context)

    async def start(self, context: ExecutionContext) -> Optional[ExecutionSession]:
        """
        Start a fresh session of context.flow_id.

        If the contact already has a session waiting for input on this
        channel, no second one is created and the event resumes that one.
        """
        async with self._lock_for(context.contact_id, context.channel_id):
            waiting = await self.repository.find_waiting_session(context.contact_id, context.channel_id)
            if waiting:
                logger.warning(
                    f"{context.log_prefix} Session {waiting.id} is already waiting for input, resuming it instead"
                )
                return await self._resume(waiting, context)
            return await self._start(context)

    async def resume(self, session: ExecutionSession, context: ExecutionContext) -> Optional[ExecutionSession]:
        """
        Resume a suspended session from the node it is parked on.

        `session` is the caller's snapshot. If another event resumed the
        session while this one waited for the lock, the stored record has
        moved on and this call is a no-op.
        """
        async with self._lock_for(session.contact_id, session.channel_id):
            current = await self.repository.get_session(session.id) or session

            if current.current_node_id != session.current_node_id or (
                session.waiting_for_input and not current.waiting_for_input
            ):
                logger.info(
                    f"{context.log_prefix} Session {session.id} already moved on from node "
                    f"{session.current_node_id} (now at {current.current_node_id}), skipping resume"
                )
                return current

            return await self._resume(current, context)

    async def resume_session(
        self,
        session_id: str,
        context: ExecutionContext,
        node_id: Optional[str] = None,
        reason: Optional[ResumeReason] = None
    ) -> Optional[ExecutionSession]:
        """
        Resume by session id (scheduled jobs).

        With node_id the session must still be parked on that node. A
        smart-delay timeout additionally requires the session to still be
        waiting for input; an inbound message that got there first wins.
        """
        session = await self.repository.get_session(session_id)
        if not session:
            logger.warning(f"Session {session_id} not found, nothing to resume")
            return None

        async with self._lock_for(session.contact_id, session.channel_id):
            session = await self.repository.get_session(session_id) or session

            if not session.is_active:
                logger.info(f"Session {session_id} is {session.status.value}, skipping stale resume")
                return session

            if node_id and session.current_node_id != node_id:
                logger.info(
                    f"Session {session_id} moved on from node {node_id} "
                    f"(now at {session.current_node_id}), skipping stale resume"
                )
                return session

            if reason == ResumeReason.SMART_DELAY_TIMEOUT and not session.waiting_for_input:
                logger.info(f"Session {session_id} already resumed by input, skipping timeout")
                return session

            return await self._resume(session, context)

    # ==================== Internals ====================

    async def _start(self, context: ExecutionContext) -> Optional[ExecutionSession]:
        flow = await self.repository.get_published_flow(context.flow_id)
        if not flow:
            logger.info(f"{context.log_prefix} Flow not found or not published, not starting")
            return None

        graph = flow.graph
        trigger = graph.get_trigger_node()
        if not trigger:
            logger.warning(f"{context.log_prefix} Flow has no trigger node")
            return None

        first = graph.next_node(trigger.id)
        if not first:
            logger.warning(f"{context.log_prefix} Trigger node {trigger.id} has no outgoing edge")
            return None

        context = await self._resolve_channel_context(context)

        session = await self.repository.create_session(
            contact_id=context.contact_id,
            flow_id=context.flow_id,
            channel_id=context.channel_id,
            variables=dict(context.variables),
        )
        if not session:
            logger.error(f"{context.log_prefix} Could not create session")
            return None

        await self.analytics.track(
            EventType.FLOW_STARTED,
            workspace_id=context.workspace_id,
            flow_id=context.flow_id,
            contact_id=context.contact_id,
            metadata={"triggerId": context.trigger_id},
        )
        logger.info(f"{context.log_prefix} Started session {session.id}")

        return await self.traverse(session, first, graph, context)

    async def _resume(self, session: ExecutionSession, context: ExecutionContext) -> Optional[ExecutionSession]:
        if not session.is_active:
            logger.info(f"{context.log_prefix} Session {session.id} is {session.status.value}, not resuming")
            return session

        flow = await self.repository.get_flow(session.flow_id)
        if not flow:
            logger.warning(f"{context.log_prefix} Flow {session.flow_id} of session {session.id} not found")
            return session

        context = context.with_updates(flow_id=session.flow_id, variables=dict(session.variables))
        session = await self._commit(session, waiting_for_input=False, waiting_until=None)
        context = await self._resolve_channel_context(context)

        graph = flow.graph
        parked = graph.get_node(session.current_node_id)
        next_node = graph.next_node(parked.id) if parked else None

        if not next_node:
            return await self._finish(session, graph, context)

        return await self.traverse(session, next_node, graph, context)

    async def traverse(
        self,
        session: ExecutionSession,
        node: FlowNode,
        graph: FlowGraph,
        context: ExecutionContext
    ) -> ExecutionSession:
        """Run nodes until a pause, completion or the step ceiling"""
        steps = 0

        while node is not None:
            if steps >= self.max_steps:
                logger.warning(
                    f"{context.log_prefix} Step ceiling of {self.max_steps} reached before node {node.id}, "
                    f"leaving session {session.id} active"
                )
                return await self._commit(session, variables=dict(context.variables))
            steps += 1

            session = await self._commit(session, current_node_id=node.id, variables=dict(context.variables))

            await self.analytics.track(
                EventType.NODE_EXECUTED,
                workspace_id=context.workspace_id,
                flow_id=context.flow_id,
                contact_id=context.contact_id,
                metadata={"nodeId": node.id, "nodeKind": node.type},
            )

            result = await self.executor.execute(node, context, session)
            context = context.with_variables(result.variables).with_updates(**result.context_updates)

            if result.error:
                logger.debug(f"{context.log_prefix} Node {node.id} reported: {result.error}")

            if result.is_pause():
                return await self._commit(session, variables=dict(context.variables))

            if result.is_call():
                target = await self.repository.get_published_flow(result.target_flow_id)
                if not target:
                    logger.warning(f"{context.log_prefix} Target flow {result.target_flow_id} not available, pausing")
                    return await self._commit(session, variables=dict(context.variables))

                if not result.return_after:
                    await self._start(context.with_updates(flow_id=target.id, trigger_id=None))
                    return await self._commit(session, variables=dict(context.variables))

                target_graph = target.graph
                trigger = target_graph.get_trigger_node()
                entry = target_graph.next_node(trigger.id) if trigger else None
                if entry:
                    frame = FlowFrame(flow_id=context.flow_id, resume_node_id=node.id)
                    session = await self._commit(
                        session,
                        flow_id=target.id,
                        flow_stack=list(session.flow_stack) + [frame],
                    )
                    logger.info(f"{context.log_prefix} Calling flow {target.id}, returning to node {node.id}")
                    context = context.with_updates(flow_id=target.id)
                    graph = target_graph
                    node = entry
                    continue

                logger.warning(f"{context.log_prefix} Target flow {target.id} has no entry node, continuing")

            handle = result.handle if result.is_branch() else None
            next_node = graph.next_node(node.id, handle)

            if next_node is None:
                session, graph, context, next_node = await self._unwind(session, graph, context)
                if next_node is None:
                    return await self.complete_session(session, context)

            node = next_node

        return session

    async def _unwind(
        self,
        session: ExecutionSession,
        graph: FlowGraph,
        context: ExecutionContext
    ) -> Tuple[ExecutionSession, FlowGraph, ExecutionContext, Optional[FlowNode]]:
        """Pop caller frames until one has a node after its call site"""
        while session.flow_stack:
            frame = session.flow_stack[-1]
            session = await self._commit(
                session,
                flow_id=frame.flow_id,
                flow_stack=list(session.flow_stack[:-1]),
            )
            context = context.with_updates(flow_id=frame.flow_id)

            parent = await self.repository.get_flow(frame.flow_id)
            if not parent:
                logger.warning(f"{context.log_prefix} Caller flow {frame.flow_id} not found")
                continue

            graph = parent.graph
            next_node = graph.next_node(frame.resume_node_id)
            if next_node:
                logger.info(f"{context.log_prefix} Returned to flow {frame.flow_id} after node {frame.resume_node_id}")
                return session, graph, context, next_node

        return session, graph, context, None

    async def _finish(
        self,
        session: ExecutionSession,
        graph: FlowGraph,
        context: ExecutionContext
    ) -> ExecutionSession:
        session, graph, context, next_node = await self._unwind(session, graph, context)
        if next_node is None:
            return await self.complete_session(session, context)
        return await self.traverse(session, next_node, graph, context)

    async def complete_session(self, session: ExecutionSession, context: ExecutionContext) -> ExecutionSession:
        """Mark the session completed and emit flow_completed"""
        session = await self._commit(
            session,
            status=SessionStatus.COMPLETED,
            waiting_for_input=False,
            variables=dict(context.variables),
        )
        await self.analytics.track(
            EventType.FLOW_COMPLETED,
            workspace_id=context.workspace_id,
            flow_id=context.flow_id,
            contact_id=context.contact_id,
        )
        logger.info(f"{context.log_prefix} Session {session.id} completed")
        return session

    async def _commit(self, session: ExecutionSession, **fields) -> ExecutionSession:
        updated = await self.repository.update_session(session.id, fields)
        return updated or session.model_copy(update=fields)

    async def _resolve_channel_context(self, context: ExecutionContext) -> ExecutionContext:
        """Cache platform, gateway account and gateway conversation ids"""
        updates = {}

        if not context.platform or not context.external_account_id:
            channel = await self.repository.get_channel(context.channel_id)
            if channel:
                if not context.platform and channel.platform:
                    updates["platform"] = channel.platform
                if not context.external_account_id and channel.late_account_id:
                    updates["external_account_id"] = channel.late_account_id

        if not context.external_conversation_id and context.conversation_id:
            conversation = await self.repository.get_conversation(context.conversation_id)
            if conversation and conversation.late_conversation_id:
                updates["external_conversation_id"] = conversation.late_conversation_id

        return context.with_updates(**updates)


def create_engine(repository=None, analytics: Optional[AnalyticsService] = None) -> FlowEngine:
    """
    Factory function wiring the engine with its collaborators.

    Args:
        repository: Persistence service; defaults to the Supabase one
        analytics: Analytics service; defaults to one over the same repository

    Returns:
        Configured FlowEngine
    """
    from ..services.database import db
    from .ai_response import AIResponseExecutor
    from .delivery import MessageDelivery

    repository = repository or db
    analytics = analytics or AnalyticsService(repository)
    delivery = MessageDelivery(repository, analytics)
    executor = NodeExecutor(
        repository,
        delivery=delivery,
        ai_executor=AIResponseExecutor(repository, delivery),
    )
    return FlowEngine(repository, executor, analytics)


_engine: Optional[FlowEngine] = None


def get_engine() -> FlowEngine:
    """Process-wide engine over the Supabase repository"""
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine
