"""
Pytest configuration and shared fixtures for chatflow tests.

The engine and node executors talk to persistence through the same method
names as DatabaseService; InMemoryRepository implements them over plain
dicts so flows can be run end to end without Supabase.
"""
import itertools
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatflow.flow.ai_response import AIResponseExecutor
from chatflow.flow.context import create_context
from chatflow.flow.delivery import MessageDelivery
from chatflow.flow.engine import FlowEngine
from chatflow.flow.executor import NodeExecutor
from chatflow.models import (
    AnalyticsEvent, Channel, Contact, Conversation, CustomFieldDefinition,
    ExecutionSession, Flow, FlowStatus, JobStatus, Message, MessageCreate,
    MessageDirection, ScheduledJob, ScheduledJobCreate, SessionStatus, Tag,
    Trigger, Workspace
)
from chatflow.services.analytics import AnalyticsService
from chatflow.services.gateway import MessagingGateway
from chatflow.services.llm import TextGenerator


class InMemoryRepository:
    """Dict-backed stand-in for DatabaseService"""

    def __init__(self):
        self._ids = itertools.count(1)
        self.flows: Dict[str, Flow] = {}
        self.workspaces: Dict[str, Workspace] = {}
        self.channels: Dict[str, Channel] = {}
        self.contacts: Dict[str, Contact] = {}
        self.conversations: Dict[str, Conversation] = {}
        self.tags: Dict[str, Tag] = {}
        self.contact_tags: List[Tuple[str, str]] = []
        self.field_definitions: Dict[str, CustomFieldDefinition] = {}
        self.contact_fields: Dict[Tuple[str, str], str] = {}
        self.messages: List[Message] = []
        self.sessions: Dict[str, ExecutionSession] = {}
        self.events: List[AnalyticsEvent] = []
        self.jobs: Dict[str, ScheduledJob] = {}
        self.triggers: List[Trigger] = []

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    # ---------- seeding helpers (sync) ----------

    def add_flow(
        self,
        flow_id: str,
        nodes: List[Dict[str, Any]],
        edges: List[Tuple[str, ...]],
        status: FlowStatus = FlowStatus.PUBLISHED
    ) -> Flow:
        """Register a flow; edges are (source, target) or (source, target, handle)"""
        edge_dicts = []
        for index, edge in enumerate(edges):
            source, target = edge[0], edge[1]
            handle = edge[2] if len(edge) > 2 else None
            edge_dicts.append({
                "id": f"{flow_id}-e{index}",
                "source": source,
                "target": target,
                "sourceHandle": handle,
            })
        flow = Flow.model_validate({
            "id": flow_id,
            "workspace_id": "ws-1",
            "name": flow_id,
            "status": status,
            "nodes": nodes,
            "edges": edge_dicts,
        })
        self.flows[flow_id] = flow
        return flow

    def add_session(self, **fields: Any) -> ExecutionSession:
        data = {
            "id": self._next_id("session"),
            "contact_id": "contact-1",
            "flow_id": "flow-1",
            "channel_id": "ch-1",
        }
        data.update(fields)
        session = ExecutionSession.model_validate(data)
        self.sessions[session.id] = session
        return session

    def add_field_definition(self, slug: str, workspace_id: str = "ws-1") -> CustomFieldDefinition:
        definition = CustomFieldDefinition(id=self._next_id("field"), workspace_id=workspace_id, slug=slug)
        self.field_definitions[definition.id] = definition
        return definition

    def add_trigger(self, flow_id: str, type: str, config: Optional[Dict[str, Any]] = None, **fields: Any) -> Trigger:
        trigger = Trigger(
            id=fields.pop("id", self._next_id("trigger")),
            flow_id=flow_id,
            type=type,
            config=config or {},
            **fields
        )
        self.triggers.append(trigger)
        return trigger

    def events_of(self, event_type: str) -> List[AnalyticsEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def outbound_texts(self) -> List[Optional[str]]:
        return [m.text for m in self.messages if m.direction == MessageDirection.OUTBOUND]

    # ---------- flows ----------

    async def get_flow(self, flow_id: str) -> Optional[Flow]:
        return self.flows.get(flow_id)

    async def get_published_flow(self, flow_id: str) -> Optional[Flow]:
        flow = self.flows.get(flow_id)
        return flow if flow and flow.is_published else None

    # ---------- workspace / channels ----------

    async def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        return self.workspaces.get(workspace_id)

    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        return self.channels.get(channel_id)

    # ---------- conversations ----------

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self.conversations.get(conversation_id)

    async def update_conversation(self, conversation_id: str, data: Dict[str, Any]) -> Optional[Conversation]:
        conversation = self.conversations.get(conversation_id)
        if not conversation:
            return None
        conversation = conversation.model_copy(update=data)
        self.conversations[conversation_id] = conversation
        return conversation

    # ---------- contacts ----------

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        return self.contacts.get(contact_id)

    async def update_contact(self, contact_id: str, data: Dict[str, Any]) -> Optional[Contact]:
        contact = self.contacts.get(contact_id)
        if not contact:
            return None
        contact = contact.model_copy(update=data)
        self.contacts[contact_id] = contact
        return contact

    async def get_contact_tag_names(self, contact_id: str) -> List[str]:
        return [self.tags[tag_id].name for cid, tag_id in self.contact_tags if cid == contact_id]

    async def get_contact_field_values(self, contact_id: str) -> Dict[str, str]:
        return {
            self.field_definitions[field_id].slug: value
            for (cid, field_id), value in self.contact_fields.items()
            if cid == contact_id
        }

    # ---------- tags / fields ----------

    async def upsert_tag(self, workspace_id: str, name: str) -> Optional[Tag]:
        for tag in self.tags.values():
            if tag.workspace_id == workspace_id and tag.name == name:
                return tag
        tag = Tag(id=self._next_id("tag"), workspace_id=workspace_id, name=name)
        self.tags[tag.id] = tag
        return tag

    async def add_contact_tag(self, contact_id: str, tag_id: str) -> None:
        if (contact_id, tag_id) not in self.contact_tags:
            self.contact_tags.append((contact_id, tag_id))

    async def remove_contact_tag(self, contact_id: str, tag_id: str) -> None:
        if (contact_id, tag_id) in self.contact_tags:
            self.contact_tags.remove((contact_id, tag_id))

    async def get_field_definition(self, workspace_id: str, slug: str) -> Optional[CustomFieldDefinition]:
        for definition in self.field_definitions.values():
            if definition.workspace_id == workspace_id and definition.slug == slug:
                return definition
        return None

    async def upsert_contact_field(self, contact_id: str, field_id: str, value: str) -> None:
        self.contact_fields[(contact_id, field_id)] = value

    # ---------- messages ----------

    async def create_message(self, message: MessageCreate) -> Optional[Message]:
        stored = Message(
            id=self._next_id("message"),
            created_at=datetime.now(timezone.utc),
            **message.model_dump()
        )
        self.messages.append(stored)
        return stored

    async def list_recent_messages(self, conversation_id: str, limit: int = 10) -> List[Message]:
        in_conversation = [m for m in self.messages if m.conversation_id == conversation_id]
        return list(reversed(in_conversation))[:limit]

    async def count_inbound_messages(self, conversation_id: str) -> int:
        return sum(
            1 for m in self.messages
            if m.conversation_id == conversation_id and m.direction == MessageDirection.INBOUND
        )

    # ---------- sessions ----------

    async def get_session(self, session_id: str) -> Optional[ExecutionSession]:
        return self.sessions.get(session_id)

    async def find_waiting_session(self, contact_id: str, channel_id: str) -> Optional[ExecutionSession]:
        for session in reversed(list(self.sessions.values())):
            if (
                session.contact_id == contact_id
                and session.channel_id == channel_id
                and session.is_waiting
            ):
                return session
        return None

    async def create_session(
        self,
        contact_id: str,
        flow_id: str,
        channel_id: str,
        variables: Optional[Dict[str, str]] = None
    ) -> Optional[ExecutionSession]:
        return self.add_session(
            contact_id=contact_id,
            flow_id=flow_id,
            channel_id=channel_id,
            variables=variables or {},
        )

    async def update_session(self, session_id: str, data: Dict[str, Any]) -> Optional[ExecutionSession]:
        session = self.sessions.get(session_id)
        if not session:
            return None
        session = ExecutionSession.model_validate({**session.model_dump(), **data})
        self.sessions[session_id] = session
        return session

    async def cancel_waiting_sessions(
        self,
        contact_id: str,
        channel_id: str,
        exclude_session_id: Optional[str] = None
    ) -> int:
        cancelled = 0
        for session in list(self.sessions.values()):
            if session.id == exclude_session_id:
                continue
            if session.contact_id == contact_id and session.channel_id == channel_id and session.is_waiting:
                await self.update_session(session.id, {
                    "status": SessionStatus.CANCELLED,
                    "waiting_for_input": False,
                })
                cancelled += 1
        return cancelled

    # ---------- analytics ----------

    async def insert_analytics_event(self, event: AnalyticsEvent) -> None:
        self.events.append(event)

    # ---------- scheduled jobs ----------

    async def create_job(self, job: ScheduledJobCreate) -> Optional[ScheduledJob]:
        stored = ScheduledJob(id=self._next_id("job"), **job.model_dump())
        self.jobs[stored.id] = stored
        return stored

    async def list_due_jobs(self, now: datetime, limit: int = 20) -> List[ScheduledJob]:
        due = [j for j in self.jobs.values() if j.status == JobStatus.PENDING and j.run_at <= now]
        return sorted(due, key=lambda j: j.run_at)[:limit]

    async def claim_job(self, job_id: str, attempts: int) -> bool:
        job = self.jobs.get(job_id)
        if not job or job.status != JobStatus.PENDING:
            return False
        self.jobs[job_id] = job.model_copy(update={"status": JobStatus.PROCESSING, "attempts": attempts})
        return True

    async def update_job(self, job_id: str, data: Dict[str, Any]) -> None:
        job = self.jobs.get(job_id)
        if job:
            self.jobs[job_id] = ScheduledJob.model_validate({**job.model_dump(), **data})

    # ---------- triggers ----------

    async def list_active_triggers(self, channel_id: str) -> List[Trigger]:
        matching = [
            t for t in self.triggers
            if t.is_active
            and t.channel_id in (channel_id, None)
            and t.flow_id in self.flows
            and self.flows[t.flow_id].is_published
        ]
        return sorted(matching, key=lambda t: t.priority, reverse=True)


# ==================== Repository ====================

@pytest.fixture
def repository() -> InMemoryRepository:
    """Repository seeded with one workspace, channel, contact and conversation."""
    repo = InMemoryRepository()
    repo.workspaces["ws-1"] = Workspace(id="ws-1", name="Acme", late_api_key_encrypted="late-key")
    repo.channels["ch-1"] = Channel(id="ch-1", workspace_id="ws-1", platform="facebook", late_account_id="acc-1")
    repo.contacts["contact-1"] = Contact(id="contact-1", workspace_id="ws-1", display_name="Ana", is_subscribed=True)
    repo.conversations["conv-1"] = Conversation(
        id="conv-1",
        workspace_id="ws-1",
        contact_id="contact-1",
        channel_id="ch-1",
        late_conversation_id="late-conv-1",
    )
    return repo


# ==================== Collaborators ====================

@pytest.fixture
def gateway() -> MagicMock:
    """Messaging gateway mock; every call succeeds."""
    mock = MagicMock(spec=MessagingGateway)
    mock.send_message = AsyncMock(return_value="platform-msg-1")
    mock.reply_to_post = AsyncMock(return_value=None)
    mock.send_private_reply = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def generator() -> MagicMock:
    """Text generator mock."""
    mock = MagicMock(spec=TextGenerator)
    mock.generate = AsyncMock(return_value="Happy to help!")
    return mock


@pytest.fixture
def analytics(repository) -> AnalyticsService:
    return AnalyticsService(repository)


@pytest.fixture
def delivery(repository, analytics, gateway) -> MessageDelivery:
    return MessageDelivery(repository, analytics, gateway_factory=lambda api_key: gateway)


@pytest.fixture
def ai_executor(repository, delivery, generator) -> AIResponseExecutor:
    return AIResponseExecutor(
        repository,
        delivery,
        generator_factory=lambda api_key: generator,
        default_api_key="sk-test"
    )


@pytest.fixture
def executor(repository, delivery, ai_executor) -> NodeExecutor:
    return NodeExecutor(
        repository,
        delivery=delivery,
        ai_executor=ai_executor,
        http_timeout=5.0,
        message_pacing=0
    )


@pytest.fixture
def engine(repository, executor, analytics) -> FlowEngine:
    return FlowEngine(repository, executor, analytics, max_steps=100)


# ==================== Context ====================

@pytest.fixture
def context():
    """Execution context for contact-1 on ch-1 running flow-1."""
    return create_context(
        flow_id="flow-1",
        channel_id="ch-1",
        contact_id="contact-1",
        conversation_id="conv-1",
        workspace_id="ws-1",
        trigger_id="trigger-1",
    )


@pytest.fixture
def session(repository) -> ExecutionSession:
    """Active session of flow-1 for contact-1."""
    return repository.add_session()
