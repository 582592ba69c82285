"""
Database service - persistence for the flow engine (Supabase)
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Optional, Any, Dict, List

from pydantic import BaseModel

from ..core.supabase_client import supabase
from ..models import (
    Flow, ExecutionSession, SessionStatus, ScheduledJob, ScheduledJobCreate,
    JobStatus, AnalyticsEvent, Workspace, Channel, Contact, Tag,
    CustomFieldDefinition, Conversation, Message, MessageCreate,
    MessageDirection, Trigger, FlowStatus
)

logger = logging.getLogger(__name__)

# Table names
FLOWS_TABLE = "flows"
FLOW_SESSIONS_TABLE = "flow_sessions"
WORKSPACES_TABLE = "workspaces"
CHANNELS_TABLE = "channels"
CONTACTS_TABLE = "contacts"
TAGS_TABLE = "tags"
CONTACT_TAGS_TABLE = "contact_tags"
FIELD_DEFINITIONS_TABLE = "custom_field_definitions"
CONTACT_FIELDS_TABLE = "contact_custom_fields"
CONVERSATIONS_TABLE = "conversations"
MESSAGES_TABLE = "messages"
ANALYTICS_TABLE = "analytics_events"
SCHEDULED_JOBS_TABLE = "scheduled_jobs"
TRIGGERS_TABLE = "triggers"


def _serialize(data: Dict[str, Any]) -> Dict[str, Any]:
    """Make an update dict JSON-safe (datetimes, enums, nested models)"""
    result = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, Enum):
            result[key] = value.value
        elif isinstance(value, BaseModel):
            result[key] = value.model_dump(mode="json", by_alias=True)
        elif isinstance(value, list):
            result[key] = [
                v.model_dump(mode="json", by_alias=True) if isinstance(v, BaseModel) else v
                for v in value
            ]
        else:
            result[key] = value
    return result


class DatabaseService:
    """
    Repository used by the traversal engine, node executors, trigger matcher
    and job runner. Every method maps to one or two table operations.
    """

    # ==================== FLOWS ====================

    async def get_flow(self, flow_id: str) -> Optional[Flow]:
        """Get flow by ID, whatever its status"""
        response = supabase.table(FLOWS_TABLE).select("*").eq("id", flow_id).limit(1).execute()
        if response.data:
            return Flow(**response.data[0])
        return None

    async def get_published_flow(self, flow_id: str) -> Optional[Flow]:
        """Get flow by ID only if it is published"""
        response = supabase.table(FLOWS_TABLE).select("*").eq(
            "id", flow_id
        ).eq("status", FlowStatus.PUBLISHED.value).limit(1).execute()
        if response.data:
            return Flow(**response.data[0])
        return None

    # ==================== WORKSPACE / CHANNELS ====================

    async def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        response = supabase.table(WORKSPACES_TABLE).select("*").eq("id", workspace_id).limit(1).execute()
        if response.data:
            return Workspace(**response.data[0])
        return None

    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        response = supabase.table(CHANNELS_TABLE).select("*").eq("id", channel_id).limit(1).execute()
        if response.data:
            return Channel(**response.data[0])
        return None

    # ==================== CONVERSATIONS ====================

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        response = supabase.table(CONVERSATIONS_TABLE).select("*").eq("id", conversation_id).limit(1).execute()
        if response.data:
            return Conversation(**response.data[0])
        return None

    async def update_conversation(self, conversation_id: str, data: Dict[str, Any]) -> Optional[Conversation]:
        response = supabase.table(CONVERSATIONS_TABLE).update(_serialize(data)).eq("id", conversation_id).execute()
        if response.data:
            return Conversation(**response.data[0])
        return None

    # ==================== CONTACTS ====================

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        response = supabase.table(CONTACTS_TABLE).select("*").eq("id", contact_id).limit(1).execute()
        if response.data:
            return Contact(**response.data[0])
        return None

    async def update_contact(self, contact_id: str, data: Dict[str, Any]) -> Optional[Contact]:
        response = supabase.table(CONTACTS_TABLE).update(_serialize(data)).eq("id", contact_id).execute()
        if response.data:
            return Contact(**response.data[0])
        return None

    async def get_contact_tag_names(self, contact_id: str) -> List[str]:
        """Names of every tag the contact holds"""
        response = supabase.table(CONTACT_TAGS_TABLE).select(
            "tag_id, tags(name)"
        ).eq("contact_id", contact_id).execute()
        names = []
        for row in response.data or []:
            tag = row.get("tags") or {}
            if tag.get("name"):
                names.append(tag["name"])
        return names

    async def get_contact_field_values(self, contact_id: str) -> Dict[str, str]:
        """Custom field values keyed by field slug"""
        response = supabase.table(CONTACT_FIELDS_TABLE).select(
            "field_id, value, custom_field_definitions(slug)"
        ).eq("contact_id", contact_id).execute()
        values = {}
        for row in response.data or []:
            definition = row.get("custom_field_definitions") or {}
            if definition.get("slug"):
                values[definition["slug"]] = row.get("value")
        return values

    # ==================== TAGS ====================

    async def upsert_tag(self, workspace_id: str, name: str) -> Optional[Tag]:
        """Create-or-fetch a tag by (workspace_id, name)"""
        response = supabase.table(TAGS_TABLE).upsert(
            {"workspace_id": workspace_id, "name": name},
            on_conflict="workspace_id,name"
        ).execute()
        if response.data:
            return Tag(**response.data[0])
        return None

    async def add_contact_tag(self, contact_id: str, tag_id: str) -> None:
        supabase.table(CONTACT_TAGS_TABLE).upsert(
            {"contact_id": contact_id, "tag_id": tag_id},
            on_conflict="contact_id,tag_id"
        ).execute()

    async def remove_contact_tag(self, contact_id: str, tag_id: str) -> None:
        supabase.table(CONTACT_TAGS_TABLE).delete().eq(
            "contact_id", contact_id
        ).eq("tag_id", tag_id).execute()

    # ==================== CUSTOM FIELDS ====================

    async def get_field_definition(self, workspace_id: str, slug: str) -> Optional[CustomFieldDefinition]:
        response = supabase.table(FIELD_DEFINITIONS_TABLE).select("*").eq(
            "workspace_id", workspace_id
        ).eq("slug", slug).limit(1).execute()
        if response.data:
            return CustomFieldDefinition(**response.data[0])
        return None

    async def upsert_contact_field(self, contact_id: str, field_id: str, value: str) -> None:
        supabase.table(CONTACT_FIELDS_TABLE).upsert(
            {"contact_id": contact_id, "field_id": field_id, "value": value},
            on_conflict="contact_id,field_id"
        ).execute()

    # ==================== MESSAGES ====================

    async def create_message(self, message: MessageCreate) -> Optional[Message]:
        response = supabase.table(MESSAGES_TABLE).insert(
            message.model_dump(mode="json", exclude_none=True)
        ).execute()
        if response.data:
            return Message(**response.data[0])
        return None

    async def list_recent_messages(self, conversation_id: str, limit: int = 10) -> List[Message]:
        """Most recent messages first"""
        response = supabase.table(MESSAGES_TABLE).select("*").eq(
            "conversation_id", conversation_id
        ).order("created_at", desc=True).limit(limit).execute()
        return [Message(**m) for m in response.data] if response.data else []

    async def count_inbound_messages(self, conversation_id: str) -> int:
        response = supabase.table(MESSAGES_TABLE).select("id", count="exact").eq(
            "conversation_id", conversation_id
        ).eq("direction", MessageDirection.INBOUND.value).execute()
        return response.count or 0

    # ==================== FLOW SESSIONS ====================

    async def get_session(self, session_id: str) -> Optional[ExecutionSession]:
        response = supabase.table(FLOW_SESSIONS_TABLE).select("*").eq("id", session_id).limit(1).execute()
        if response.data:
            return ExecutionSession(**response.data[0])
        return None

    async def find_waiting_session(self, contact_id: str, channel_id: str) -> Optional[ExecutionSession]:
        """Active session parked on smartDelay for this contact and channel"""
        response = supabase.table(FLOW_SESSIONS_TABLE).select("*").eq(
            "contact_id", contact_id
        ).eq("channel_id", channel_id).eq(
            "status", SessionStatus.ACTIVE.value
        ).eq("waiting_for_input", True).order("updated_at", desc=True).limit(1).execute()
        if response.data:
            return ExecutionSession(**response.data[0])
        return None

    async def create_session(
        self,
        contact_id: str,
        flow_id: str,
        channel_id: str,
        variables: Optional[Dict[str, str]] = None
    ) -> Optional[ExecutionSession]:
        response = supabase.table(FLOW_SESSIONS_TABLE).insert({
            "contact_id": contact_id,
            "flow_id": flow_id,
            "channel_id": channel_id,
            "status": SessionStatus.ACTIVE.value,
            "variables": variables or {},
            "flow_stack": [],
            "waiting_for_input": False,
        }).execute()
        if response.data:
            return ExecutionSession(**response.data[0])
        return None

    async def update_session(self, session_id: str, data: Dict[str, Any]) -> Optional[ExecutionSession]:
        response = supabase.table(FLOW_SESSIONS_TABLE).update(_serialize(data)).eq("id", session_id).execute()
        if response.data:
            return ExecutionSession(**response.data[0])
        return None

    async def cancel_waiting_sessions(
        self,
        contact_id: str,
        channel_id: str,
        exclude_session_id: Optional[str] = None
    ) -> int:
        """Cancel other active+waiting sessions so at most one remains"""
        query = supabase.table(FLOW_SESSIONS_TABLE).update({
            "status": SessionStatus.CANCELLED.value,
            "waiting_for_input": False,
        }).eq("contact_id", contact_id).eq("channel_id", channel_id).eq(
            "status", SessionStatus.ACTIVE.value
        ).eq("waiting_for_input", True)
        if exclude_session_id:
            query = query.neq("id", exclude_session_id)
        response = query.execute()
        return len(response.data) if response.data else 0

    # ==================== ANALYTICS ====================

    async def insert_analytics_event(self, event: AnalyticsEvent) -> None:
        supabase.table(ANALYTICS_TABLE).insert(
            event.model_dump(mode="json", exclude_none=True)
        ).execute()

    # ==================== SCHEDULED JOBS ====================

    async def create_job(self, job: ScheduledJobCreate) -> Optional[ScheduledJob]:
        response = supabase.table(SCHEDULED_JOBS_TABLE).insert(
            job.model_dump(mode="json")
        ).execute()
        if response.data:
            return ScheduledJob(**response.data[0])
        return None

    async def list_due_jobs(self, now: datetime, limit: int = 20) -> List[ScheduledJob]:
        response = supabase.table(SCHEDULED_JOBS_TABLE).select("*").eq(
            "status", JobStatus.PENDING.value
        ).lte("run_at", now.isoformat()).order("run_at").limit(limit).execute()
        return [ScheduledJob(**j) for j in response.data] if response.data else []

    async def claim_job(self, job_id: str, attempts: int) -> bool:
        """Mark a pending job as processing; False if another runner got it first"""
        response = supabase.table(SCHEDULED_JOBS_TABLE).update({
            "status": JobStatus.PROCESSING.value,
            "attempts": attempts,
        }).eq("id", job_id).eq("status", JobStatus.PENDING.value).execute()
        return bool(response.data)

    async def update_job(self, job_id: str, data: Dict[str, Any]) -> None:
        supabase.table(SCHEDULED_JOBS_TABLE).update(_serialize(data)).eq("id", job_id).execute()

    # ==================== TRIGGERS ====================

    async def list_active_triggers(self, channel_id: str) -> List[Trigger]:
        """Active triggers of published flows for a channel (or global), highest priority first"""
        response = supabase.table(TRIGGERS_TABLE).select(
            "*, flows!inner(status)"
        ).or_(f"channel_id.eq.{channel_id},channel_id.is.null").eq(
            "is_active", True
        ).eq("flows.status", FlowStatus.PUBLISHED.value).order("priority", desc=True).execute()
        return [Trigger(**t) for t in response.data] if response.data else []


# Singleton instance
db = DatabaseService()
