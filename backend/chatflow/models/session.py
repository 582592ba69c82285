"""
Execution session, scheduled job and analytics event models
"""
from enum import Enum
from datetime import datetime
from typing import Optional, Any, Dict, List
from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    """Status of a flow session"""
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class FlowFrame(BaseModel):
    """Caller frame pushed by goToFlow with returnAfter"""

    model_config = {"populate_by_name": True}

    flow_id: str = Field(alias="flowId")
    resume_node_id: str = Field(alias="resumeNodeId")


class ExecutionSession(BaseModel):
    """Durable position of one contact inside one flow"""

    model_config = {"extra": "allow"}

    id: str
    contact_id: str
    flow_id: str
    channel_id: str
    status: SessionStatus = SessionStatus.ACTIVE
    current_node_id: Optional[str] = None
    variables: Dict[str, str] = {}
    flow_stack: List[FlowFrame] = []
    waiting_until: Optional[datetime] = None
    waiting_for_input: bool = False
    human_takeover_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def is_waiting(self) -> bool:
        return self.is_active and self.waiting_for_input


class JobType(str, Enum):
    """Scheduled job types"""
    RESUME_FLOW = "resume_flow"


class JobStatus(str, Enum):
    """Scheduled job lifecycle"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ResumeReason(str, Enum):
    """Why a resume_flow job was scheduled"""
    DELAY = "delay"
    SMART_DELAY_TIMEOUT = "smart_delay_timeout"


class ResumeFlowPayload(BaseModel):
    """Everything the resume path needs, stored as the job payload"""

    model_config = {"populate_by_name": True, "extra": "allow"}

    session_id: str = Field(alias="sessionId")
    node_id: str = Field(alias="nodeId")
    flow_id: str = Field(alias="flowId")
    channel_id: str = Field(alias="channelId")
    contact_id: str = Field(alias="contactId")
    conversation_id: str = Field(alias="conversationId")
    workspace_id: str = Field(alias="workspaceId")
    external_account_id: Optional[str] = Field(None, alias="externalAccountId")
    external_conversation_id: Optional[str] = Field(None, alias="externalConversationId")
    reason: ResumeReason = ResumeReason.DELAY

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ScheduledJob(BaseModel):
    """Durable timer record"""

    model_config = {"extra": "allow"}

    id: str
    type: str = JobType.RESUME_FLOW.value
    payload: Dict[str, Any] = {}
    run_at: datetime
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None


class ScheduledJobCreate(BaseModel):
    """Scheduled job creation schema"""
    type: str = JobType.RESUME_FLOW.value
    payload: Dict[str, Any]
    run_at: datetime
    status: JobStatus = JobStatus.PENDING


class AnalyticsEvent(BaseModel):
    """Append-only analytics fact"""
    workspace_id: str
    flow_id: Optional[str] = None
    contact_id: Optional[str] = None
    event_type: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
