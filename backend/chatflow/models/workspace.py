"""
Workspace-side records the engine reads and writes: channels, contacts,
tags, custom fields, conversations, messages and triggers
"""
from enum import Enum
from datetime import datetime
from typing import Optional, Any, Dict, List
from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Messaging platforms a channel can belong to"""
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    TELEGRAM = "telegram"
    BLUESKY = "bluesky"
    REDDIT = "reddit"


class Workspace(BaseModel):
    """Workspace model - holds the provider credentials"""
    id: str
    name: Optional[str] = None
    late_api_key_encrypted: Optional[str] = None
    openai_api_key: Optional[str] = None

    class Config:
        from_attributes = True


class Channel(BaseModel):
    """Connected social account"""
    id: str
    workspace_id: str
    platform: Optional[str] = None
    late_account_id: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class Contact(BaseModel):
    """Contact model"""
    id: str
    workspace_id: Optional[str] = None
    display_name: Optional[str] = None
    is_subscribed: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Tag(BaseModel):
    """Workspace tag, unique by (workspace_id, name)"""
    id: str
    workspace_id: str
    name: str


class CustomFieldDefinition(BaseModel):
    """Custom field definition, unique by (workspace_id, slug)"""
    id: str
    workspace_id: str
    slug: str
    name: Optional[str] = None
    field_type: str = "text"


class Conversation(BaseModel):
    """Conversation model"""
    id: str
    workspace_id: Optional[str] = None
    contact_id: Optional[str] = None
    channel_id: Optional[str] = None
    late_conversation_id: Optional[str] = None
    is_automation_paused: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class Message(BaseModel):
    """Message model"""
    id: Optional[str] = None
    conversation_id: str
    direction: MessageDirection
    text: Optional[str] = None
    attachments: Optional[List[Dict[str, Any]]] = None
    status: MessageStatus = MessageStatus.SENT
    platform_message_id: Optional[str] = None
    sent_by_flow_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MessageCreate(BaseModel):
    """Message creation schema"""
    conversation_id: str
    direction: MessageDirection = MessageDirection.OUTBOUND
    text: Optional[str] = None
    attachments: Optional[List[Dict[str, Any]]] = None
    status: MessageStatus = MessageStatus.SENT
    platform_message_id: Optional[str] = None
    sent_by_flow_id: Optional[str] = None


class TriggerType(str, Enum):
    """Ways an inbound event can start a flow"""
    KEYWORD = "keyword"
    POSTBACK = "postback"
    QUICK_REPLY = "quick_reply"
    WELCOME = "welcome"
    DEFAULT = "default"
    COMMENT_KEYWORD = "comment_keyword"


class Trigger(BaseModel):
    """Trigger row linking an inbound condition to a flow"""

    model_config = {"extra": "allow"}

    id: str
    flow_id: str
    channel_id: Optional[str] = None
    type: str
    config: Dict[str, Any] = {}
    priority: int = 0
    is_active: bool = True


class Sender(BaseModel):
    id: str
    name: Optional[str] = None
    username: Optional[str] = None


class IncomingMessage(BaseModel):
    """Inbound event payload handed to the engine"""

    model_config = {"populate_by_name": True}

    text: Optional[str] = None
    postback_payload: Optional[str] = Field(None, alias="postbackPayload")
    quick_reply_payload: Optional[str] = Field(None, alias="quickReplyPayload")
    callback_data: Optional[str] = Field(None, alias="callbackData")
    sender: Optional[Sender] = None
