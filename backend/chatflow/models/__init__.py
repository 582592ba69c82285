from .flow import (
    # Node kinds
    NodeKind,
    FlowStatus,

    # Node data
    NodeData,
    KeywordMatch,
    TriggerNodeData,
    QuickReply,
    MessageButton,
    MessageContent,
    SendMessageNodeData,
    ConditionRule,
    ConditionNodeData,
    DelayNodeData,
    TagNodeData,
    SetFieldNodeData,
    HttpRequestNodeData,
    GoToFlowNodeData,
    HumanTakeoverNodeData,
    SplitPath,
    ABSplitNodeData,
    SmartDelayNodeData,
    CommentReplyNodeData,
    PrivateReplyNodeData,
    AiResponseNodeData,
    NODE_DATA_MODELS,

    # Graph
    FlowNode,
    FlowEdge,
    FlowGraph,
    Flow,
)
from .session import (
    SessionStatus, FlowFrame, ExecutionSession,
    JobType, JobStatus, ResumeReason, ResumeFlowPayload,
    ScheduledJob, ScheduledJobCreate, AnalyticsEvent
)
from .workspace import (
    Platform, Workspace, Channel, Contact, Tag, CustomFieldDefinition,
    Conversation, MessageDirection, MessageStatus, Message, MessageCreate,
    TriggerType, Trigger, Sender, IncomingMessage
)

__all__ = [
    # Flow - Kinds
    "NodeKind", "FlowStatus",

    # Flow - Node data
    "NodeData", "KeywordMatch", "TriggerNodeData", "QuickReply", "MessageButton",
    "MessageContent", "SendMessageNodeData", "ConditionRule", "ConditionNodeData",
    "DelayNodeData", "TagNodeData", "SetFieldNodeData", "HttpRequestNodeData",
    "GoToFlowNodeData", "HumanTakeoverNodeData", "SplitPath", "ABSplitNodeData",
    "SmartDelayNodeData", "CommentReplyNodeData", "PrivateReplyNodeData",
    "AiResponseNodeData", "NODE_DATA_MODELS",

    # Flow - Graph
    "FlowNode", "FlowEdge", "FlowGraph", "Flow",

    # Session
    "SessionStatus", "FlowFrame", "ExecutionSession",
    "JobType", "JobStatus", "ResumeReason", "ResumeFlowPayload",
    "ScheduledJob", "ScheduledJobCreate", "AnalyticsEvent",

    # Workspace
    "Platform", "Workspace", "Channel", "Contact", "Tag", "CustomFieldDefinition",
    "Conversation", "MessageDirection", "MessageStatus", "Message", "MessageCreate",
    "TriggerType", "Trigger", "Sender", "IncomingMessage",
]
