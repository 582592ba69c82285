"""
Flow graph models - nodes, edges and typed node data
"""
from enum import Enum
from typing import Optional, Any, List, Dict, Union
from datetime import datetime
from pydantic import BaseModel, Field


class NodeKind(str, Enum):
    """Closed set of node kinds understood by the engine (editor wire names)"""

    TRIGGER = "trigger"

    # Messaging
    SEND_MESSAGE = "sendMessage"
    COMMENT_REPLY = "commentReply"
    PRIVATE_REPLY = "privateReply"
    AI_RESPONSE = "aiResponse"

    # Branching
    CONDITION = "condition"
    AB_SPLIT = "abSplit"

    # Contact data
    ADD_TAG = "addTag"
    REMOVE_TAG = "removeTag"
    SET_CUSTOM_FIELD = "setCustomField"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"

    # Integrations
    HTTP_REQUEST = "httpRequest"

    # Control
    DELAY = "delay"
    SMART_DELAY = "smartDelay"
    GO_TO_FLOW = "goToFlow"
    HUMAN_TAKEOVER = "humanTakeover"


class FlowStatus(str, Enum):
    """Flow lifecycle"""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


# ==================== Node data ====================

class NodeData(BaseModel):
    """Base for node data - accepts editor camelCase keys"""

    model_config = {"extra": "allow", "populate_by_name": True}


class KeywordMatch(NodeData):
    value: str
    match_type: str = Field("contains", alias="matchType")


class TriggerNodeData(NodeData):
    trigger_type: Optional[str] = Field(None, alias="triggerType")
    keywords: List[KeywordMatch] = []
    payload: Optional[str] = None


class QuickReply(NodeData):
    title: str
    payload: str = ""


class MessageButton(NodeData):
    title: str
    type: str = "postback"  # postback | url
    payload: Optional[str] = None
    url: Optional[str] = None


class MessageContent(NodeData):
    """Generic rich message, before platform adaptation"""
    text: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    quick_replies: List[QuickReply] = Field(default_factory=list, alias="quickReplies")
    buttons: List[MessageButton] = []


class SendMessageNodeData(NodeData):
    messages: List[MessageContent] = []


class ConditionRule(NodeData):
    field: str
    operator: str = "equals"
    value: Optional[str] = None


class ConditionNodeData(NodeData):
    conditions: List[ConditionRule] = []
    logic: str = "and"  # and | or


class DelayNodeData(NodeData):
    duration: float = 0
    unit: str = "seconds"  # seconds | minutes | hours | days


class TagNodeData(NodeData):
    tag_name: str = Field("", alias="tagName")


class SetFieldNodeData(NodeData):
    field_slug: str = Field("", alias="fieldSlug")
    value: str = ""


class HttpRequestNodeData(NodeData):
    method: str = "GET"
    url: str = ""
    headers: Dict[str, str] = {}
    body: Optional[Union[str, Dict[str, Any], List[Any]]] = None
    response_variable: Optional[str] = Field(None, alias="responseVariable")


class GoToFlowNodeData(NodeData):
    flow_id: str = Field("", alias="flowId")
    return_after: bool = Field(False, alias="returnAfter")


class HumanTakeoverNodeData(NodeData):
    message: Optional[str] = None


class SplitPath(NodeData):
    name: str
    weight: float = 0


class ABSplitNodeData(NodeData):
    paths: List[SplitPath] = []


class SmartDelayNodeData(NodeData):
    timeout: Optional[float] = None
    timeout_unit: str = Field("minutes", alias="timeoutUnit")


class CommentReplyNodeData(NodeData):
    text: str = ""


class PrivateReplyNodeData(NodeData):
    text: str = ""
    image_url: Optional[str] = Field(None, alias="imageUrl")


class AiResponseNodeData(NodeData):
    system_prompt: Optional[str] = Field(None, alias="systemPrompt")
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = Field(None, alias="maxTokens")
    context_messages: Optional[int] = Field(None, alias="contextMessages")


NODE_DATA_MODELS: Dict[NodeKind, type] = {
    NodeKind.TRIGGER: TriggerNodeData,
    NodeKind.SEND_MESSAGE: SendMessageNodeData,
    NodeKind.COMMENT_REPLY: CommentReplyNodeData,
    NodeKind.PRIVATE_REPLY: PrivateReplyNodeData,
    NodeKind.AI_RESPONSE: AiResponseNodeData,
    NodeKind.CONDITION: ConditionNodeData,
    NodeKind.AB_SPLIT: ABSplitNodeData,
    NodeKind.ADD_TAG: TagNodeData,
    NodeKind.REMOVE_TAG: TagNodeData,
    NodeKind.SET_CUSTOM_FIELD: SetFieldNodeData,
    NodeKind.SUBSCRIBE: NodeData,
    NodeKind.UNSUBSCRIBE: NodeData,
    NodeKind.HTTP_REQUEST: HttpRequestNodeData,
    NodeKind.DELAY: DelayNodeData,
    NodeKind.SMART_DELAY: SmartDelayNodeData,
    NodeKind.GO_TO_FLOW: GoToFlowNodeData,
    NodeKind.HUMAN_TAKEOVER: HumanTakeoverNodeData,
}


# ==================== Graph ====================

class FlowNode(BaseModel):
    """Flow node definition - FLEXIBLE to accept editor data"""

    model_config = {"extra": "allow"}

    id: str
    type: str
    data: Dict[str, Any] = {}
    position: Optional[Dict[str, Any]] = None

    @property
    def kind(self) -> Optional[NodeKind]:
        """Resolved node kind, None for types this engine does not know"""
        try:
            return NodeKind(self.type)
        except ValueError:
            return None

    def parsed_data(self) -> NodeData:
        """Validate raw data against the model registered for this kind"""
        model = NODE_DATA_MODELS.get(self.kind, NodeData)
        return model.model_validate(self.data or {})


class FlowEdge(BaseModel):
    """Flow edge definition"""

    model_config = {"extra": "allow", "populate_by_name": True}

    id: str
    source: str
    target: str
    source_handle: Optional[str] = Field(None, alias="sourceHandle")
    label: Optional[str] = None


class FlowGraph(BaseModel):
    """Directed graph of one flow version"""

    nodes: List[FlowNode] = []
    edges: List[FlowEdge] = []

    def get_node(self, node_id: Optional[str]) -> Optional[FlowNode]:
        """Get a node by ID"""
        if not node_id:
            return None
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_trigger_node(self) -> Optional[FlowNode]:
        """The single entry point of the graph"""
        for node in self.nodes:
            if node.type == NodeKind.TRIGGER.value:
                return node
        return None

    def find_edge(self, source_id: str, handle: Optional[str] = None) -> Optional[FlowEdge]:
        """
        Pick the outgoing edge to follow from a node.

        With a handle, only an edge labeled with that handle matches.
        Without one, unlabeled edges win over labeled ones and the first
        in stored order is taken.
        """
        outgoing = [e for e in self.edges if e.source == source_id]

        if handle is not None:
            for edge in outgoing:
                if edge.source_handle == handle:
                    return edge
            return None

        plain = [e for e in outgoing if not e.source_handle]
        candidates = plain or outgoing
        return candidates[0] if candidates else None

    def next_node(self, source_id: str, handle: Optional[str] = None) -> Optional[FlowNode]:
        """Target node of the selected edge, None when the edge or its target is missing"""
        edge = self.find_edge(source_id, handle)
        if not edge:
            return None
        return self.get_node(edge.target)


class Flow(BaseModel):
    """Stored flow record"""

    model_config = {"extra": "allow"}

    id: str
    workspace_id: Optional[str] = None
    name: Optional[str] = None
    status: FlowStatus = FlowStatus.DRAFT
    version: int = 1
    nodes: List[FlowNode] = []
    edges: List[FlowEdge] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_published(self) -> bool:
        return self.status == FlowStatus.PUBLISHED

    @property
    def graph(self) -> FlowGraph:
        return FlowGraph(nodes=self.nodes, edges=self.edges)
