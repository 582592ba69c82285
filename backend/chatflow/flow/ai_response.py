"""
AI Response Executor - replies with text generated from the conversation history
"""
import logging
from typing import Callable, Dict, List, Optional

from ..core.config import settings
from ..core.exceptions import GenerationError
from ..models import AiResponseNodeData, ExecutionSession, FlowNode, Message, MessageDirection
from ..services.llm import TextGenerator, create_text_generator
from .context import ExecutionContext
from .delivery import MessageDelivery
from .result import NodeResult, continue_result

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_SYSTEM_PROMPT = "You are a helpful customer support agent."
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 500
DEFAULT_CONTEXT_MESSAGES = 10

FAILED_PLACEHOLDER = "[AI response failed]"
RESPONSE_VARIABLE = "ai_response"


def build_history(messages: List[Message]) -> List[Dict[str, str]]:
    """
    Turn stored messages (newest first) into a chat history (oldest first).

    Inbound messages become "user" turns, outbound ones "assistant" turns.
    Messages without text are skipped.
    """
    history = []
    for message in reversed(messages):
        if not message.text:
            continue
        role = "user" if message.direction == MessageDirection.INBOUND else "assistant"
        history.append({"role": role, "content": message.text})
    return history


class AIResponseExecutor:
    """Executor for aiResponse nodes"""

    def __init__(
        self,
        repository,
        delivery: MessageDelivery,
        generator_factory: Callable[[str], TextGenerator] = create_text_generator,
        default_api_key: Optional[str] = None
    ):
        self.repository = repository
        self.delivery = delivery
        self.generator_factory = generator_factory
        self.default_api_key = default_api_key if default_api_key is not None else settings.OPENAI_API_KEY

    async def execute(
        self,
        node: FlowNode,
        data: AiResponseNodeData,
        context: ExecutionContext,
        session: ExecutionSession
    ) -> NodeResult:
        """Generate and send a reply; always continues"""
        target = await self.delivery.resolve_target(context)
        if not target:
            return continue_result()

        updates = target.context_updates()

        api_key = target.workspace.openai_api_key or self.default_api_key
        if not api_key:
            logger.error(f"{context.log_prefix} No OpenAI API key configured for workspace {context.workspace_id}")
            return continue_result(**updates)

        limit = data.context_messages or DEFAULT_CONTEXT_MESSAGES
        recent = await self.repository.list_recent_messages(context.conversation_id, limit=limit)
        history = build_history(recent)

        try:
            generator = self.generator_factory(api_key)
            text = await generator.generate(
                model=data.model or DEFAULT_MODEL,
                system_prompt=data.system_prompt or DEFAULT_SYSTEM_PROMPT,
                messages=history,
                temperature=data.temperature if data.temperature is not None else DEFAULT_TEMPERATURE,
                max_tokens=data.max_tokens if data.max_tokens is not None else DEFAULT_MAX_TOKENS,
            )
        except GenerationError as e:
            logger.error(f"{context.log_prefix} AI generation failed on node {node.id}: {e}")
            await self.delivery.record_failed(context, FAILED_PLACEHOLDER, str(e))
            return continue_result(error=str(e), **updates)

        await self.delivery.send(target, context, text)

        logger.info(f"{context.log_prefix} AI response sent ({len(text)} chars) from node {node.id}")
        return continue_result(variables={RESPONSE_VARIABLE: text}, **updates)
