"""
Trigger Matcher - picks the trigger (and so the flow) an inbound message starts.

Priority: postback > quick_reply > keyword > welcome > default.
Within a type, triggers are tried in repository order (priority desc).
"""
import logging
from typing import Any, Dict, List, Optional

from ..models import IncomingMessage, Trigger, TriggerType

logger = logging.getLogger(__name__)

DEFAULT_MATCH_TYPE = "contains"


def _keyword_matches(text: str, keyword: str, match_type: str) -> bool:
    if match_type == "exact":
        return text == keyword
    if match_type == "startsWith":
        return text.startswith(keyword)
    return keyword in text


def matches_keywords(text: str, config: Dict[str, Any]) -> bool:
    """
    Check a keyword trigger config against message text.

    Keywords are plain strings or {"value", "matchType"} objects; a
    keyword's own matchType wins over the config-level one. Any
    excludeKeywords term contained in the text vetoes the match.
    """
    keywords: List[Any] = config.get("keywords") or []
    if not keywords:
        return False

    normalized = text.lower().strip()
    default_type = config.get("matchType") or DEFAULT_MATCH_TYPE

    matched = False
    for kw in keywords:
        if isinstance(kw, dict):
            value = str(kw.get("value") or "")
            match_type = kw.get("matchType") or default_type
        else:
            value = str(kw)
            match_type = default_type

        if value and _keyword_matches(normalized, value.lower(), match_type):
            matched = True
            break

    if not matched:
        return False

    excluded = config.get("excludeKeywords") or []
    return not any(term and term.lower() in normalized for term in excluded)


def _find_payload_trigger(triggers: List[Trigger], trigger_type: TriggerType, payload: str) -> Optional[Trigger]:
    for trigger in triggers:
        if trigger.type == trigger_type.value and trigger.config.get("payload") == payload:
            return trigger
    return None


def _find_first(triggers: List[Trigger], trigger_type: TriggerType) -> Optional[Trigger]:
    for trigger in triggers:
        if trigger.type == trigger_type.value:
            return trigger
    return None


async def match_trigger(
    repository,
    channel_id: str,
    conversation_id: str,
    incoming: IncomingMessage
) -> Optional[Trigger]:
    """
    Find the trigger an inbound message fires.

    Args:
        repository: Persistence service
        channel_id: Channel the message arrived on
        conversation_id: Conversation it belongs to (for welcome detection)
        incoming: The inbound payload

    Returns:
        Matching Trigger or None
    """
    triggers = await repository.list_active_triggers(channel_id)
    if not triggers:
        return None

    postback = incoming.postback_payload or incoming.callback_data
    if postback:
        match = _find_payload_trigger(triggers, TriggerType.POSTBACK, postback)
        if match:
            return match

    if incoming.quick_reply_payload:
        match = _find_payload_trigger(triggers, TriggerType.QUICK_REPLY, incoming.quick_reply_payload)
        if match:
            return match

    if incoming.text:
        for trigger in triggers:
            if trigger.type == TriggerType.KEYWORD.value and matches_keywords(incoming.text, trigger.config):
                logger.debug(f"Keyword trigger {trigger.id} matched on channel {channel_id}")
                return trigger

    welcome = _find_first(triggers, TriggerType.WELCOME)
    if welcome and conversation_id:
        inbound_count = await repository.count_inbound_messages(conversation_id)
        if inbound_count == 1:
            return welcome

    return _find_first(triggers, TriggerType.DEFAULT)
