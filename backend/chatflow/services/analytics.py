"""
Analytics Service - append-only flow execution events.

Events are written at fixed points of a traversal: flow_started,
node_executed, message_sent, message_failed and flow_completed.
Tracking is best-effort and never interrupts a flow.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..models import AnalyticsEvent

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of analytics events."""
    FLOW_STARTED = "flow_started"
    NODE_EXECUTED = "node_executed"
    MESSAGE_SENT = "message_sent"
    MESSAGE_FAILED = "message_failed"
    FLOW_COMPLETED = "flow_completed"


class AnalyticsService:
    """Writes AnalyticsEvent rows through the repository."""

    def __init__(self, repository=None):
        """
        Initialize the analytics service.

        Args:
            repository: Object exposing insert_analytics_event(); defaults
                to the Supabase database service.
        """
        self._repository = repository

    @property
    def repository(self):
        """Lazy load the database service."""
        if self._repository is None:
            from .database import db
            self._repository = db
        return self._repository

    async def track(
        self,
        event_type: EventType | str,
        workspace_id: str,
        flow_id: Optional[str] = None,
        contact_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Track an analytics event.

        Returns:
            True if event was tracked successfully
        """
        if isinstance(event_type, EventType):
            event_type = event_type.value

        event = AnalyticsEvent(
            workspace_id=workspace_id,
            flow_id=flow_id,
            contact_id=contact_id,
            event_type=event_type,
            metadata=metadata,
            created_at=datetime.now(timezone.utc),
        )

        try:
            await self.repository.insert_analytics_event(event)
            logger.debug(f"Analytics event tracked: {event_type} for flow {flow_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to track analytics event {event_type}: {e}")
            return False
