"""
Services Module
Persistence, messaging gateway, text generation, analytics and scheduled jobs
"""

# Database service
from .database import db, DatabaseService

# Late messaging gateway
from .gateway import MessagingGateway, create_gateway

# Text generation (OpenAI)
from .llm import TextGenerator, create_text_generator

# Analytics
from .analytics import AnalyticsService, EventType

# Scheduled jobs
from .job_runner import JobRunner, create_job_runner, retry_delay


__all__ = [
    # Database
    "db",
    "DatabaseService",

    # Gateway
    "MessagingGateway",
    "create_gateway",

    # Text generation
    "TextGenerator",
    "create_text_generator",

    # Analytics
    "AnalyticsService",
    "EventType",

    # Jobs
    "JobRunner",
    "create_job_runner",
    "retry_delay",
]
