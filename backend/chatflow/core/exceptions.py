"""
Exception types raised by external collaborators.

Node executors catch these locally; nothing here is expected to escape
the traversal engine.
"""
from typing import Optional


class ChatflowError(Exception):
    """Base class for all chatflow errors"""


class GatewayError(ChatflowError):
    """The messaging gateway rejected a request or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationError(ChatflowError):
    """The text-generation provider failed to produce a reply"""
