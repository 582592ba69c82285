from .config import settings, get_settings
from .supabase_client import supabase, get_supabase_client
from .exceptions import ChatflowError, GatewayError, GenerationError

__all__ = [
    "settings", "get_settings", "supabase", "get_supabase_client",
    "ChatflowError", "GatewayError", "GenerationError",
]
