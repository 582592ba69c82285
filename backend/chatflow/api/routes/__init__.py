from .flows import router as flows_router
from .inbound import router as inbound_router
from .cron import router as cron_router

__all__ = [
    "flows_router",
    "inbound_router",
    "cron_router"
]
