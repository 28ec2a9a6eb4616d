"""
API Routers
"""
from .metrics import router as metrics_router
from .alerts import router as alerts_router
from .channels import router as channels_router
from .executions import router as executions_router
from .realtime import router as realtime_router, ws_router
from .feed import router as feed_router
from .export import router as export_router

__all__ = [
    "metrics_router",
    "alerts_router",
    "channels_router",
    "executions_router",
    "realtime_router",
    "ws_router",
    "feed_router",
    "export_router",
]
