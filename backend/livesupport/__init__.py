"""
Live Support Coordinator backend.

Session lifecycle, human-agent queue and realtime event routing for a
customer-support chat with bot-first handling and agent handoff.
"""

__version__ = "1.0.0"

# Application metadata
APP_NAME = "Live Support Coordinator"
APP_DESCRIPTION = "Bot-first customer support chat with queued handoff to human agents"

from .config import settings, get_settings
from .exceptions import SupportError

__all__ = [
    "settings",
    "get_settings",
    "SupportError",
    "__version__",
]
