"""
Configuration package.
"""
from .settings import Settings, get_settings, settings
from .bot_settings import BotSettings, bot_settings

__all__ = [
    'Settings',
    'get_settings',
    'settings',
    'BotSettings',
    'bot_settings',
]
