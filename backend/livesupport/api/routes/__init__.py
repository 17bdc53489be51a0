"""
API routes package.
"""
from . import health, sessions, support

__all__ = ['health', 'sessions', 'support']
