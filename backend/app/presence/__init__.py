"""Presence tracking: which users are reachable right now, and how."""

from .channel import Channel
from .registry import PresenceRegistry

__all__ = ["Channel", "PresenceRegistry"]
