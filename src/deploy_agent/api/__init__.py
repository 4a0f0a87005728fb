"""API module for the deploy agent."""

from .trigger import trigger_route

__all__ = [
    "trigger_route",
]
