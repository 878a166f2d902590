"""
Views package for ShotQueue

State behind the on-screen pieces; rendering itself belongs to the host.
- TooltipNegotiator: Tooltip visibility and overlay height reporting
- QueueCommands: Shortcut panel actions
"""

from .queue_commands import CommandRow, QueueCommands
from .tooltip_negotiator import TooltipNegotiator

__all__ = [
    'CommandRow',
    'QueueCommands',
    'TooltipNegotiator'
]
