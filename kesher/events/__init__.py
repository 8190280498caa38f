"""
Kesher inbound event normalization.
"""

from .envelope import Direction, MessageEnvelope, MessageKind
from .normalizer import EventNormalizer

__all__ = [
    "Direction",
    "EventNormalizer",
    "MessageEnvelope",
    "MessageKind",
]
