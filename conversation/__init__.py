"""Session and conversation modules for the Captivate chat channel."""

from .session import Session
from .conversation import Conversation
from .errors import (
    ChatClientError,
    ChatTimeoutError,
    ConnectionTimeoutError,
    RequestTimeoutError,
    TransportError,
    StateError,
    ConversationStartInProgressError,
    ProtocolError,
    MalformedEventError,
)

__all__ = [
    'Session', 'Conversation',
    'ChatClientError', 'ChatTimeoutError', 'ConnectionTimeoutError', 'RequestTimeoutError',
    'TransportError', 'StateError', 'ConversationStartInProgressError', 'ProtocolError',
    'MalformedEventError',
]
