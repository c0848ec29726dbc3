# Copyright (c) 2026 ln4cy
# This software is released under the MIT License.
# See LICENSE file in the project root for full license details.

"""Exceptions raised by the chat session layer."""


class ChatClientError(Exception):
    """Base exception for chat client errors."""

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class ChatTimeoutError(ChatClientError):
    """No matching reply arrived within the wait window."""

    def __init__(self, message, timeout=None):
        super().__init__(message)
        self.timeout = timeout


class ConnectionTimeoutError(ChatTimeoutError):
    """socket_connected was not received in time."""


class RequestTimeoutError(ChatTimeoutError):
    """A request/reply exchange (conversation start, transcript) timed out."""


class TransportError(ChatClientError):
    """The underlying channel reported an error."""


class StateError(ChatClientError):
    """Operation attempted before its precondition holds."""


class ConversationStartInProgressError(StateError):
    """Another create_conversation call is still waiting for its reply."""


class ProtocolError(ChatClientError):
    """A reply was recognised but is missing required fields."""


class MalformedEventError(ChatClientError):
    """An inbound frame could not be parsed as an event envelope."""
