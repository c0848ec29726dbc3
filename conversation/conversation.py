# Copyright (c) 2026 ln4cy
# This software is released under the MIT License.
# See LICENSE file in the project root for full license details.

"""
A single conversation multiplexed over a Session's channel.

Conversations never own the channel. Every write goes through the Session,
and inbound events reach a Conversation only when their payload carries its
conversation_id.
"""

import logging

from . import events
from .errors import RequestTimeoutError
from .listeners import ListenerRegistry, ReplyWaiter

logger = logging.getLogger(__name__)


class Conversation:
    """
    One server-identified conversation.

    Features:
    - Per-conversation listener table, callbacks invoked in registration order
    - Fire-and-forget sends (message, metadata, action)
    - Blocking transcript request with timeout
    """

    def __init__(self, conversation_id, session):
        """
        Initialize conversation.

        Args:
            conversation_id: Identifier issued by the chat service
            session: Session whose channel this conversation writes through
        """
        self._conversation_id = conversation_id
        self._session = session
        self.listeners = ListenerRegistry()

    @property
    def conversation_id(self):
        return self._conversation_id

    def get_conversation_id(self):
        """Return the unique identifier of the conversation."""
        return self._conversation_id

    def __repr__(self):
        return f"Conversation(conversation_id={self._conversation_id!r})"

    # Listener registration

    def on(self, event_type, callback):
        """
        Register a callback for inbound events of event_type.

        Args:
            event_type: Inbound event type tag (e.g. 'bot_message')
            callback: callback(payload) where payload is the event_payload dict
        """
        self.listeners.add(event_type, callback)
        return callback

    def off(self, event_type, callback):
        """Remove a callback. Removing an unknown callback is a no-op."""
        return self.listeners.remove(event_type, callback)

    def on_message(self, callback):
        """
        Register a listener for bot and live-chat messages.

        Args:
            callback: callback(content, origin) with origin 'bot' or 'livechat'

        Returns:
            dict: {event_type: wrapper} of the registrations made, for off()
        """
        wrappers = {}
        for event_type, origin in events.MESSAGE_ORIGINS.items():
            def wrapper(payload, _origin=origin):
                callback(payload.get('content'), _origin)
            self.on(event_type, wrapper)
            wrappers[event_type] = wrapper
        return wrappers

    def on_action_received(self, callback):
        """Register a listener for actions: callback(action_id, data)."""
        def wrapper(payload):
            callback(payload.get('id'), payload.get('data'))
        return self.on(events.ACTION_RECEIVED, wrapper)

    def on_conversation_update(self, callback):
        """Register a listener for conversation updates: callback(update)."""
        return self.on(events.CONVERSATION_UPDATE, callback)

    def on_error(self, callback):
        """Register a listener for error events: callback(error)."""
        return self.on(events.GENERAL_ERROR, callback)

    def _dispatch(self, event):
        """
        Deliver an inbound event to this conversation's listeners.

        Called from the Session's dispatch worker, never from the channel's
        reader thread, so callbacks may block. A failing callback is logged
        and does not prevent the remaining callbacks from running.
        """
        callbacks = self.listeners.get(event.event_type)
        if not callbacks:
            return
        for callback in callbacks:
            try:
                callback(event.payload)
            except Exception as e:
                logger.error(
                    f"Listener for {event.event_type} on conversation {self._conversation_id} failed: {e}",
                    exc_info=True
                )

    # Outbound

    def _send_payload(self, event_type, **fields):
        return self._session._send(events.build_scoped_event(event_type, self._conversation_id, **fields))

    def send_message(self, content):
        """
        Send a message to the conversation.

        Returns:
            bool: True if the frame was written to the channel
        """
        return self._send_payload(events.MESSAGE, content=content)

    def set_metadata(self, metadata):
        """Set metadata for the conversation. Fire-and-forget."""
        return self._send_payload(events.SET_METADATA, metadata=metadata)

    def send_action(self, action_id, data=None):
        """Send an action with optional data. Fire-and-forget."""
        return self._send_payload(events.ACTION, id=action_id, data=data if data is not None else {})

    def get_transcript(self, timeout=None):
        """
        Request the transcript of the conversation.

        Args:
            timeout: Seconds to wait for the reply (defaults to the Session's request_timeout)

        Returns:
            list: Transcript records

        Raises:
            RequestTimeoutError: no transcript reply arrived in time
        """
        if timeout is None:
            timeout = self._session.request_timeout

        waiter = ReplyWaiter(
            events.TRANSCRIPT,
            predicate=lambda event: event.routing_key == events.to_routing_key(self._conversation_id)
        )
        self._session._add_waiter(waiter)
        try:
            self._send_payload(events.GET_TRANSCRIPT)
            reply = waiter.wait(timeout)
        finally:
            self._session._remove_waiter(waiter)

        if reply is None:
            logger.warning(f"⚠️ Transcript request timed out for conversation {self._conversation_id}")
            raise RequestTimeoutError("Timeout: No response for getTranscript", timeout=timeout)

        transcript = reply.payload.get('transcript')
        return list(transcript) if transcript else []
