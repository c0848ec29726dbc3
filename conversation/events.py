# Copyright (c) 2026 ln4cy
# This software is released under the MIT License.
# See LICENSE file in the project root for full license details.

"""
Event envelopes exchanged with the chat channel.

Every frame on the wire is one JSON object. Outbound frames are wrapped in a
``sendMessage`` action; inbound frames carry the event directly:

    outbound: {"action": "sendMessage", "event": {"event_type": ..., "event_payload": {...}}}
    inbound:  {"event": {"event_type": ..., "event_payload": {...}}}

Scoped events carry ``conversation_id`` inside ``event_payload``.
"""

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import MalformedEventError

SEND_ACTION = 'sendMessage'

# Outbound event types
CONVERSATION_START = 'conversation_start'
MESSAGE = 'message'
SET_METADATA = 'set_metadata'
ACTION = 'action'
GET_TRANSCRIPT = 'get_transcript'

# Inbound event types
SOCKET_CONNECTED = 'socket_connected'
CONVERSATION_START_SUCCESS = 'conversation_start_success'
BOT_MESSAGE = 'bot_message'
LIVECHAT_MESSAGE = 'livechat_message'
ACTION_RECEIVED = 'action'
CONVERSATION_UPDATE = 'conversation_update'
GENERAL_ERROR = 'general_error'
TRANSCRIPT = 'transcript'

# Origin discriminator passed to on_message callbacks
MESSAGE_ORIGINS = {
    BOT_MESSAGE: 'bot',
    LIVECHAT_MESSAGE: 'livechat',
}


class EventBody(BaseModel):
    model_config = ConfigDict(extra='ignore')

    event_type: str
    event_payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('event_payload', mode='before')
    @classmethod
    def _null_payload(cls, value):
        # socket_connected may arrive with a null payload
        return {} if value is None else value


class InboundEvent(BaseModel):
    """Parsed inbound frame."""

    model_config = ConfigDict(extra='ignore')

    event: EventBody

    @property
    def event_type(self) -> str:
        return self.event.event_type

    @property
    def payload(self) -> Dict[str, Any]:
        return self.event.event_payload

    @property
    def conversation_id(self) -> Any:
        """Conversation id as sent by the server, or None for session-level events."""
        return self.event.event_payload.get('conversation_id')

    @property
    def routing_key(self) -> Optional[str]:
        """String form of conversation_id, used to match events to conversations."""
        return to_routing_key(self.conversation_id)


def to_routing_key(conversation_id) -> Optional[str]:
    return str(conversation_id) if conversation_id is not None else None


def build_event(event_type: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Wrap an event in the outbound sendMessage envelope."""
    return {
        'action': SEND_ACTION,
        'event': {
            'event_type': event_type,
            'event_payload': payload if payload is not None else {},
        },
    }


def build_scoped_event(event_type: str, conversation_id: str, **fields: Any) -> Dict[str, Any]:
    """Outbound event whose payload is tagged with a conversation id."""
    payload = {'conversation_id': conversation_id}
    payload.update(fields)
    return build_event(event_type, payload)


def encode_event(event: Dict[str, Any]) -> str:
    return json.dumps(event)


def parse_event(raw) -> InboundEvent:
    """
    Parse one inbound frame.

    Args:
        raw: Frame contents as str or bytes

    Returns:
        InboundEvent

    Raises:
        MalformedEventError: frame is not JSON or lacks event/event_type
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedEventError(f"Frame is not valid UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"Frame is not valid JSON: {e}", details=raw) from e

    try:
        return InboundEvent.model_validate(data)
    except ValidationError as e:
        raise MalformedEventError(f"Frame is not an event envelope: {e.error_count()} error(s)", details=data) from e
