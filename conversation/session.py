# Copyright (c) 2026 ln4cy
# This software is released under the MIT License.
# See LICENSE file in the project root for full license details.

"""
Session management for the Captivate chat channel.

A Session owns the single WebSocket to the chat service, performs the
socket_connected handshake and hands out Conversation objects that share its
channel. The protocol has no request ids: replies are matched to requests by
event type (and conversation_id where the reply carries one), so at most one
create_conversation call may be waiting per Session.
"""

import functools
import logging
import threading

import config
from config import CONNECT_TIMEOUT, REQUEST_TIMEOUT, START_MODES, build_url
from channel_handler import WebSocketChannel
from . import events
from .conversation import Conversation
from .errors import (
    ConnectionTimeoutError,
    ConversationStartInProgressError,
    MalformedEventError,
    ProtocolError,
    RequestTimeoutError,
    StateError,
    TransportError,
)
from .listeners import DispatchQueue, ReplyWaiter

logger = logging.getLogger(__name__)


def default_transport_factory(url, on_message=None, on_error=None, on_close=None):
    """Build the WebSocket channel used when no transport_factory is given."""
    return WebSocketChannel(url, on_message=on_message, on_error=on_error, on_close=on_close,
                            open_timeout=config.OPEN_TIMEOUT)


class Session:
    """
    Manages the connection and the conversations multiplexed over it.

    Features:
    - Handshake confirmation with timeout
    - Conversation creation (server round-trip) and lookup (local)
    - Routing of inbound events to the matching conversation
    - Listener callbacks on a dispatch worker, off the reader thread
    - Dropped-send diagnostics when the channel is not open
    """

    def __init__(self, api_key, mode='prod', transport_factory=None,
                 connect_timeout=CONNECT_TIMEOUT, request_timeout=REQUEST_TIMEOUT):
        """
        Initialize session.

        Args:
            api_key: API key for authentication
            mode: 'prod' for production or 'dev' for development
            transport_factory: callable(url, on_message, on_error, on_close) returning
                               an object with open/send/close/is_open
            connect_timeout: Seconds to wait for socket_connected
            request_timeout: Seconds to wait for conversation start and transcript replies
        """
        self._api_key = api_key
        self._mode = mode
        self._url = build_url(api_key, mode)
        self.transport_factory = transport_factory or default_transport_factory
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout

        self.channel = None
        self.conversations = {}  # {str(conversation_id): Conversation}
        self._waiters = []
        self._lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._dispatcher = DispatchQueue()
        self._generation = 0  # bumped for every channel; stale channel callbacks are ignored

    @property
    def api_key(self):
        return self._api_key

    @property
    def mode(self):
        return self._mode

    @property
    def url(self):
        return self._url

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.disconnect()

    # Waiters

    def _add_waiter(self, waiter):
        with self._lock:
            self._waiters.append(waiter)

    def _remove_waiter(self, waiter):
        with self._lock:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def pending_waiters(self):
        """Number of request/reply exchanges currently waiting."""
        with self._lock:
            return len(self._waiters)

    # Channel callbacks

    def _on_message(self, raw, generation=None):
        """
        Parse an inbound frame and route it to waiters and conversations.

        Runs on the channel's reader thread. Waiters are resolved here, while
        conversation listeners are queued on the dispatch worker so that a
        callback may itself make a blocking request.
        """
        if generation is not None and generation != self._generation:
            return
        try:
            event = events.parse_event(raw)
        except MalformedEventError as e:
            logger.warning(f"⚠️ Dropping malformed frame: {e}")
            return

        logger.debug(f"Received {event.event_type} (conversation: {event.conversation_id})")

        with self._lock:
            waiters = list(self._waiters)
        for waiter in waiters:
            waiter.offer(event)

        routing_key = event.routing_key
        if routing_key is None:
            return
        with self._lock:
            conversation = self.conversations.get(routing_key)
        if conversation is not None:
            self._dispatcher.enqueue(conversation._dispatch, event)

    def _fail_waiters(self, error):
        with self._lock:
            waiters = list(self._waiters)
        for waiter in waiters:
            waiter.fail(error)

    def _on_error(self, error, generation=None):
        if generation is not None and generation != self._generation:
            return
        message = str(error) or error.__class__.__name__
        logger.error(f"WebSocket Error: {message}")
        self._fail_waiters(TransportError(message, details=error))

    def _on_close(self, generation=None):
        if generation is not None and generation != self._generation:
            return
        logger.info("Chat channel closed")
        self._fail_waiters(TransportError("WebSocket connection closed"))

    def wait_for_dispatch(self, timeout=None):
        """
        Block until listener callbacks for events received so far have run.

        Returns:
            bool: False on timeout, or when called from inside a callback
        """
        return self._dispatcher.drain(timeout)

    # Outbound

    def _send(self, event):
        """
        Write an event to the channel if it is open.

        Returns:
            bool: True if the frame was written, False if it was dropped
        """
        channel = self.channel
        if channel is None or not channel.is_open():
            logger.error(f"Socket is not open. Message not sent: {event}")
            return False

        try:
            channel.send(events.encode_event(event))
        except Exception as e:
            logger.error(f"Failed to send {event['event']['event_type']}: {e}")
            return False

        logger.debug(f"Sent {event['event']['event_type']}")
        return True

    # Public API

    def connect(self):
        """
        Connect to the chat service and wait for socket_connected.

        Raises:
            ConnectionTimeoutError: no confirmation within connect_timeout
            TransportError: the channel reported an error first
        """
        with self._lock:
            self._generation += 1
            generation = self._generation

        if self.channel is not None:
            # Only one channel per Session
            self.channel.close()
            self.channel = None

        waiter = ReplyWaiter(events.SOCKET_CONNECTED)
        self._add_waiter(waiter)
        try:
            logger.info(f"Connecting to chat service ({self._mode})")
            try:
                self.channel = self.transport_factory(
                    self._url,
                    on_message=functools.partial(self._on_message, generation=generation),
                    on_error=functools.partial(self._on_error, generation=generation),
                    on_close=functools.partial(self._on_close, generation=generation)
                )
                self.channel.open()
            except Exception as e:
                logger.error(f"❌ Failed to open channel: {e}")
                raise TransportError(str(e) or e.__class__.__name__, details=e) from e
            reply = waiter.wait(self.connect_timeout)
        finally:
            self._remove_waiter(waiter)

        if reply is None:
            logger.error("❌ Connection timeout: socket_connected not received")
            raise ConnectionTimeoutError(
                "Connection timeout: socket_connected not received",
                timeout=self.connect_timeout
            )

        logger.info("✅ API Successfully Connected")

    def is_connected(self):
        """
        Check if the channel is open.

        Returns:
            bool: True if frames can currently be sent
        """
        return self.channel is not None and self.channel.is_open()

    def create_conversation(self, user_id, user_basic_info=None, user_data=None,
                            auto_conversation_start='bot-first'):
        """
        Start a new conversation on the server.

        Args:
            user_id: Unique identifier for the user
            user_basic_info: Basic information about the user (e.g. name, email)
            user_data: Additional user data
            auto_conversation_start: 'bot-first' sends an empty message so the bot
                                     speaks first; 'user-first' sends nothing

        Returns:
            Conversation: bound to the conversation_id issued by the server

        Raises:
            StateError: not connected
            ConversationStartInProgressError: another start is still waiting
            RequestTimeoutError: no conversation_start_success within request_timeout
            ProtocolError: the reply has no conversation_id
        """
        if auto_conversation_start not in START_MODES:
            raise ValueError(f"Unknown auto_conversation_start: {auto_conversation_start!r}")
        if self.channel is None:
            raise StateError("WebSocket connection not established")
        if not self._start_lock.acquire(blocking=False):
            raise ConversationStartInProgressError("Another createConversation call is still pending")

        try:
            waiter = ReplyWaiter(events.CONVERSATION_START_SUCCESS)
            self._add_waiter(waiter)
            try:
                self._send(events.build_event(events.CONVERSATION_START, {
                    'userId': user_id,
                    'userBasicInfo': user_basic_info if user_basic_info is not None else {},
                    'userData': user_data if user_data is not None else {},
                }))
                reply = waiter.wait(self.request_timeout)
            finally:
                self._remove_waiter(waiter)
        finally:
            self._start_lock.release()

        if reply is None:
            logger.warning(f"⚠️ Timeout waiting for conversation_start_success (user: {user_id})")
            raise RequestTimeoutError("Timeout: No response for createConversation", timeout=self.request_timeout)

        conversation_id = reply.conversation_id
        if conversation_id is None or conversation_id == "":
            raise ProtocolError("conversation_start_success without conversation_id", details=reply.payload)

        conversation = self.get_conversation(conversation_id)
        logger.info(f"Started conversation {conversation_id} for {user_id} ({auto_conversation_start})")

        if auto_conversation_start == 'bot-first':
            conversation.send_message('')

        return conversation

    def get_conversation(self, conversation_id):
        """
        Retrieve a conversation by id, creating it locally if unknown.

        Ids are matched by their string form, so 17 and "17" name the same
        conversation. The Conversation keeps the id as first given.

        Raises:
            StateError: connect() has never been called
        """
        routing_key = events.to_routing_key(conversation_id)
        with self._lock:
            conversation = self.conversations.get(routing_key)
            if conversation is not None:
                return conversation

            if self.channel is None:
                logger.error("Socket is not initialized")
                raise StateError("WebSocket connection not established")

            conversation = Conversation(conversation_id, self)
            self.conversations[routing_key] = conversation
        logger.debug(f"Registered conversation {conversation_id}")
        return conversation

    def disconnect(self):
        """Drop all listeners and conversations and close the channel."""
        with self._lock:
            self._generation += 1
            waiters = list(self._waiters)
            self._waiters.clear()
            conversations = list(self.conversations.values())
            self.conversations.clear()
        for waiter in waiters:
            waiter.fail(StateError("Session disconnected"))
        for conversation in conversations:
            conversation.listeners.clear()
        self._dispatcher.stop()

        channel = self.channel
        self.channel = None
        if channel is not None:
            try:
                channel.close()
                logger.info("Disconnected from chat service")
            except Exception as e:
                logger.error(f"Error disconnecting: {e}")
