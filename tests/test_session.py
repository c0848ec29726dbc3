# Copyright (c) 2026 ln4cy
# This software is released under the MIT License.
# See LICENSE file in the project root for full license details.

import unittest
import sys
import os
import time
import threading

# Add parent directory to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
sys.path.append(os.path.abspath(os.path.dirname(__file__)))

from conversation import (
    Session,
    Conversation,
    ConnectionTimeoutError,
    RequestTimeoutError,
    TransportError,
    StateError,
    ConversationStartInProgressError,
    ProtocolError,
)
from fake_channel import factory, start_responder


class TestConnect(unittest.TestCase):
    def test_url_uses_mode_host(self):
        """Test that the endpoint URL follows the mode and embeds the key."""
        prod = Session("key-123", transport_factory=factory())
        dev = Session("key-123", mode='dev', transport_factory=factory())
        self.assertEqual(prod.url, "wss://channel.wss.captivatechat.ai/dev?apiKey=key-123")
        self.assertEqual(dev.url, "wss://channel-dev.wss.captivatechat.ai/dev?apiKey=key-123")

    def test_unknown_mode_rejected(self):
        with self.assertRaises(ValueError):
            Session("key", mode='staging')

    def test_connect_resolves_on_socket_connected(self):
        """Test connect returns once socket_connected arrives."""
        build = factory()
        session = Session("key", transport_factory=build)

        session.connect()

        self.assertEqual(len(build.channels), 1)
        self.assertEqual(build.channels[0].url, session.url)
        self.assertTrue(session.is_connected())
        self.assertEqual(session.pending_waiters(), 0)

    def test_connect_timeout(self):
        """Test connect raises ConnectionTimeoutError and leaves no waiter behind."""
        session = Session("key", transport_factory=factory(handshake=False), connect_timeout=0.05)

        with self.assertLogs('conversation.session', level='ERROR'):
            with self.assertRaises(ConnectionTimeoutError) as ctx:
                session.connect()

        self.assertEqual(ctx.exception.timeout, 0.05)
        self.assertEqual(session.pending_waiters(), 0)

    def test_connect_ignores_other_events_before_handshake(self):
        build = factory(handshake=False)

        def build_noisy(url, **callbacks):
            channel = build(url, **callbacks)

            def open_with_noise():
                channel.opened = True
                channel.push('conversation_update', {'conversation_id': 'x'})
            channel.open = open_with_noise
            return channel

        session = Session("key", transport_factory=build_noisy, connect_timeout=0.05)
        with self.assertLogs('conversation.session', level='ERROR'):
            with self.assertRaises(ConnectionTimeoutError):
                session.connect()

    def test_connect_transport_error(self):
        """Test an error reported by the channel before the handshake fails connect."""
        build = factory(handshake=False)

        def build_failing(url, **callbacks):
            channel = build(url, **callbacks)
            channel.open = lambda: channel.on_error(ConnectionRefusedError("refused"))
            return channel

        session = Session("key", transport_factory=build_failing, connect_timeout=1)

        with self.assertLogs('conversation.session', level='ERROR'):
            with self.assertRaises(TransportError) as ctx:
                session.connect()

        self.assertIn("refused", str(ctx.exception))
        self.assertEqual(session.pending_waiters(), 0)

    def test_connect_factory_failure(self):
        def broken_factory(url, **callbacks):
            raise OSError("no route")

        session = Session("key", transport_factory=broken_factory)
        with self.assertLogs('conversation.session', level='ERROR'):
            with self.assertRaises(TransportError):
                session.connect()
        self.assertEqual(session.pending_waiters(), 0)

    def test_malformed_frame_does_not_break_dispatch(self):
        """Test a non-JSON frame is dropped and the handshake still completes."""
        build = factory(handshake=False)

        def build_garbled(url, **callbacks):
            channel = build(url, **callbacks)

            def open_garbled():
                channel.opened = True
                channel.push_raw("not json {")
                channel.push_raw('{"no_event": true}')
                channel.push('socket_connected')
            channel.open = open_garbled
            return channel

        session = Session("key", transport_factory=build_garbled)
        with self.assertLogs('conversation.session', level='WARNING') as logs:
            session.connect()

        self.assertEqual(len([line for line in logs.output if 'malformed' in line]), 2)
        self.assertTrue(session.is_connected())


class TestCreateConversation(unittest.TestCase):
    def setUp(self):
        self.build = factory(responder=start_responder('conv-42'))
        self.session = Session("key", transport_factory=self.build, request_timeout=0.05)
        self.session.connect()
        self.channel = self.build.channels[0]

    def test_bot_first_sends_empty_message(self):
        """Test bot-first creation sends an empty message right after the start reply."""
        conversation = self.session.create_conversation(
            "user-1", {"name": "Ada"}, {"plan": "pro"}, 'bot-first'
        )

        self.assertIsInstance(conversation, Conversation)
        self.assertEqual(conversation.get_conversation_id(), 'conv-42')
        self.assertEqual(self.channel.sent_types(), ['conversation_start', 'message'])

        start = self.channel.sent[0]
        self.assertEqual(start['action'], 'sendMessage')
        self.assertEqual(start['event']['event_payload'], {
            'userId': 'user-1',
            'userBasicInfo': {'name': 'Ada'},
            'userData': {'plan': 'pro'},
        })
        self.assertEqual(self.channel.sent[1]['event']['event_payload'],
                         {'conversation_id': 'conv-42', 'content': ''})
        self.assertEqual(self.session.pending_waiters(), 0)

    def test_user_first_sends_nothing_more(self):
        conversation = self.session.create_conversation("user-1", auto_conversation_start='user-first')

        self.assertEqual(conversation.get_conversation_id(), 'conv-42')
        self.assertEqual(self.channel.sent_types(), ['conversation_start'])
        self.assertEqual(self.channel.sent[0]['event']['event_payload']['userBasicInfo'], {})
        self.assertEqual(self.channel.sent[0]['event']['event_payload']['userData'], {})

    def test_created_conversation_is_cached(self):
        """Test lookup after creation returns the same instance."""
        conversation = self.session.create_conversation("user-1")
        self.assertIs(self.session.get_conversation('conv-42'), conversation)

    def test_existing_id_reuses_instance(self):
        existing = self.session.get_conversation('conv-42')
        created = self.session.create_conversation("user-1", auto_conversation_start='user-first')
        self.assertIs(created, existing)
        self.assertEqual(len(self.session.conversations), 1)

    def test_timeout(self):
        """Test create_conversation times out and removes its waiter."""
        self.channel.responder = None

        with self.assertLogs('conversation.session', level='WARNING'):
            with self.assertRaises(RequestTimeoutError):
                self.session.create_conversation("user-1")

        self.assertEqual(self.session.pending_waiters(), 0)
        self.assertEqual(self.session.conversations, {})

    def test_late_reply_after_timeout_is_ignored(self):
        self.channel.responder = None
        with self.assertLogs('conversation.session', level='WARNING'):
            with self.assertRaises(RequestTimeoutError):
                self.session.create_conversation("user-1")

        self.channel.push('conversation_start_success', {'conversation_id': 'late'})
        self.assertNotIn('late', self.session.conversations)

    def test_reply_without_conversation_id(self):
        self.channel.responder = lambda channel, event: channel.push('conversation_start_success', {})
        with self.assertRaises(ProtocolError):
            self.session.create_conversation("user-1")
        self.assertEqual(self.session.pending_waiters(), 0)

    def test_unknown_start_mode(self):
        with self.assertRaises(ValueError):
            self.session.create_conversation("user-1", auto_conversation_start='whenever')
        self.assertEqual(self.channel.sent, [])

    def test_single_flight(self):
        """Test a second create_conversation is rejected while one is pending."""
        self.channel.responder = None
        self.session.request_timeout = 2
        result = {}

        def first_call():
            result['conversation'] = self.session.create_conversation("user-1", auto_conversation_start='user-first')

        worker = threading.Thread(target=first_call)
        worker.start()

        deadline = time.time() + 2
        while self.session.pending_waiters() == 0 and time.time() < deadline:
            time.sleep(0.005)

        with self.assertRaises(ConversationStartInProgressError):
            self.session.create_conversation("user-2")

        self.channel.push('conversation_start_success', {'conversation_id': 'conv-7'})
        worker.join(timeout=2)

        self.assertEqual(result['conversation'].get_conversation_id(), 'conv-7')
        self.assertEqual(self.channel.sent_types(), ['conversation_start'])

    def test_requires_connection(self):
        session = Session("key", transport_factory=factory())
        with self.assertRaises(StateError):
            session.create_conversation("user-1")


class TestGetConversation(unittest.TestCase):
    def test_before_connect_raises_state_error(self):
        """Test lookup before any connection fails with StateError."""
        session = Session("key", transport_factory=factory())
        with self.assertLogs('conversation.session', level='ERROR'):
            with self.assertRaises(StateError):
                session.get_conversation('conv-1')

    def test_same_id_same_instance(self):
        session = Session("key", transport_factory=factory())
        session.connect()

        first = session.get_conversation('conv-1')
        second = session.get_conversation('conv-1')

        self.assertIs(first, second)
        self.assertEqual(list(session.conversations), ['conv-1'])

    def test_lookup_sends_nothing(self):
        build = factory()
        session = Session("key", transport_factory=build)
        session.connect()
        session.get_conversation('conv-1')
        self.assertEqual(build.channels[0].sent, [])


class TestSendAndDisconnect(unittest.TestCase):
    def test_send_when_closed_is_dropped(self):
        """Test sends on a closed channel log an error and report False."""
        build = factory()
        session = Session("key", transport_factory=build)
        session.connect()
        conversation = session.get_conversation('conv-1')
        build.channels[0].closed = True

        with self.assertLogs('conversation.session', level='ERROR') as logs:
            sent = conversation.send_message("hello")

        self.assertFalse(sent)
        self.assertIn("Socket is not open", logs.output[0])
        self.assertEqual(build.channels[0].sent, [])

    def test_send_write_failure_is_reported(self):
        build = factory()
        session = Session("key", transport_factory=build)
        session.connect()

        def explode(text):
            raise ConnectionResetError("reset")
        build.channels[0].send = explode

        with self.assertLogs('conversation.session', level='ERROR'):
            self.assertFalse(session.get_conversation('c').set_metadata({'a': 1}))

    def test_disconnect_tears_everything_down(self):
        build = factory()
        with Session("key", transport_factory=build) as session:
            session.connect()
            conversation = session.get_conversation('conv-1')
            conversation.on('bot_message', lambda payload: None)

        self.assertTrue(build.channels[0].closed)
        self.assertEqual(session.conversations, {})
        self.assertEqual(len(conversation.listeners), 0)
        self.assertFalse(session.is_connected())
        with self.assertLogs('conversation.session', level='ERROR'):
            with self.assertRaises(StateError):
                session.get_conversation('conv-1')

    def test_reconnect_closes_previous_channel(self):
        build = factory()
        session = Session("key", transport_factory=build)
        session.connect()
        session.connect()

        self.assertEqual(len(build.channels), 2)
        self.assertTrue(build.channels[0].closed)
        self.assertFalse(build.channels[1].closed)

class TestChannelLoss(unittest.TestCase):
    def test_close_fails_pending_create(self):
        """Test a channel closing mid-request fails the request instead of waiting out the timeout."""
        def respond(channel, event):
            if event['event']['event_type'] == 'conversation_start':
                channel.close()

        session = Session("key", transport_factory=factory(responder=respond), request_timeout=5)
        session.connect()

        started = time.time()
        with self.assertRaises(TransportError) as ctx:
            session.create_conversation("user-1")

        self.assertLess(time.time() - started, 1)
        self.assertIn("closed", str(ctx.exception))
        self.assertEqual(session.pending_waiters(), 0)

    def test_error_after_handshake_fails_pending_transcript(self):
        def respond(channel, event):
            if event['event']['event_type'] == 'get_transcript':
                channel.on_error(ConnectionResetError("reset by peer"))

        session = Session("key", transport_factory=factory(responder=respond), request_timeout=5)
        session.connect()
        conversation = session.get_conversation('conv-1')

        with self.assertLogs('conversation.session', level='ERROR'):
            with self.assertRaises(TransportError) as ctx:
                conversation.get_transcript()

        self.assertIn("reset by peer", str(ctx.exception))
        self.assertIsInstance(ctx.exception.details, ConnectionResetError)
        self.assertEqual(session.pending_waiters(), 0)

    def test_previous_channel_close_is_ignored(self):
        """Test a late close from a replaced channel does not fail the new channel's requests."""
        def respond(channel, event):
            build.channels[0].on_close()
            start_responder('conv-3')(channel, event)

        build = factory(responder=respond)
        session = Session("key", transport_factory=build, request_timeout=1)
        session.connect()
        session.connect()

        conversation = session.create_conversation("user-1", auto_conversation_start='user-first')
        self.assertEqual(conversation.get_conversation_id(), 'conv-3')

    def test_disconnect_fails_pending_create_with_state_error(self):
        session = Session("key", transport_factory=factory(), request_timeout=5)
        session.connect()
        errors = []

        def first_call():
            try:
                session.create_conversation("user-1")
            except Exception as e:
                errors.append(e)

        worker = threading.Thread(target=first_call)
        worker.start()
        deadline = time.time() + 2
        while session.pending_waiters() == 0 and time.time() < deadline:
            time.sleep(0.005)

        session.disconnect()
        worker.join(timeout=2)

        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], StateError)



if __name__ == '__main__':
    unittest.main()
