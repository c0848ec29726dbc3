# Copyright (c) 2026 ln4cy
# This software is released under the MIT License.
# See LICENSE file in the project root for full license details.

"""
WebSocket channel handler.

This module owns the duplex connection to the chat service: it opens the
WebSocket on a background reader thread, hands every inbound text frame to a
callback in arrival order, and writes outbound frames.

Any object with the same open/send/close/is_open methods and callback
arguments can be used in its place (see Session's transport_factory).
"""

import logging
import threading

from websockets.exceptions import ConnectionClosed, ConnectionClosedOK
from websockets.protocol import State
from websockets.sync.client import connect as ws_connect

from config import OPEN_TIMEOUT

logger = logging.getLogger(__name__)


class WebSocketChannel:
    """
    Duplex text channel over a single WebSocket.

    Features:
    - Non-blocking open (connection happens on the reader thread)
    - Inbound frames delivered one at a time to on_message
    - Errors before or during reading reported to on_error
    - on_close called exactly once when the reader stops
    """

    def __init__(self, url, on_message=None, on_error=None, on_close=None, open_timeout=OPEN_TIMEOUT):
        """
        Initialize the channel.

        Args:
            url: wss:// endpoint
            on_message: callback(text) for each inbound frame
            on_error: callback(exception) for connection/read failures
            on_close: callback() once the connection has ended
            open_timeout: Seconds allowed for the WebSocket opening handshake
        """
        self.url = url
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close
        self.open_timeout = open_timeout
        self._ws = None
        self._thread = None
        self._closing = False
        self._lock = threading.Lock()

    def open(self):
        """Start connecting in the background. Returns immediately."""
        if self._thread and self._thread.is_alive():
            return

        self._closing = False
        self._thread = threading.Thread(target=self._run, name="chat-channel-reader", daemon=True)
        self._thread.start()

    def _run(self):
        """Reader thread: connect, then pump frames until the socket closes."""
        try:
            ws = ws_connect(self.url, open_timeout=self.open_timeout)
        except Exception as e:
            logger.error(f"❌ WebSocket connection failed: {e}")
            self._report_error(e)
            self._report_close()
            return

        with self._lock:
            self._ws = ws
            closing = self._closing
        if closing:
            ws.close()
        else:
            logger.info("WebSocket connected, waiting for API confirmation...")

        try:
            for message in ws:
                self._deliver(message)
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            if not self._closing:
                logger.warning(f"⚠️ WebSocket closed unexpectedly: {e}")
                self._report_error(e)
        except Exception as e:
            logger.error(f"Error reading from WebSocket: {e}")
            self._report_error(e)
        finally:
            self._report_close()

    def _deliver(self, message):
        if self.on_message is None:
            return
        try:
            self.on_message(message)
        except Exception as e:
            # Never let a handler kill the read loop
            logger.error(f"Error handling inbound frame: {e}", exc_info=True)

    def _report_error(self, error):
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception as e:
            logger.error(f"Error in on_error handler: {e}")

    def _report_close(self):
        logger.info("WebSocket connection closed")
        if self.on_close is None:
            return
        try:
            self.on_close()
        except Exception as e:
            logger.error(f"Error in on_close handler: {e}")

    def send(self, text):
        """
        Write one text frame.

        Raises:
            RuntimeError: channel is not open
            websockets.exceptions.ConnectionClosed: socket closed while sending
        """
        ws = self._ws
        if ws is None:
            raise RuntimeError("WebSocket is not open")
        ws.send(text)

    def is_open(self):
        """
        Check if frames can be written.

        Returns:
            bool: True if the WebSocket is in the OPEN state
        """
        ws = self._ws
        return ws is not None and not self._closing and ws.protocol.state is State.OPEN

    def close(self):
        """Close the WebSocket. Safe to call more than once."""
        with self._lock:
            self._closing = True
            ws = self._ws
        if ws is not None:
            try:
                ws.close()
            except Exception as e:
                logger.error(f"Error closing WebSocket: {e}")
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.open_timeout)
