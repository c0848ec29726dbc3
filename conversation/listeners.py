# Copyright (c) 2026 ln4cy
# This software is released under the MIT License.
# See LICENSE file in the project root for full license details.

"""
Listener bookkeeping for inbound events.

ListenerRegistry keeps callbacks per event type in registration order.
ReplyWaiter is the one-shot listener behind the blocking request/reply calls
(connect, create_conversation, get_transcript): the read loop offers it every
inbound event and the caller waits on it with a timeout.
DispatchQueue runs conversation callbacks off the reader thread.
"""

import queue
import threading
import logging

logger = logging.getLogger(__name__)


class ListenerRegistry:
    """Ordered multimap of event type -> callbacks."""

    def __init__(self):
        self._listeners = {}  # {event_type: [callback, ...]}
        self._lock = threading.Lock()

    def add(self, event_type, callback):
        """Register a callback. The same callback may be registered more than once."""
        with self._lock:
            self._listeners.setdefault(event_type, []).append(callback)

    def remove(self, event_type, callback):
        """
        Remove the first registration of callback for event_type.

        Returns:
            bool: True if a registration was removed
        """
        with self._lock:
            callbacks = self._listeners.get(event_type)
            if not callbacks or callback not in callbacks:
                return False
            callbacks.remove(callback)
            if not callbacks:
                del self._listeners[event_type]
            return True

    def get(self, event_type):
        """Snapshot of the callbacks for event_type, in registration order."""
        with self._lock:
            return tuple(self._listeners.get(event_type, ()))

    def clear(self):
        with self._lock:
            self._listeners.clear()

    def event_types(self):
        with self._lock:
            return list(self._listeners.keys())

    def __len__(self):
        with self._lock:
            return sum(len(callbacks) for callbacks in self._listeners.values())


class ReplyWaiter:
    """
    One-shot wait for an inbound event.

    Resolves exactly once: either with the first offered event whose type
    matches (and, if given, satisfies predicate), or with an exception via
    fail(). Later offers are ignored.
    """

    def __init__(self, event_type, predicate=None):
        self.event_type = event_type
        self.predicate = predicate
        self.event = None
        self.error = None
        self._resolved = threading.Event()
        self._lock = threading.Lock()

    @property
    def done(self):
        return self._resolved.is_set()

    def offer(self, event):
        """
        Offer an inbound event.

        Returns:
            bool: True if this call resolved the waiter
        """
        if event.event_type != self.event_type:
            return False
        if self.predicate is not None and not self.predicate(event):
            return False
        with self._lock:
            if self._resolved.is_set():
                return False
            self.event = event
            self._resolved.set()
        logger.debug(f"⚡ Reply received for {self.event_type}")
        return True

    def fail(self, error):
        """Resolve with an error. No effect if already resolved."""
        with self._lock:
            if self._resolved.is_set():
                return False
            self.error = error
            self._resolved.set()
        return True

    def wait(self, timeout):
        """
        Block until resolved or timeout.

        Returns:
            InboundEvent or None on timeout

        Raises:
            The exception passed to fail()
        """
        if not self._resolved.wait(timeout=timeout):
            return None
        if self.error is not None:
            raise self.error
        return self.event


class DispatchQueue:
    """
    Background worker that runs listener callbacks in order.

    Inbound events are handed over by the channel's reader thread so that a
    slow or blocking callback (for example one that calls get_transcript)
    never holds up the frames behind it. One worker per Session keeps
    per-event and per-listener ordering.
    """

    def __init__(self, name="chat-dispatch"):
        self.name = name
        self._queue = None
        self._thread = None
        self._lock = threading.Lock()

    def _start_locked(self):
        if self._thread and self._thread.is_alive():
            return
        self._queue = queue.Queue()
        self._thread = threading.Thread(
            target=self._process_loop, args=(self._queue,), name=self.name, daemon=True
        )
        self._thread.start()
        logger.debug("Dispatch worker started")

    def enqueue(self, func, *args):
        """Queue func(*args) to run on the worker, starting it if needed."""
        with self._lock:
            self._start_locked()
            self._queue.put((func, args))

    def drain(self, timeout=None):
        """
        Block until everything queued so far has run.

        Returns:
            bool: True if drained, False on timeout or when called from a callback
        """
        with self._lock:
            thread = self._thread
            work = self._queue
        if thread is None or not thread.is_alive():
            return True
        if thread is threading.current_thread():
            return False
        marker = threading.Event()
        work.put((marker.set, ()))
        return marker.wait(timeout)

    def stop(self):
        """Stop the worker once the callbacks already queued have run."""
        with self._lock:
            work = self._queue
            self._thread = None
            self._queue = None
        if work is not None:
            work.put(None)

    def _process_loop(self, work):
        while True:
            item = work.get()
            if item is None:
                break
            func, args = item
            try:
                func(*args)
            except Exception as e:
                logger.error(f"Error in dispatch worker: {e}", exc_info=True)
        logger.debug("Dispatch worker stopped")
